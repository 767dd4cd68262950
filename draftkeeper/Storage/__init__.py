"""
Key/value stores and the storage adapter used by the auto-save engine.
"""

from .backends import FileStore, KeyValueStore, MemoryStore
from .storage_adapter import StorageAdapter, StorageOptions

__all__ = [
    'FileStore',
    'KeyValueStore',
    'MemoryStore',
    'StorageAdapter',
    'StorageOptions',
]
