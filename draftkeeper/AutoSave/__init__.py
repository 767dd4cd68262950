"""
Auto-save engine: entry model, debounced manager and recovery coordinator.
"""

from .entry import AutoSaveEntry, EntryMetadata, deserialize_entry, serialize_entry
from ..exceptions import (
    AutoSaveError,
    ConfigurationError,
    DecodeError,
    EntryDecodeError,
    EntryDecodeReason,
    QuotaExceededError,
    RecoveryStateError,
    StorageError,
    StorageUnavailableError,
)
from .manager import (
    AutoSaveConfig,
    AutoSaveManager,
    AutoSaveStats,
    SaveResult,
    get_autosave_manager,
    init_autosave_manager,
    shutdown_autosave_manager,
)
from .recovery import RecoveryCandidate, RecoveryCoordinator, RecoveryState
from .scheduler import CancelHandle, DeferredScheduler

__all__ = [
    'AutoSaveEntry',
    'EntryMetadata',
    'serialize_entry',
    'deserialize_entry',
    'AutoSaveError',
    'ConfigurationError',
    'DecodeError',
    'EntryDecodeError',
    'EntryDecodeReason',
    'QuotaExceededError',
    'RecoveryStateError',
    'StorageError',
    'StorageUnavailableError',
    'AutoSaveConfig',
    'AutoSaveManager',
    'AutoSaveStats',
    'SaveResult',
    'get_autosave_manager',
    'init_autosave_manager',
    'shutdown_autosave_manager',
    'RecoveryCandidate',
    'RecoveryCoordinator',
    'RecoveryState',
    'CancelHandle',
    'DeferredScheduler',
]
