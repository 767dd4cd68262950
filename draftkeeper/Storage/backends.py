# backends.py
# Description: Raw string key/value stores backing the storage adapter
#
# MemoryStore plays the role of a session-scoped store (gone with the process),
# FileStore the durable one (a single JSON document on disk).
#
# Imports
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..exceptions import QuotaExceededError, StorageUnavailableError
from ..Utils.atomic_file_ops import atomic_write_json
#
#######################################################################################################################
#
# Functions:

def item_size(key: str, value: str) -> int:
    """Bytes a key/value pair counts against a store's capacity."""
    return len(key.encode('utf-8')) + len(value.encode('utf-8'))

#
# Classes:

class KeyValueStore(ABC):
    """Minimal string key/value store interface."""

    name: str = "store"

    def __init__(self, capacity_bytes: Optional[int] = None):
        self.capacity_bytes = capacity_bytes

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def items(self) -> Dict[str, str]:
        """Snapshot of every key and value, read in one pass."""
        snapshot = {}
        for key in self.keys():
            value = self.get_item(key)
            if value is not None:
                snapshot[key] = value
        return snapshot

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def used_bytes(self) -> int:
        ...

    def _check_quota(self, data: Dict[str, str], key: str, value: str) -> None:
        if self.capacity_bytes is None:
            return
        current = sum(item_size(k, v) for k, v in data.items() if k != key)
        requested = item_size(key, value)
        if current + requested > self.capacity_bytes:
            raise QuotaExceededError(
                f"{self.name}: writing {requested} bytes would exceed capacity of {self.capacity_bytes} bytes",
                requested_bytes=requested,
                capacity_bytes=self.capacity_bytes,
            )


class MemoryStore(KeyValueStore):
    """Session-scoped store; contents live only as long as the instance."""

    name = "memory"

    def __init__(self, capacity_bytes: Optional[int] = None):
        super().__init__(capacity_bytes)
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(self._data, key, value)
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def items(self) -> Dict[str, str]:
        return dict(self._data)

    def clear(self) -> None:
        self._data.clear()

    def used_bytes(self) -> int:
        return sum(item_size(k, v) for k, v in self._data.items())


class FileStore(KeyValueStore):
    """
    Durable store kept as one JSON object on disk.

    The parsed file is cached and reused while the file's mtime and size are
    unchanged, so a second process writing the same file is still picked up
    (last writer wins, there is no cross-process locking).
    """

    name = "file"

    def __init__(self, path: Union[str, Path], capacity_bytes: Optional[int] = None):
        super().__init__(capacity_bytes)
        self.path = Path(path).expanduser()
        self._lock = threading.RLock()
        self._cache: Optional[Dict[str, str]] = None
        self._cache_stamp: Optional[Tuple[int, int]] = None

    def _stamp(self) -> Optional[Tuple[int, int]]:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailableError(f"Cannot stat draft store {self.path}: {e}") from e
        return st.st_mtime_ns, st.st_size

    def _snapshot(self) -> Dict[str, str]:
        """Current file contents; callers must not mutate the returned dict."""
        stamp = self._stamp()
        if stamp is None:
            self._cache, self._cache_stamp = None, None
            return {}
        if self._cache is not None and stamp == self._cache_stamp:
            return self._cache
        self._cache = self._load()
        self._cache_stamp = stamp
        return self._cache

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as e:
            logger.error(f"Draft store {self.path} is not valid UTF-8 ({e.reason}); treating it as empty")
            return {}
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read draft store {self.path}: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.error(f"Draft store {self.path} is corrupt ({e}); treating it as empty")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Draft store {self.path} does not hold a JSON object; treating it as empty")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            self._cache, self._cache_stamp = None, None
            raise StorageUnavailableError(f"Cannot write draft store {self.path}: {e}") from e
        try:
            self._cache_stamp = self._stamp()
        except StorageUnavailableError:
            self._cache_stamp = None
        self._cache = data if self._cache_stamp is not None else None

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._snapshot().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = dict(self._snapshot())
            self._check_quota(data, key, value)
            data[key] = value
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._snapshot()
            if key in data:
                data = dict(data)
                del data[key]
                self._save(data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._snapshot().keys())

    def items(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._snapshot())

    def clear(self) -> None:
        with self._lock:
            self._save({})

    def used_bytes(self) -> int:
        with self._lock:
            return sum(item_size(k, v) for k, v in self._snapshot().items())

#
# End of backends.py
########################################################################################################################
