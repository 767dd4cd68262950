# manager.py
# Description: Debounced auto-save of tracked drafts into the storage adapter
#
# Imports
import asyncio
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .entry import AutoSaveEntry, EntryMetadata, deserialize_entry, serialize_entry
from ..exceptions import ConfigurationError, DecodeError
from .scheduler import DeferredScheduler
from ..Storage.storage_adapter import StorageAdapter, StorageOptions
from ..logging_config import preview
#
#######################################################################################################################
#
# Classes:

class SaveResult(str, Enum):
    SAVED = "saved"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    NOTHING_PENDING = "nothing_pending"
    FAILED = "failed"
    DISCARDED = "discarded"  # superseded by a newer change or a clear


@dataclass
class AutoSaveConfig:
    """Auto-save settings for one manager instance."""
    debounce_ms: int = 1000
    max_entries: int = 50
    storage_key: str = "draftkeeper"
    enable_recovery: bool = True
    storage_options: StorageOptions = field(default_factory=StorageOptions)

    def __post_init__(self):
        if self.debounce_ms < 0:
            raise ConfigurationError("debounce_ms must be >= 0")
        if self.max_entries < 1:
            raise ConfigurationError("max_entries must be >= 1")
        if not self.storage_key:
            raise ConfigurationError("storage_key must not be empty")
        ttl_ms = self.storage_options.ttl_ms
        if ttl_ms is not None and ttl_ms <= 0:
            raise ConfigurationError("ttl_ms must be positive when set")


@dataclass
class AutoSaveStats:
    writes: int = 0
    skipped_unchanged: int = 0
    discarded: int = 0
    failures: int = 0
    evictions: int = 0
    decode_errors: int = 0
    last_save_time: Optional[float] = None


@dataclass
class _PendingChange:
    content: str
    path: str
    metadata: EntryMetadata
    generation: int


class AutoSaveManager:
    """
    Tracks draft content per id and persists it after a quiet period.

    Writes for one id are ordered by call order: every observation bumps the id's
    generation, and a write only commits while its generation is still current.
    Storage failures never propagate out of `track_change`; auto-save is advisory.
    """

    def __init__(
        self,
        config: Optional[AutoSaveConfig] = None,
        storage: Optional[StorageAdapter] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or AutoSaveConfig()
        self.storage = storage or StorageAdapter(prefix=f"{self.config.storage_key}:")
        if self.config.storage_options.encrypt and self.storage.encryption is None:
            raise ConfigurationError("storage_options.encrypt is set but the storage adapter has no encryption key")
        self.clock = clock or self.storage.clock
        self.scheduler = DeferredScheduler()
        self.stats = AutoSaveStats()

        self._pending: Dict[str, _PendingChange] = {}
        self._generation: Dict[str, int] = {}
        self._generation_counter = itertools.count(1)
        self._last_persisted: Dict[str, str] = {}
        self._dirty: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._storage_warning_logged = False
        self._closed = False

        # Callbacks for UI status updates
        self.on_saved: Optional[Callable[[AutoSaveEntry], None]] = None
        self.on_save_failed: Optional[Callable[[str], None]] = None

        self.storage_available = self.storage.is_available(self.options.persistent)
        if not self.storage_available:
            self._report_storage_failure(None)

        logger.info(
            f"AutoSaveManager ready (namespace='{self.config.storage_key}', "
            f"debounce={self.config.debounce_ms}ms, max_entries={self.config.max_entries})"
        )

    @property
    def options(self) -> StorageOptions:
        return self.config.storage_options

    # ========== Tracking ==========

    def track_change(
        self,
        autosave_id: str,
        content: str,
        path: str = "",
        metadata: Optional[EntryMetadata] = None,
    ) -> None:
        """Record the latest content for `autosave_id`; the write happens after the debounce window."""
        if self._closed:
            logger.debug(f"track_change('{autosave_id}') after shutdown ignored")
            return

        generation = self._bump(autosave_id)
        self._dirty.add(autosave_id)

        if content == self._last_persisted.get(autosave_id):
            # Back to what is already stored; nothing to write
            if self._pending.pop(autosave_id, None) is not None:
                self.scheduler.cancel(autosave_id)
            self.stats.skipped_unchanged += 1
            return

        self._pending[autosave_id] = _PendingChange(
            content=content,
            path=path,
            metadata=metadata or EntryMetadata(),
            generation=generation,
        )

        try:
            self.scheduler.schedule(
                autosave_id,
                self.config.debounce_ms,
                lambda: self._flush(autosave_id, generation),
            )
        except RuntimeError:
            # No running event loop means no timers; persist right away
            logger.debug(f"No event loop for debounced save of '{autosave_id}', saving synchronously")
            self._commit_sync(autosave_id, generation)

    async def force_save(self, autosave_id: str) -> SaveResult:
        """Persist the pending change for `autosave_id` now, bypassing the debounce."""
        self.scheduler.cancel(autosave_id)
        change = self._pending.get(autosave_id)
        if change is None:
            return SaveResult.NOTHING_PENDING
        try:
            return await self._flush(autosave_id, change.generation)
        except Exception as e:
            logger.error(f"Unexpected error force-saving '{autosave_id}': {e}")
            return SaveResult.FAILED

    async def flush_all(self) -> Dict[str, SaveResult]:
        """Force-save every pending id."""
        results = {}
        for autosave_id in list(self._pending):
            results[autosave_id] = await self.force_save(autosave_id)
        return results

    def has_unsaved_changes(self, autosave_id: Optional[str] = None) -> bool:
        """Whether an id (or any id) has changes not yet cleared after submission."""
        if autosave_id is None:
            return bool(self._dirty)
        return autosave_id in self._dirty

    def has_pending_write(self, autosave_id: str) -> bool:
        return autosave_id in self._pending

    # ========== Write path ==========

    def _bump(self, autosave_id: str) -> int:
        # Manager-wide counter, so a forgotten id never reuses an in-flight generation
        generation = next(self._generation_counter)
        self._generation[autosave_id] = generation
        return generation

    def _forget(self, autosave_id: str) -> None:
        """Drop per-id bookkeeping once nothing is pending or in flight for the id."""
        if autosave_id in self._pending or self.scheduler.pending(autosave_id):
            return
        lock = self._locks.get(autosave_id)
        if lock is not None and lock.locked():
            return
        self._locks.pop(autosave_id, None)
        self._generation.pop(autosave_id, None)

    def _is_current(self, autosave_id: str, generation: int) -> bool:
        return self._generation.get(autosave_id) == generation

    def _lock_for(self, autosave_id: str) -> asyncio.Lock:
        lock = self._locks.get(autosave_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[autosave_id] = lock
        return lock

    def _prepare(self, autosave_id: str, generation: int) -> Tuple[Optional[SaveResult], Optional[AutoSaveEntry]]:
        """Either a final result, or the entry to write for this generation."""
        change = self._pending.get(autosave_id)
        if change is None:
            if self._is_current(autosave_id, generation) and autosave_id in self._last_persisted:
                return SaveResult.SKIPPED_UNCHANGED, None
            return SaveResult.NOTHING_PENDING, None
        if change.generation != generation or not self._is_current(autosave_id, generation):
            self.stats.discarded += 1
            logger.debug(f"Superseded write for '{autosave_id}' (generation {generation}) discarded")
            return SaveResult.DISCARDED, None
        if change.content == self._last_persisted.get(autosave_id):
            self._pending.pop(autosave_id, None)
            self.stats.skipped_unchanged += 1
            return SaveResult.SKIPPED_UNCHANGED, None
        if not self.storage_available:
            self.stats.failures += 1
            return SaveResult.FAILED, None
        return None, self._build_entry(autosave_id, change)

    def _build_entry(self, autosave_id: str, change: _PendingChange) -> AutoSaveEntry:
        now = self.clock()
        existing = self._read_entry(autosave_id)
        created_at = existing.created_at if existing is not None else now
        ttl_ms = self.options.ttl_ms
        entry = AutoSaveEntry(
            id=autosave_id,
            content=change.content,
            path=change.path,
            created_at=created_at,
            updated_at=created_at,
            expires_at=now + ttl_ms / 1000.0 if ttl_ms is not None else None,
            metadata=change.metadata,
        )
        entry.touch(change.content, now)
        return entry

    async def _flush(self, autosave_id: str, generation: int) -> SaveResult:
        async with self._lock_for(autosave_id):
            result, entry = self._prepare(autosave_id, generation)
            if result is not None:
                return result
            try:
                blob = await asyncio.to_thread(self.storage.encode, serialize_entry(entry), self.options)
            except Exception as e:
                logger.error(f"Could not encode auto-save entry '{autosave_id}': {e}")
                self.stats.failures += 1
                return SaveResult.FAILED
            if not self._is_current(autosave_id, generation):
                # A newer change or a clear arrived while encoding
                self.stats.discarded += 1
                logger.debug(f"Write for '{autosave_id}' (generation {generation}) discarded after encode")
                return SaveResult.DISCARDED
            return self._commit(entry, blob, generation)

    def _commit_sync(self, autosave_id: str, generation: int) -> SaveResult:
        result, entry = self._prepare(autosave_id, generation)
        if result is not None:
            return result
        try:
            blob = self.storage.encode(serialize_entry(entry), self.options)
        except Exception as e:
            logger.error(f"Could not encode auto-save entry '{autosave_id}': {e}")
            self.stats.failures += 1
            return SaveResult.FAILED
        return self._commit(entry, blob, generation)

    def _commit(self, entry: AutoSaveEntry, blob: str, generation: int) -> SaveResult:
        if not self.storage.write_encoded(entry.id, blob, self.options):
            self.stats.failures += 1
            self._report_storage_failure(entry.id)
            return SaveResult.FAILED

        self._last_persisted[entry.id] = entry.content
        change = self._pending.get(entry.id)
        if change is not None and change.generation == generation:
            del self._pending[entry.id]
        self.stats.writes += 1
        self.stats.last_save_time = entry.updated_at
        logger.debug(f"Auto-saved '{entry.id}' {preview(entry.content)}")

        self._enforce_max_entries(exclude=entry.id)
        if self.on_saved:
            try:
                self.on_saved(entry)
            except Exception as e:
                logger.error(f"on_saved callback failed for '{entry.id}': {e}")
        return SaveResult.SAVED

    def _report_storage_failure(self, autosave_id: Optional[str]) -> None:
        error = self.storage.last_error
        reason = type(error).__name__ if error is not None else "StorageUnavailableError"
        target = f"'{autosave_id}'" if autosave_id else "drafts"
        if not self._storage_warning_logged:
            self._storage_warning_logged = True
            logger.warning(
                f"Auto-save could not persist {target} ({reason}); drafts may not survive a restart. "
                "Further storage failures this session are logged at debug level."
            )
        else:
            logger.debug(f"Auto-save could not persist {target} ({reason})")
        if autosave_id and self.on_save_failed:
            try:
                self.on_save_failed(autosave_id)
            except Exception as e:
                logger.error(f"on_save_failed callback failed for '{autosave_id}': {e}")

    def _enforce_max_entries(self, exclude: Optional[str] = None) -> None:
        if len(self.storage.keys(self.options)) <= self.config.max_entries:
            return
        stored = self._load_entries()
        overflow = len(stored) - self.config.max_entries
        if overflow <= 0:
            return
        # Oldest write first
        stored.sort(key=lambda item: item[1].updated_at)
        for key, entry in stored:
            if overflow <= 0:
                break
            if key == exclude:
                continue
            if self.storage.remove(key, self.options):
                self._last_persisted.pop(key, None)
                self.stats.evictions += 1
                overflow -= 1
                logger.info(f"Evicted auto-save entry '{key}' (max_entries={self.config.max_entries})")

    # ========== Reading ==========

    def _discard_corrupt(self, key: str, error: DecodeError) -> None:
        # Key only; content may be sensitive
        logger.warning(f"Discarding unreadable auto-save entry '{key}': {type(error).__name__}")
        self.stats.decode_errors += 1
        self.storage.remove(key, self.options)
        self._last_persisted.pop(key, None)

    def _read_entry(self, key: str) -> Optional[AutoSaveEntry]:
        try:
            raw = self.storage.get(key, self.options)
            if raw is None:
                return None
            entry = deserialize_entry(raw, key=key)
        except DecodeError as e:
            self._discard_corrupt(key, e)
            return None
        if entry.is_expired(self.clock()):
            self.storage.remove(key, self.options)
            return None
        return entry

    def _load_entries(self) -> List[Tuple[str, AutoSaveEntry]]:
        """Stored entries as (key, entry), at most one per id, each under its own id."""
        newest: Dict[str, Tuple[str, AutoSaveEntry]] = {}
        for key in self.storage.keys(self.options):
            entry = self._read_entry(key)
            if entry is None:
                continue
            current = newest.get(entry.id)
            if current is None:
                newest[entry.id] = (key, entry)
                continue
            if entry.updated_at > current[1].updated_at:
                keep, drop = (key, entry), current
            else:
                keep, drop = current, (key, entry)
            logger.warning(f"Duplicate auto-save entries for '{entry.id}', discarding the older one under '{drop[0]}'")
            self.stats.decode_errors += 1
            self.storage.remove(drop[0], self.options)
            newest[entry.id] = keep

        entries = []
        for autosave_id, (key, entry) in newest.items():
            if key != autosave_id:
                key = self._rehome(key, entry, keep_key=key in newest)
            entries.append((key, entry))
        return entries

    def _rehome(self, key: str, entry: AutoSaveEntry, keep_key: bool = False) -> str:
        """Move an entry stored under a foreign key to the key matching its id."""
        logger.warning(f"Auto-save entry '{entry.id}' found under key '{key}', moving it")
        if not self.storage.set(entry.id, serialize_entry(entry), self.options):
            return key
        # keep_key: the old key is another live id's own key
        if not keep_key:
            self.storage.remove(key, self.options)
            self._last_persisted.pop(key, None)
        return entry.id

    def get_entry(self, autosave_id: str) -> Optional[AutoSaveEntry]:
        return self._read_entry(autosave_id)

    def get_unsaved_entries(self) -> List[AutoSaveEntry]:
        """Stored, unexpired entries, newest first."""
        entries = [entry for _, entry in self._load_entries()]
        entries.sort(key=lambda entry: entry.updated_at, reverse=True)
        return entries

    def get_entries_for_path(self, path: str) -> List[AutoSaveEntry]:
        return [entry for entry in self.get_unsaved_entries() if entry.path == path]

    def purge_expired(self) -> int:
        """Eagerly delete expired entries. Returns the number removed."""
        purged = self.storage.purge_expired(self.options)
        if purged:
            logger.info(f"Purged {purged} expired auto-save entries")
        return purged

    # ========== Clearing ==========

    def clear_entry(self, autosave_id: str) -> bool:
        """Delete an entry and cancel its pending write; call after a successful submit."""
        self._bump(autosave_id)
        self.scheduler.cancel(autosave_id)
        self._pending.pop(autosave_id, None)
        self._dirty.discard(autosave_id)
        self._last_persisted.pop(autosave_id, None)
        removed = self.storage.remove(autosave_id, self.options)
        logger.debug(f"Cleared auto-save entry '{autosave_id}'")
        self._forget(autosave_id)
        return removed

    def clear_all_entries(self) -> int:
        for autosave_id in set(self._pending) | set(self._generation):
            self._bump(autosave_id)
        self.scheduler.cancel_all()
        self._pending.clear()
        self._dirty.clear()
        self._last_persisted.clear()
        removed = self.storage.clear(self.options)
        for autosave_id in list(self._generation):
            self._forget(autosave_id)
        logger.info(f"Cleared all auto-save entries ({removed} removed)")
        return removed

    def cancel_pending(self, autosave_id: str) -> bool:
        """Drop the pending write for an id without touching what is stored."""
        self._bump(autosave_id)
        self._pending.pop(autosave_id, None)
        return self.scheduler.cancel(autosave_id)

    # ========== Lifecycle ==========

    async def shutdown(self, flush: bool = True) -> None:
        """Flush (or discard) pending writes and stop all timers."""
        if self._closed:
            return
        if flush:
            results = await self.flush_all()
            if results:
                logger.info(f"Flushed {len(results)} pending auto-saves on shutdown")
        else:
            for autosave_id in list(self._pending):
                self.cancel_pending(autosave_id)
        self.scheduler.cancel_all()
        self._closed = True
        logger.info("AutoSaveManager shut down")

#
# Process-wide instance:

_MANAGER: Optional[AutoSaveManager] = None


def init_autosave_manager(
    config: Optional[AutoSaveConfig] = None,
    storage: Optional[StorageAdapter] = None,
) -> AutoSaveManager:
    """Create the process-wide manager, from the config file unless arguments are given."""
    global _MANAGER
    if _MANAGER is not None:
        logger.warning("init_autosave_manager called while a manager exists; replacing it without flushing")
    if config is None or storage is None:
        from ..config import create_storage_adapter, get_autosave_config
        config = config or get_autosave_config()
        storage = storage or create_storage_adapter(config)
    _MANAGER = AutoSaveManager(config, storage)
    return _MANAGER


def get_autosave_manager() -> AutoSaveManager:
    """Return the process-wide manager, creating it lazily."""
    if _MANAGER is None:
        return init_autosave_manager()
    return _MANAGER


async def shutdown_autosave_manager(flush: bool = True) -> None:
    global _MANAGER
    if _MANAGER is not None:
        await _MANAGER.shutdown(flush=flush)
        _MANAGER = None

#
# End of manager.py
########################################################################################################################
