# storage_adapter.py
# Description: Uniform get/set over the session and durable stores, with compression,
#              encryption, TTL expiry and size-budget eviction.
#
# Every value is wrapped in a self-describing JSON envelope, so reads never need to
# know which options were used at write time:
#
#   {"v": 1, "d": <payload>, "z": <compressed>, "e": <encrypted>, "t": <written_at>, "x": <expires_at|null>}
#
# "d" is the plain text when neither flag is set, otherwise base64 of the transformed
# bytes. Transform order is compress then encrypt; decode reverses it.
#
# Imports
import base64
import binascii
import json
import math
import time
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .backends import KeyValueStore, MemoryStore, item_size
from ..exceptions import (
    ConfigurationError,
    DecodeError,
    QuotaExceededError,
    StorageError,
)
from ..Utils.payload_encryption import PayloadEncryption
#
#######################################################################################################################
#
# Functions:

def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)

#
# Classes:

@dataclass(frozen=True)
class StorageOptions:
    """Per-call storage options."""
    persistent: bool = True
    compress: bool = False
    encrypt: bool = False
    ttl_ms: Optional[int] = None


DEFAULT_OPTIONS = StorageOptions()


class StorageAdapter:
    """
    Namespaced key/value access over a session store and a durable store.

    Writes are best-effort: `set` returns False instead of raising when the
    underlying store is unavailable or full. The most recent failure is kept in
    `last_error` so callers can tell a quota problem from an unavailable store.
    """

    COMPRESSION_THRESHOLD_BYTES = 1024
    DEFAULT_MAX_STORAGE_BYTES = 10 * 1024 * 1024
    ENVELOPE_VERSION = 1
    EXPORT_FORMAT = "draftkeeper-export"
    PROBE_KEY = "__probe__"

    def __init__(
        self,
        session_store: Optional[KeyValueStore] = None,
        persistent_store: Optional[KeyValueStore] = None,
        prefix: str = "draftkeeper:",
        max_storage_bytes: int = DEFAULT_MAX_STORAGE_BYTES,
        encryption: Optional[PayloadEncryption] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session_store = session_store if session_store is not None else MemoryStore()
        # Without a durable store, "persistent" writes fall back to a second in-memory store
        self.persistent_store = persistent_store if persistent_store is not None else MemoryStore()
        self.prefix = prefix
        self.max_storage_bytes = max_storage_bytes
        self.encryption = encryption
        self.clock = clock

        self.last_error: Optional[StorageError] = None
        self.eviction_count = 0

    # --- Key helpers ---

    def _store(self, options: StorageOptions) -> KeyValueStore:
        return self.persistent_store if options.persistent else self.session_store

    def _stores(self) -> List[KeyValueStore]:
        if self.persistent_store is self.session_store:
            return [self.session_store]
        return [self.session_store, self.persistent_store]

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _is_managed(self, full_key: str) -> bool:
        return full_key.startswith(self.prefix) and full_key != self._full_key(self.PROBE_KEY)

    # --- Encoding ---

    def encode(self, value: str, options: StorageOptions = DEFAULT_OPTIONS) -> str:
        """
        Build the stored envelope for `value`. Pure apart from reading the clock.

        Raises:
            ConfigurationError: If encryption is requested but no key was supplied
        """
        if options.encrypt and self.encryption is None:
            raise ConfigurationError("Encryption requested but the storage adapter has no encryption key")

        data = value.encode('utf-8')
        compressed = options.compress and len(data) > self.COMPRESSION_THRESHOLD_BYTES
        if compressed:
            data = zlib.compress(data)
        if options.encrypt:
            data = self.encryption.encrypt(data)

        if compressed or options.encrypt:
            payload = base64.b64encode(data).decode('ascii')
        else:
            payload = value

        now = self.clock()
        expires_at = now + options.ttl_ms / 1000.0 if options.ttl_ms is not None else None
        envelope = {
            "v": self.ENVELOPE_VERSION,
            "d": payload,
            "z": compressed,
            "e": options.encrypt,
            "t": now,
            "x": expires_at,
        }
        return json.dumps(envelope, ensure_ascii=False, separators=(',', ':'))

    def _parse_envelope(self, raw: str, key: Optional[str] = None) -> Dict[str, Any]:
        try:
            envelope = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise DecodeError(f"Stored value is not a JSON envelope: {e}", key=key) from e
        if not isinstance(envelope, dict):
            raise DecodeError("Stored value is not a JSON object", key=key)
        version = envelope.get("v")
        # bool is an int subclass and True == 1
        if type(version) is not int or version != self.ENVELOPE_VERSION:
            raise DecodeError("Unknown or missing envelope version", key=key)
        if not isinstance(envelope.get("d"), str):
            raise DecodeError("Envelope payload missing", key=key)
        timestamp = envelope.get("t")
        if not _is_finite_number(timestamp):
            raise DecodeError("Envelope timestamp missing or not finite", key=key)
        expires_at = envelope.get("x")
        if expires_at is not None and not _is_finite_number(expires_at):
            raise DecodeError("Envelope expiry is not a finite number", key=key)
        return envelope

    def _decode_payload(self, envelope: Dict[str, Any], key: Optional[str] = None) -> str:
        compressed = bool(envelope.get("z"))
        encrypted = bool(envelope.get("e"))
        if not compressed and not encrypted:
            return envelope["d"]

        try:
            data = base64.b64decode(envelope["d"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Payload is not valid base64: {e}", key=key) from e

        if encrypted:
            if self.encryption is None:
                raise DecodeError("Value is encrypted but no encryption key is configured", key=key)
            try:
                data = self.encryption.decrypt(data)
            except ValueError as e:
                raise DecodeError(f"Decryption failed: {e}", key=key) from e
        if compressed:
            try:
                data = zlib.decompress(data)
            except zlib.error as e:
                raise DecodeError(f"Decompression failed: {e}", key=key) from e
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Payload is not UTF-8: {e}", key=key) from e

    def _is_expired(self, envelope: Dict[str, Any], now: Optional[float] = None) -> bool:
        expires_at = envelope.get("x")
        if expires_at is None:
            return False
        return (now if now is not None else self.clock()) > expires_at

    # --- Public contract ---

    def set(self, key: str, value: str, options: StorageOptions = DEFAULT_OPTIONS) -> bool:
        """Encode and persist `value`. Returns False if the write did not land."""
        return self.write_encoded(key, self.encode(value, options), options)

    def write_encoded(self, key: str, blob: str, options: StorageOptions = DEFAULT_OPTIONS) -> bool:
        """Persist an envelope produced by `encode`, evicting on quota pressure."""
        store = self._store(options)
        full_key = self._full_key(key)
        if not self._write_with_retry(store, full_key, blob):
            return False
        self._enforce_budget(exclude=full_key)
        return True

    def _write_with_retry(self, store: KeyValueStore, full_key: str, blob: str) -> bool:
        try:
            store.set_item(full_key, blob)
            return True
        except QuotaExceededError as e:
            logger.warning(f"Quota exceeded in {store.name} store writing '{full_key}', evicting oldest entries")
            self._free_space(store, item_size(full_key, blob), exclude=full_key)
            try:
                store.set_item(full_key, blob)
                return True
            except StorageError as retry_error:
                logger.debug(f"Retry after eviction failed for '{full_key}': {retry_error}")
                self.last_error = retry_error if isinstance(retry_error, QuotaExceededError) else e
                return False
        except StorageError as e:
            logger.debug(f"Write of '{full_key}' to {store.name} store failed: {e}")
            self.last_error = e
            return False

    def get(self, key: str, options: StorageOptions = DEFAULT_OPTIONS) -> Optional[str]:
        """
        Return the decoded value, or None if missing or expired.

        Raises:
            DecodeError: If the stored blob cannot be decoded
        """
        store = self._store(options)
        full_key = self._full_key(key)
        try:
            raw = store.get_item(full_key)
        except StorageError as e:
            logger.debug(f"Read of '{full_key}' from {store.name} store failed: {e}")
            self.last_error = e
            return None
        if raw is None:
            return None

        envelope = self._parse_envelope(raw, key=key)
        if self._is_expired(envelope):
            logger.debug(f"Key '{key}' expired, removing")
            self._safe_remove(store, full_key)
            return None
        return self._decode_payload(envelope, key=key)

    def remove(self, key: str, options: StorageOptions = DEFAULT_OPTIONS) -> bool:
        return self._safe_remove(self._store(options), self._full_key(key))

    def has(self, key: str, options: StorageOptions = DEFAULT_OPTIONS) -> bool:
        store = self._store(options)
        full_key = self._full_key(key)
        try:
            raw = store.get_item(full_key)
        except StorageError as e:
            self.last_error = e
            return False
        if raw is None:
            return False
        try:
            envelope = self._parse_envelope(raw, key=key)
        except DecodeError:
            # Present but unreadable still counts as present
            return True
        if self._is_expired(envelope):
            self._safe_remove(store, full_key)
            return False
        return True

    def keys(self, options: StorageOptions = DEFAULT_OPTIONS) -> List[str]:
        """Managed keys (prefix stripped) in the selected store."""
        store = self._store(options)
        try:
            raw_keys = store.keys()
        except StorageError as e:
            self.last_error = e
            return []
        return [k[len(self.prefix):] for k in raw_keys if self._is_managed(k)]

    def clear(self, options: StorageOptions = DEFAULT_OPTIONS) -> int:
        """Remove every managed key from the selected store. Returns the number removed."""
        store = self._store(options)
        removed = 0
        for key in self.keys(options):
            if self._safe_remove(store, self._full_key(key)):
                removed += 1
        return removed

    def purge_expired(self, options: StorageOptions = DEFAULT_OPTIONS) -> int:
        """Eagerly remove expired keys from the selected store."""
        store = self._store(options)
        now = self.clock()
        purged = 0
        for key in self.keys(options):
            full_key = self._full_key(key)
            try:
                raw = store.get_item(full_key)
            except StorageError as e:
                self.last_error = e
                return purged
            if raw is None:
                continue
            try:
                envelope = self._parse_envelope(raw, key=key)
            except DecodeError:
                continue
            if self._is_expired(envelope, now) and self._safe_remove(store, full_key):
                purged += 1
        return purged

    def _safe_remove(self, store: KeyValueStore, full_key: str) -> bool:
        try:
            store.remove_item(full_key)
            return True
        except StorageError as e:
            logger.debug(f"Removal of '{full_key}' from {store.name} store failed: {e}")
            self.last_error = e
            return False

    def is_available(self, persistent: bool = True) -> bool:
        """Probe the selected store with a throwaway write."""
        store = self.persistent_store if persistent else self.session_store
        probe = self._full_key(self.PROBE_KEY)
        try:
            store.set_item(probe, "1")
            store.remove_item(probe)
            return True
        except StorageError as e:
            self.last_error = e
            return False

    # --- Size accounting and eviction ---

    def _managed_raw(self) -> List[Tuple[KeyValueStore, str, str]]:
        """(store, full_key, raw) for every managed key, one read per store."""
        raw_items = []
        for store in self._stores():
            try:
                snapshot = store.items()
            except StorageError as e:
                self.last_error = e
                continue
            for full_key, raw in snapshot.items():
                if self._is_managed(full_key):
                    raw_items.append((store, full_key, raw))
        return raw_items

    def _managed_items(self) -> List[Tuple[float, KeyValueStore, str, int]]:
        """(written_at, store, full_key, size) for every managed key; unreadable items sort first."""
        items = []
        for store, full_key, raw in self._managed_raw():
            try:
                written_at = float(self._parse_envelope(raw)["t"])
            except DecodeError:
                written_at = float("-inf")
            items.append((written_at, store, full_key, item_size(full_key, raw)))
        items.sort(key=lambda item: item[0])
        return items

    def get_storage_size(self) -> int:
        """Total bytes used by managed keys across both stores."""
        return sum(item_size(full_key, raw) for _, full_key, raw in self._managed_raw())

    def _evict(self, store: KeyValueStore, full_key: str) -> bool:
        if self._safe_remove(store, full_key):
            self.eviction_count += 1
            logger.info(f"Evicted '{full_key}' from {store.name} store")
            return True
        return False

    def _free_space(self, store: KeyValueStore, needed_bytes: int, exclude: str) -> None:
        """Evict oldest keys of `store` until `needed_bytes` would fit (or one key when capacity is unknown)."""
        candidates = [item for item in self._managed_items() if item[1] is store and item[2] != exclude]
        if not candidates:
            return
        if store.capacity_bytes is None:
            self._evict(store, candidates[0][2])
            return
        used = sum(size for _, _, _, size in candidates)
        for _, _, full_key, size in candidates:
            if used + needed_bytes <= store.capacity_bytes:
                break
            if self._evict(store, full_key):
                used -= size

    def _enforce_budget(self, exclude: Optional[str] = None) -> None:
        total = self.get_storage_size()
        if total <= self.max_storage_bytes:
            return
        items = self._managed_items()
        logger.warning(f"Draft storage at {total} bytes exceeds budget of {self.max_storage_bytes}, evicting oldest")
        for _, store, full_key, size in items:
            if total <= self.max_storage_bytes:
                break
            if full_key == exclude:
                continue
            if self._evict(store, full_key):
                total -= size

    # --- Backup ---

    def export_data(self) -> str:
        """Dump every managed key of both stores as raw envelopes."""
        dump: Dict[str, Dict[str, str]] = {"session": {}, "persistent": {}}
        for label, store in (("session", self.session_store), ("persistent", self.persistent_store)):
            try:
                for full_key in store.keys():
                    if self._is_managed(full_key):
                        raw = store.get_item(full_key)
                        if raw is not None:
                            dump[label][full_key[len(self.prefix):]] = raw
            except StorageError as e:
                logger.warning(f"Could not export {store.name} store: {e}")
                self.last_error = e
        return json.dumps({"format": self.EXPORT_FORMAT, "version": 1, "prefix": self.prefix, "data": dump})

    def import_data(self, blob: str) -> int:
        """
        Restore keys from an `export_data` blob. Invalid envelopes are skipped.

        Returns:
            Number of keys written

        Raises:
            DecodeError: If the blob itself is not an export
        """
        try:
            parsed = json.loads(blob)
        except (json.JSONDecodeError, TypeError) as e:
            raise DecodeError(f"Import blob is not JSON: {e}") from e
        if not isinstance(parsed, dict) or parsed.get("format") != self.EXPORT_FORMAT:
            raise DecodeError("Import blob is not a draftkeeper export")
        data = parsed.get("data")
        if not isinstance(data, dict):
            raise DecodeError("Import blob has no data section")

        written = 0
        for label, persistent in (("session", False), ("persistent", True)):
            section = data.get(label) or {}
            if not isinstance(section, dict):
                raise DecodeError(f"Import section '{label}' is not an object")
            store = self._store(StorageOptions(persistent=persistent))
            for key, raw in section.items():
                try:
                    self._parse_envelope(raw, key=key)
                except DecodeError as e:
                    logger.warning(f"Skipping invalid import entry '{key}': {e}")
                    continue
                full_key = self._full_key(key)
                if self._write_with_retry(store, full_key, raw):
                    written += 1
        self._enforce_budget()
        logger.info(f"Imported {written} draft storage keys")
        return written

#
# End of storage_adapter.py
########################################################################################################################
