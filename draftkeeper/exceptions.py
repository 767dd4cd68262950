# exceptions.py
# Description: Exception hierarchy for the auto-save engine
#
# Imports
from enum import Enum
from typing import Optional
#
#######################################################################################################################
#
# Classes:

class AutoSaveError(Exception):
    """Base exception for auto-save related errors."""
    pass


class ConfigurationError(AutoSaveError):
    """Invalid auto-save or storage configuration."""
    pass


# --- Storage ---
class StorageError(AutoSaveError):
    """Base exception for key/value store failures."""
    pass


class StorageUnavailableError(StorageError):
    """The underlying store cannot be read or written at all."""
    pass


class QuotaExceededError(StorageError):
    """A write was refused because the store is at capacity."""

    def __init__(self, message: str, requested_bytes: int = 0, capacity_bytes: Optional[int] = None):
        super().__init__(message)
        self.requested_bytes = requested_bytes
        self.capacity_bytes = capacity_bytes


# --- Decoding ---
class DecodeError(AutoSaveError):
    """A stored value could not be decompressed, decrypted or parsed."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class EntryDecodeReason(str, Enum):
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"
    MISSING_FIELD = "missing_field"
    INVALID_FIELD = "invalid_field"


class EntryDecodeError(DecodeError):
    """A decoded payload is not a valid auto-save entry."""

    def __init__(self, reason: EntryDecodeReason, detail: str = "", key: Optional[str] = None):
        message = f"{reason.value}: {detail}" if detail else reason.value
        super().__init__(message, key=key)
        self.reason = reason
        self.detail = detail


# --- Recovery ---
class RecoveryStateError(AutoSaveError):
    """Illegal recovery candidate transition (e.g. restoring a dismissed entry)."""
    pass

#
# End of exceptions.py
########################################################################################################################
