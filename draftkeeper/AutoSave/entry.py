"""
Auto-save entry model and its JSON codec.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..exceptions import EntryDecodeError, EntryDecodeReason


ENTRY_FORMAT_VERSION = 1


@dataclass(frozen=True)
class EntryMetadata:
    """Caller-supplied context about the tracked element."""

    element_type: Optional[str] = None  # input, textarea, content_editable, form
    form_name: Optional[str] = None
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "element_type": self.element_type,
            "form_name": self.form_name,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntryMetadata":
        values = {}
        for name in ("element_type", "form_name", "label"):
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, f"metadata.{name} must be a string")
            values[name] = value
        return cls(**values)


@dataclass
class AutoSaveEntry:
    """One persisted unit of unsaved work."""

    id: str
    content: str
    path: str = ""

    # Timestamps (epoch seconds)
    created_at: float = 0.0
    updated_at: float = 0.0
    expires_at: Optional[float] = None

    metadata: EntryMetadata = field(default_factory=EntryMetadata)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def touch(self, content: str, now: float) -> None:
        """Replace content in place, keeping created_at <= updated_at."""
        self.content = content
        self.updated_at = max(now, self.created_at)


def serialize_entry(entry: AutoSaveEntry) -> str:
    """Serialize an entry to its JSON string form."""
    return json.dumps({
        "format": ENTRY_FORMAT_VERSION,
        "id": entry.id,
        "content": entry.content,
        "path": entry.path,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
        "expires_at": entry.expires_at,
        "metadata": entry.metadata.to_dict(),
    }, ensure_ascii=False)


def _number(data: Dict[str, Any], name: str, required: bool = True) -> Optional[float]:
    value = data.get(name)
    if value is None:
        if required:
            raise EntryDecodeError(EntryDecodeReason.MISSING_FIELD, name)
        return None
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, f"{name} must be a number")
    # json accepts NaN and Infinity
    if not math.isfinite(value):
        raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, f"{name} must be finite")
    return float(value)


def deserialize_entry(raw: str, key: Optional[str] = None) -> AutoSaveEntry:
    """
    Parse a serialized entry.

    Args:
        raw: The JSON string produced by serialize_entry
        key: Storage key the value was read from, carried on errors for logging

    Raises:
        EntryDecodeError: With a classified reason when the value is not a valid entry
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise EntryDecodeError(EntryDecodeReason.INVALID_JSON, str(e), key=key) from e
    if not isinstance(data, dict):
        raise EntryDecodeError(EntryDecodeReason.NOT_AN_OBJECT, type(data).__name__, key=key)

    try:
        for name in ("id", "content"):
            if name not in data:
                raise EntryDecodeError(EntryDecodeReason.MISSING_FIELD, name)
            if not isinstance(data[name], str):
                raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, f"{name} must be a string")
        if not data["id"]:
            raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, "id must not be empty")

        path = data.get("path", "")
        if not isinstance(path, str):
            raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, "path must be a string")

        created_at = _number(data, "created_at")
        updated_at = _number(data, "updated_at")
        if created_at > updated_at:
            raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, "created_at is after updated_at")

        metadata_raw = data.get("metadata") or {}
        if not isinstance(metadata_raw, dict):
            raise EntryDecodeError(EntryDecodeReason.INVALID_FIELD, "metadata must be an object")

        return AutoSaveEntry(
            id=data["id"],
            content=data["content"],
            path=path,
            created_at=created_at,
            updated_at=updated_at,
            expires_at=_number(data, "expires_at", required=False),
            metadata=EntryMetadata.from_dict(metadata_raw),
        )
    except EntryDecodeError as e:
        e.key = key
        raise
