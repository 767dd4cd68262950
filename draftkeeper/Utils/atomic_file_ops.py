"""
Atomic file writes for the durable draft store.

A crash in the middle of a write must leave either the previous store file or
the new one on disk, never a truncated mix of both.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union

from loguru import logger


def atomic_write_text(
    file_path: Union[str, Path],
    content: str,
    encoding: str = 'utf-8',
    mode: int = 0o600
) -> None:
    """
    Write text content to a file atomically.

    Content goes to a temporary file in the target's directory, which is then
    renamed over the target with os.replace.

    Args:
        file_path: Path to the target file
        content: Text content to write
        encoding: Text encoding (default: utf-8)
        mode: File permissions (default: 0o600, drafts are private)

    Raises:
        OSError: If the write or rename operation fails
    """
    file_path = Path(file_path)
    parent_dir = file_path.parent
    parent_dir.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        fd, temp_path = tempfile.mkstemp(
            dir=parent_dir,
            prefix=f".{file_path.name}.",
            suffix=".tmp",
            text=True
        )
        with os.fdopen(fd, 'w', encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, mode)
        os.replace(temp_path, str(file_path))
        logger.debug(f"Atomically wrote {len(content)} chars to {file_path}")

    except OSError as e:
        if temp_path and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                logger.debug(f"Could not remove temp file {temp_path}")
        logger.error(f"Failed to atomically write to {file_path}: {e}")
        raise


def atomic_write_json(
    file_path: Union[str, Path],
    data: Dict[str, Any],
    encoding: str = 'utf-8',
    mode: int = 0o600,
    indent: Union[int, None] = None
) -> None:
    """Serialize `data` to JSON and write it atomically."""
    content = json.dumps(data, indent=indent, ensure_ascii=False)
    atomic_write_text(file_path, content, encoding=encoding, mode=mode)
