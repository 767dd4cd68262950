"""
Logging configuration for draftkeeper.

Draft content is user data and may be sensitive: log statements refer to
drafts by id and size only. `preview` exists for the rare debug line that
needs a hint of the content, and is off unless DRAFTKEEPER_LOG_CONTENT=true.
"""

import os
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


DEFAULT_LOG_LEVEL = os.environ.get("DRAFTKEEPER_LOG_LEVEL", "INFO")
LOG_CONTENT = os.environ.get("DRAFTKEEPER_LOG_CONTENT", "false").lower() == "true"
PREVIEW_LENGTH = 20


def preview(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Short, log-safe stand-in for draft content."""
    if not LOG_CONTENT:
        return f"<{len(content)} chars>"
    if len(content) <= max_length:
        return repr(content)
    return f"{content[:max_length]!r}..."


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> None:
    """
    Configure loguru sinks. Call once at startup.

    Args:
        level: Minimum level, defaults to DRAFTKEEPER_LOG_LEVEL or INFO
        log_file: Optional rotating file sink
        console: Whether to log to stderr (turn off inside a full-screen TUI)
    """
    level = (level or DEFAULT_LOG_LEVEL).upper()
    logger.remove()  # Remove default handler

    if console:
        logger.add(sink=sys.stderr, level=level, colorize=True)

    if log_file:
        logger.add(
            sink=str(Path(log_file).expanduser()),
            level=level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )

    logger.info(f"draftkeeper logging configured: level={level}, file={log_file or 'none'}")
