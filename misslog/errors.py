"""
Exceptions and error logging for misslog.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class MissLogError(Exception):
    """Base class for misslog errors."""


class SnapshotImportError(MissLogError):
    """An import was rejected; the existing collection is unchanged."""


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting MISSLOG_STORE_PATH."""
    if store_path is not None:
        return Path(store_path) / "misslog-errors.log"
    store = os.environ.get("MISSLOG_STORE_PATH")
    if store:
        return Path(store) / "misslog-errors.log"
    return Path.home() / ".misslog" / "misslog-errors.log"


def log_exception(exc: Exception, context: str = "", store_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory to log into (default: resolved from env)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; the caller still reports the error
    return log_path
