"""
Error types and error logging utilities for localvec.

Every failure raised by the store, the catalog, or the CLI derives from
LocalVecError. The subclasses also derive from the closest builtin
(ValueError, RuntimeError, OSError) so callers can catch either family.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class LocalVecError(Exception):
    """Base class for all localvec errors."""


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

class ValidationError(LocalVecError, ValueError):
    """Invalid input: missing vector, bad splitter config, bad filter."""


# -----------------------------------------------------------------------------
# Conflict
# -----------------------------------------------------------------------------

class ConflictError(LocalVecError):
    """An operation collides with existing state."""


class DuplicateItemError(ConflictError):
    def __init__(self, item_id: str):
        super().__init__(f"Item with id {item_id} already exists")
        self.item_id = item_id


class IndexExistsError(ConflictError):
    def __init__(self, folder_path: str):
        super().__init__(f"Index already exists: {folder_path}")
        self.folder_path = folder_path


class TransactionInProgressError(ConflictError):
    def __init__(self):
        super().__init__("transaction already in progress")


# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

class StateError(LocalVecError, RuntimeError):
    """The store is not in a state that allows the operation."""


class NoTransactionError(StateError):
    def __init__(self):
        super().__init__("no transaction in progress")


class EmbeddingsNotConfiguredError(StateError):
    def __init__(self):
        super().__init__("embeddings model not configured")


class IndexNotFoundError(StateError):
    def __init__(self, path: str):
        super().__init__(f"Index not found: {path}")
        self.path = path


# -----------------------------------------------------------------------------
# IO and upstream
# -----------------------------------------------------------------------------

class StorageError(LocalVecError, OSError):
    """A storage read, write or delete failed. The cause is chained."""


class IndexCreationError(StorageError):
    """Creating an index failed; partially written files were removed."""


class EmbeddingsError(LocalVecError):
    """The embeddings model failed or returned a non-success status."""

    def __init__(self, message: str, status: str = "error"):
        super().__init__(message)
        self.status = status


class DocumentIndexError(LocalVecError):
    """A document upsert or delete failed and was rolled back."""

    def __init__(self, uri: str, cause: Exception):
        super().__init__(f"Error updating document {uri}: {cause}")
        self.uri = uri


# -----------------------------------------------------------------------------
# Error log
# -----------------------------------------------------------------------------

def _error_log_path() -> Path:
    """Resolve error log path, respecting LOCALVEC_ERROR_LOG."""
    override = os.environ.get("LOCALVEC_ERROR_LOG")
    if override:
        return Path(override)
    return Path.home() / ".localvec" / "localvec-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
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
        pass  # Can't write error log, don't crash over it
    return log_path
