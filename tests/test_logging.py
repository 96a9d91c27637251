"""Tests for logging setup and the error log."""

import logging

from localvec.errors import (
    DocumentIndexError,
    DuplicateItemError,
    LocalVecError,
    NoTransactionError,
    StorageError,
    ValidationError,
    log_exception,
)
from localvec.logging_config import (
    OPS_LOG_FILENAME,
    configure_ops_log,
    configure_quiet_mode,
    remove_ops_log,
)


class TestOpsLog:
    """Per-index operations log."""

    def test_writes_info_records(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        try:
            logging.getLogger("localvec.document_index").info("Upserted document %s", "a.md")
            handler.flush()
            assert "Upserted document a.md" in (tmp_path / OPS_LOG_FILENAME).read_text()
        finally:
            remove_ops_log(handler)
        assert handler not in logging.getLogger("localvec").handlers

    def test_quiet_mode_silences_http_loggers(self):
        configure_quiet_mode(quiet=True)
        assert logging.getLogger("urllib3").level == logging.ERROR
        assert logging.getLogger("localvec").level == logging.WARNING


class TestErrorLog:
    """Tracebacks go to a file, not the terminal."""

    def test_log_exception(self, tmp_path, monkeypatch):
        log_path = tmp_path / "nested" / "errors.log"
        monkeypatch.setenv("LOCALVEC_ERROR_LOG", str(log_path))
        try:
            raise StorageError("disk full")
        except StorageError as e:
            returned = log_exception(e, context="test")
        assert returned == log_path
        content = log_path.read_text()
        assert "test" in content
        assert "StorageError: disk full" in content

    def test_appends(self, tmp_path, monkeypatch):
        log_path = tmp_path / "errors.log"
        monkeypatch.setenv("LOCALVEC_ERROR_LOG", str(log_path))
        log_exception(ValueError("first"))
        log_exception(ValueError("second"))
        content = log_path.read_text()
        assert "first" in content and "second" in content


class TestErrorTypes:
    """Errors share a base and the closest builtin."""

    def test_hierarchy(self):
        assert issubclass(ValidationError, ValueError)
        assert issubclass(StorageError, OSError)
        assert issubclass(NoTransactionError, RuntimeError)
        for cls in (ValidationError, StorageError, NoTransactionError, DuplicateItemError, DocumentIndexError):
            assert issubclass(cls, LocalVecError)

    def test_messages(self):
        assert str(DuplicateItemError("x")) == "Item with id x already exists"
        assert str(NoTransactionError()) == "no transaction in progress"
        err = DocumentIndexError("a.md", RuntimeError("boom"))
        assert str(err) == "Error updating document a.md: boom"
        assert err.uri == "a.md"
