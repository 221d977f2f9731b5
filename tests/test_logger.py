"""Tests for the logger module."""

import gzip
import logging
from pathlib import Path

import pytest

from suitebackup.config import ConfigurationError, LoggingConfig
from suitebackup.lock import LockError
from suitebackup.logger import (
    ERROR_GUIDANCE,
    LOGGER_NAME,
    ErrorCode,
    GzipRotatingFileHandler,
    LoggingError,
    StructuredLogEntry,
    get_error_guidance,
    get_logger,
    get_recent_errors,
    log_cli_output,
    log_structured_error,
    log_structured_warning,
    log_sync_completion,
    log_sync_error,
    log_sync_start,
    map_exception_to_error_code,
    parse_structured_log,
    setup_logging,
)
from suitebackup.store import RestoreTimeoutError
from suitebackup.suitecloud import SuiteCloudError


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_with_config(self, tmp_path):
        config = LoggingConfig(
            level="INFO",
            log_file=tmp_path / "test.log",
            error_log_file=tmp_path / "test.err",
        )

        logger = setup_logging(config=config)

        assert logger.name == LOGGER_NAME
        assert len(logger.handlers) == 3  # file, error, console

    def test_console_can_be_disabled(self, tmp_path):
        logger = setup_logging(
            log_file=tmp_path / "test.log",
            error_log_file=tmp_path / "test.err",
            console=False,
        )
        assert len(logger.handlers) == 2
        assert all(isinstance(h, GzipRotatingFileHandler) for h in logger.handlers)

    def test_repeated_setup_does_not_duplicate_handlers(self, tmp_path):
        kwargs = dict(log_file=tmp_path / "a.log", error_log_file=tmp_path / "a.err", console=False)
        setup_logging(**kwargs)
        logger = setup_logging(**kwargs)
        assert len(logger.handlers) == 2

    def test_creates_log_directory(self, tmp_path):
        log_file = tmp_path / "nested" / "dir" / "test.log"
        setup_logging(log_file=log_file, error_log_file=tmp_path / "nested" / "test.err", console=False)
        assert log_file.parent.is_dir()

    def test_invalid_level_raises(self, tmp_path):
        with pytest.raises(LoggingError, match="Invalid log level"):
            setup_logging(
                log_file=tmp_path / "test.log",
                error_log_file=tmp_path / "test.err",
                level="LOUD",
            )

    def test_errors_go_to_error_log_only_at_error_level(self, tmp_path):
        log_file = tmp_path / "test.log"
        error_file = tmp_path / "test.err"
        logger = setup_logging(log_file=log_file, error_log_file=error_file, level="INFO", console=False)

        get_logger("store").info("routine message")
        get_logger("store").error("broken message")
        for handler in logger.handlers:
            handler.flush()

        assert "routine message" in log_file.read_text()
        assert "broken message" in log_file.read_text()
        assert "routine message" not in error_file.read_text()
        assert "broken message" in error_file.read_text()


class TestGetLogger:
    """Tests for get_logger."""

    def test_root_logger(self):
        assert get_logger().name == LOGGER_NAME

    def test_component_logger(self):
        assert get_logger("workflow").name == f"{LOGGER_NAME}.workflow"


class TestGzipRotation:
    """Rotated log files are compressed."""

    def test_rotation_compresses(self, tmp_path):
        log_file = tmp_path / "rotate.log"
        handler = GzipRotatingFileHandler(log_file, maxBytes=200, backupCount=2, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        test_logger = logging.getLogger("suitebackup-rotation-test")
        test_logger.addHandler(handler)
        test_logger.setLevel(logging.INFO)
        try:
            for i in range(20):
                test_logger.info(f"line {i} " + "x" * 40)
        finally:
            test_logger.removeHandler(handler)
            handler.close()

        rotated = tmp_path / "rotate.log.1.gz"
        assert rotated.exists()
        with gzip.open(rotated, "rt", encoding="utf-8") as f:
            assert "line" in f.read()


class TestSyncLogHelpers:
    """The sync log helpers write the expected messages."""

    def test_start_and_completion(self, caplog):
        logger = get_logger("workflow")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            log_sync_start(logger, Path("/p/FileCabinet/SuiteScripts/a.js"), "prod")
            log_sync_completion(logger, 1.5, Path("/b/local.bak"), Path("/b/account.bak"), True)

        text = caplog.text
        assert "Authentication ID: prod" in text
        assert "Duration: 1.50 seconds" in text
        assert "Differences detected" in text

    def test_error_with_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            log_sync_error(get_logger("workflow"), Exception("boom"), "upload")
        assert "Sync failed during upload: boom" in caplog.text

    def test_cli_output_logged_per_line(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            log_cli_output(get_logger("suitecloud"), "first\nsecond\n")
        assert "suitecloud: first" in caplog.text
        assert "suitecloud: second" in caplog.text


class TestStructuredLogging:
    """Structured JSON log entries with error codes."""

    def test_every_error_code_has_guidance(self):
        for code in ErrorCode:
            assert code in ERROR_GUIDANCE
            assert get_error_guidance(code)

    def test_entry_json_round_trip(self):
        entry = StructuredLogEntry.create("ERROR", "lock busy", ErrorCode.LOCK_HELD, {"pid": 42})
        parsed = StructuredLogEntry.from_json(entry.to_json())
        assert parsed == entry
        assert parsed.error_code == "E5001"
        assert parsed.guidance == ERROR_GUIDANCE[ErrorCode.LOCK_HELD]

    def test_parse_structured_log_line(self):
        entry = StructuredLogEntry.create("WARNING", "slow restore")
        line = f"2025-01-07 10:30:00 - suitebackup - WARNING - {entry.to_json()}"
        assert parse_structured_log(line) == entry

    def test_parse_plain_line_returns_none(self):
        assert parse_structured_log("2025-01-07 10:30:00 - suitebackup - INFO - hello") is None

    def test_get_recent_errors_reads_back_errors_only(self, tmp_path):
        log_file = tmp_path / "test.log"
        logger = setup_logging(
            log_file=log_file,
            error_log_file=tmp_path / "test.err",
            level="DEBUG",
            console=False,
        )
        log_structured_warning(logger, "just a warning")
        log_structured_error(logger, "first failure", ErrorCode.CLI_UPLOAD_FAILED)
        log_structured_error(logger, "second failure", ErrorCode.RESTORE_TIMEOUT)
        for handler in logger.handlers:
            handler.flush()

        errors = get_recent_errors(log_file, max_entries=10)
        assert [e.message for e in errors] == ["first failure", "second failure"]

        latest = get_recent_errors(log_file, max_entries=1)
        assert [e.message for e in latest] == ["second failure"]

    def test_get_recent_errors_missing_file(self, tmp_path):
        assert get_recent_errors(tmp_path / "nope.log") == []


class TestMapExceptionToErrorCode:
    """Exceptions map to error codes by type first, then by message."""

    @pytest.mark.parametrize("exception,expected", [
        (RestoreTimeoutError("File restoration timed out"), ErrorCode.RESTORE_TIMEOUT),
        (ConfigurationError("bad"), ErrorCode.CONFIG_INVALID),
        (ConfigurationError("Configuration file not found: /tmp/x.toml"), ErrorCode.CONFIG_NOT_FOUND),
        (LockError("held"), ErrorCode.LOCK_HELD),
        (SuiteCloudError("suitecloud executable not found"), ErrorCode.CLI_NOT_FOUND),
        (Exception("Failed to create backup: No authentication ID found"), ErrorCode.AUTH_ID_MISSING),
        (Exception("Command timed out after 300 seconds"), ErrorCode.CLI_TIMEOUT),
        (Exception("Invalid file path: Not a SuiteScripts file"), ErrorCode.CLI_NOT_SUITESCRIPT),
        (Exception("Failed to create backup: disk full"), ErrorCode.BACKUP_CREATE_FAILED),
        (Exception("Could not determine original file path for this backup"), ErrorCode.ORIGINAL_PATH_UNKNOWN),
        (Exception("something odd"), ErrorCode.UNKNOWN_ERROR),
    ])
    def test_mapping(self, exception, expected):
        assert map_exception_to_error_code(exception) == expected
