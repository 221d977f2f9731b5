"""Logging configuration for suitebackup.

This module provides logging setup and utility functions for the backup
system: a rotating main log, an error-only log, console output, and
structured JSON entries carrying error codes and troubleshooting guidance.
Rotated files are compressed with gzip.
"""

import gzip
import json
import logging
import os
import shutil
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from suitebackup.config import LoggingConfig


# Logger name for the suitebackup package
LOGGER_NAME = "suitebackup"

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class ErrorCode(Enum):
    """
    Error codes for structured logging and troubleshooting.

    Each code has guidance text in ERROR_GUIDANCE that is shown to the
    user alongside the raw error.
    """
    # Authentication errors (1xxx)
    AUTH_ID_MISSING = "E1001"
    AUTH_DETECTION_FAILED = "E1002"

    # Backup store errors (2xxx)
    STORE_UNAVAILABLE = "E2001"
    BACKUP_CREATE_FAILED = "E2002"
    BACKUP_NOT_FOUND = "E2003"
    BACKUP_CHECKSUM_MISMATCH = "E2004"

    # Restore errors (3xxx)
    RESTORE_FAILED = "E3001"
    RESTORE_TIMEOUT = "E3002"
    ORIGINAL_PATH_UNKNOWN = "E3003"

    # Configuration errors (4xxx)
    CONFIG_NOT_FOUND = "E4001"
    CONFIG_INVALID = "E4002"

    # Lock errors (5xxx)
    LOCK_HELD = "E5001"

    # suitecloud CLI errors (6xxx)
    CLI_NOT_FOUND = "E6001"
    CLI_UPLOAD_FAILED = "E6002"
    CLI_IMPORT_FAILED = "E6003"
    CLI_TIMEOUT = "E6004"
    CLI_NOT_SUITESCRIPT = "E6005"

    # General errors (0xxx)
    UNKNOWN_ERROR = "E0001"


ERROR_GUIDANCE: Dict[ErrorCode, str] = {
    ErrorCode.AUTH_ID_MISSING: "No authentication ID found. Add defaultAuthId to project.json or run 'suitebackup auth set <id>'.",
    ErrorCode.AUTH_DETECTION_FAILED: "Could not detect an authentication ID from the SuiteCloud CLI. Run 'suitecloud account:setup'.",

    ErrorCode.STORE_UNAVAILABLE: "The backup directory could not be created. Check the backup_directory setting and folder permissions.",
    ErrorCode.BACKUP_CREATE_FAILED: "A backup copy could not be written. Check free space and permissions in the backup directory.",
    ErrorCode.BACKUP_NOT_FOUND: "The requested backup file does not exist. It may have been pruned or moved.",
    ErrorCode.BACKUP_CHECKSUM_MISMATCH: "The backup content no longer matches its recorded checksum. Do not restore from it.",

    ErrorCode.RESTORE_FAILED: "The file could not be restored. Check that the target folder is writable.",
    ErrorCode.RESTORE_TIMEOUT: "Restoring took longer than the configured deadline. Raise restore.timeout_seconds for large files.",
    ErrorCode.ORIGINAL_PATH_UNKNOWN: "Could not work out which file this backup belongs to. Restore it with an explicit target path.",

    ErrorCode.CONFIG_NOT_FOUND: "No configuration file found. Run 'suitebackup init' to create one.",
    ErrorCode.CONFIG_INVALID: "The configuration file is invalid. Check it for typos or run 'suitebackup init --force'.",

    ErrorCode.LOCK_HELD: "Another backup is being written. Wait for it to finish.",

    ErrorCode.CLI_NOT_FOUND: "The suitecloud executable was not found. Install @oracle/suitecloud-cli or set suitecloud.executable.",
    ErrorCode.CLI_UPLOAD_FAILED: "The upload to NetSuite failed. Check the CLI output in the log and your account permissions.",
    ErrorCode.CLI_IMPORT_FAILED: "The file was uploaded but the account version could not be imported back.",
    ErrorCode.CLI_TIMEOUT: "The SuiteCloud CLI did not answer in time. Check your network connection.",
    ErrorCode.CLI_NOT_SUITESCRIPT: "Only files under FileCabinet/SuiteScripts can be uploaded.",

    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Check the logs for more details.",
}


@dataclass
class StructuredLogEntry:
    """
    A structured log entry that can be parsed back from the log file.

    Fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Severity level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - message: Human-readable message
    - error_code: Error code from ErrorCode enum (for errors/warnings)
    - context: Additional context information
    - guidance: Troubleshooting guidance (for errors/warnings)
    """
    timestamp: str
    level: str
    message: str
    error_code: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    guidance: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Fields that are set, as a plain dict."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Serialize to JSON string for logging."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "StructuredLogEntry":
        """Parse from JSON string."""
        data = json.loads(json_str)
        return cls(**data)

    @classmethod
    def create(
        cls,
        level: str,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> "StructuredLogEntry":
        """Create a structured log entry with automatic timestamp and guidance."""
        return cls(
            timestamp=datetime.now().isoformat(),
            level=level,
            message=message,
            error_code=error_code.value if error_code else None,
            context=context,
            guidance=ERROR_GUIDANCE.get(error_code) if error_code else None,
        )


def get_error_guidance(error_code: ErrorCode) -> str:
    """Get troubleshooting guidance for an error code."""
    return ERROR_GUIDANCE.get(error_code, ERROR_GUIDANCE[ErrorCode.UNKNOWN_ERROR])


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files with gzip.

    Rotated files are named with a .gz extension.
    """

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Compress the source file into dest and remove the source.

        Falls back to a plain rename if compression fails.
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                try:
                    os.rename(source, fallback_dest)
                except OSError:
                    pass  # Best effort - don't fail logging


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    log_file: Optional[Path] = None,
    error_log_file: Optional[Path] = None,
    level: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure logging for suitebackup.

    Sets up:
    - A rotating file handler for general logs (log_file)
    - A rotating file handler for error logs only (error_log_file)
    - Console output on stderr, unless console is False
    - Automatic gzip compression of rotated files

    Args:
        config: LoggingConfig object with settings. If provided, the path
            and level arguments are ignored.
        log_file: Path to main log file (used if config is None)
        error_log_file: Path to error log file (used if config is None)
        level: Log level string (used if config is None)
        max_bytes: Maximum log file size before rotation (default 10MB)
        backup_count: Number of rotated files to keep (default 5)
        console: Whether to attach a console handler. The MCP server turns
            this off because stdout/stderr carry the protocol.

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    if config is not None:
        log_file = config.log_file
        error_log_file = config.error_log_file
        level = config.level
        if max_bytes is None:
            max_bytes = config.log_max_bytes
        if backup_count is None:
            backup_count = config.log_backup_count
    else:
        if log_file is None:
            log_file = Path.home() / ".local/log/suitebackup.log"
        if error_log_file is None:
            error_log_file = Path.home() / ".local/log/suitebackup.err"
        if level is None:
            level = "INFO"
        if max_bytes is None:
            max_bytes = DEFAULT_MAX_BYTES
        if backup_count is None:
            backup_count = DEFAULT_BACKUP_COUNT

    log_file = Path(os.path.expanduser(str(log_file)))
    error_log_file = Path(os.path.expanduser(str(error_log_file)))

    _ensure_log_directory(log_file)
    _ensure_log_directory(error_log_file)

    log_level = _get_log_level(level)

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    logger.setLevel(logging.DEBUG)  # Handlers do the filtering

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = GzipRotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    logger.addHandler(file_handler)

    error_handler = GzipRotatingFileHandler(
        error_log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    logger.addHandler(error_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(detailed_formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """
    Get the suitebackup logger, or a child logger for a component.

    Args:
        component: Optional child name, e.g. "store" gives "suitebackup.store"
    """
    if component:
        return logging.getLogger(f"{LOGGER_NAME}.{component}")
    return logging.getLogger(LOGGER_NAME)


def log_sync_start(logger: logging.Logger, file_path: Path, auth_id: str) -> None:
    """Log the start of an upload-with-backup operation."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"Sync started at {timestamp}")
    logger.info(f"File: {file_path}")
    logger.info(f"Authentication ID: {auth_id}")


def log_sync_completion(
    logger: logging.Logger,
    duration_seconds: float,
    local_backup: Optional[Path],
    account_backup: Optional[Path],
    has_differences: bool,
) -> None:
    """Log the completion of an upload-with-backup operation."""
    logger.info("Sync completed successfully")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    if local_backup:
        logger.info(f"Local backup: {local_backup}")
    if account_backup:
        logger.info(f"Account backup: {account_backup}")
    if has_differences:
        logger.info("Differences detected between local and account versions")
    else:
        logger.info("Local and account versions are identical")


def log_sync_error(
    logger: logging.Logger,
    error: Exception,
    context: Optional[str] = None,
) -> None:
    """Log a sync error, with the step that failed when known."""
    if context:
        logger.error(f"Sync failed during {context}: {error}")
    else:
        logger.error(f"Sync failed: {error}")


def log_cli_output(logger: logging.Logger, output: str) -> None:
    """Log suitecloud output line by line at DEBUG level."""
    if output.strip():
        for line in output.strip().split("\n"):
            logger.debug(f"suitecloud: {line}")


def log_structured(
    logger: logging.Logger,
    level: str,
    message: str,
    error_code: Optional[ErrorCode] = None,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """
    Log a structured entry as a JSON string.

    Returns:
        The StructuredLogEntry that was logged
    """
    entry = StructuredLogEntry.create(
        level=level,
        message=message,
        error_code=error_code,
        context=context,
    )

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.log(log_level, entry.to_json())

    return entry


def log_structured_error(
    logger: logging.Logger,
    message: str,
    error_code: ErrorCode,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """Log a structured error entry with error code and guidance."""
    return log_structured(
        logger=logger,
        level="ERROR",
        message=message,
        error_code=error_code,
        context=context,
    )


def log_structured_warning(
    logger: logging.Logger,
    message: str,
    error_code: Optional[ErrorCode] = None,
    context: Optional[Dict[str, Any]] = None,
) -> StructuredLogEntry:
    """Log a structured warning entry."""
    return log_structured(
        logger=logger,
        level="WARNING",
        message=message,
        error_code=error_code,
        context=context,
    )


def parse_structured_log(log_line: str) -> Optional[StructuredLogEntry]:
    """
    Parse a structured log entry from a log line.

    Log format: "2025-01-07 10:30:00 - suitebackup - ERROR - {json}"

    Returns:
        StructuredLogEntry if parsing succeeds, None otherwise
    """
    try:
        json_start = log_line.find('{')
        if json_start == -1:
            return None
        return StructuredLogEntry.from_json(log_line[json_start:])
    except (json.JSONDecodeError, KeyError, TypeError):
        return None


def get_recent_errors(log_file: Path, max_entries: int = 10) -> List[StructuredLogEntry]:
    """
    Get recent structured error entries from a log file.

    Returns:
        Entries in chronological order, at most max_entries of them
    """
    errors: List[StructuredLogEntry] = []

    if not log_file.exists():
        return errors

    try:
        with open(log_file, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except OSError:
        return errors

    for line in reversed(lines):
        if len(errors) >= max_entries:
            break
        entry = parse_structured_log(line)
        if entry and entry.level in ("ERROR", "CRITICAL"):
            errors.append(entry)

    return list(reversed(errors))


def map_exception_to_error_code(exception: Exception) -> ErrorCode:
    """
    Map an exception to an appropriate error code.

    A missing configuration file is recognised by its message. Otherwise
    the exception type name decides first, then the message text.
    """
    exc_type = type(exception).__name__
    exc_msg = str(exception).lower()

    type_mappings = {
        "RestoreTimeoutError": ErrorCode.RESTORE_TIMEOUT,
        "ConfigurationError": ErrorCode.CONFIG_INVALID,
        "ValidationError": ErrorCode.CONFIG_INVALID,
        "LockError": ErrorCode.LOCK_HELD,
        "SuiteCloudError": ErrorCode.CLI_NOT_FOUND,
        "FileNotFoundError": ErrorCode.BACKUP_NOT_FOUND,
        "PermissionError": ErrorCode.RESTORE_FAILED,
    }

    if "configuration file not found" in exc_msg:
        return ErrorCode.CONFIG_NOT_FOUND

    if exc_type in type_mappings:
        return type_mappings[exc_type]

    if "authentication id" in exc_msg:
        return ErrorCode.AUTH_ID_MISSING
    if "timed out" in exc_msg or "timeout" in exc_msg:
        return ErrorCode.RESTORE_TIMEOUT if "restor" in exc_msg else ErrorCode.CLI_TIMEOUT
    if "not a suitescripts file" in exc_msg:
        return ErrorCode.CLI_NOT_SUITESCRIPT
    if "failed to create backup" in exc_msg:
        return ErrorCode.BACKUP_CREATE_FAILED
    if "backup file not found" in exc_msg:
        return ErrorCode.BACKUP_NOT_FOUND
    if "original file path" in exc_msg:
        return ErrorCode.ORIGINAL_PATH_UNKNOWN
    if "lock" in exc_msg:
        return ErrorCode.LOCK_HELD
    if "config" in exc_msg:
        return ErrorCode.CONFIG_INVALID

    return ErrorCode.UNKNOWN_ERROR
