"""Configuration management for suitebackup.

This module provides dataclasses for configuration and functions for
parsing/formatting TOML configuration files.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os
import tomllib


class ConfigurationError(Exception):
    """Raised when configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


# Directory name used when backup_directory is not configured
DEFAULT_BACKUP_DIRECTORY = "backups"


@dataclass
class SuiteCloudConfig:
    """Configuration for the external suitecloud CLI."""
    executable: str = "suitecloud"
    command_timeout_seconds: int = 300


@dataclass
class RestoreConfig:
    """Configuration for restore and comparison deadlines."""
    timeout_seconds: int = 120
    large_file_warning_bytes: int = 1024 * 1024


@dataclass
class RetentionConfig:
    """Configuration for per-file version retention."""
    max_versions_per_file: int = 0  # 0 = keep everything


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/suitebackup.log"
    )
    error_log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/suitebackup.err"
    )
    log_max_size_mb: int = 10
    log_backup_count: int = 5

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class RetryConfig:
    """Configuration for retrying transient suitecloud failures."""
    retry_count: int = 2
    retry_delay_seconds: float = 2.0


@dataclass
class NotificationConfig:
    """Configuration for desktop notifications."""
    notify_on_success: bool = False
    notify_on_failure: bool = True


@dataclass
class Configuration:
    """Main configuration for suitebackup."""
    project_root: Path
    backup_directory: Path = field(
        default_factory=lambda: Path(DEFAULT_BACKUP_DIRECTORY)
    )
    default_auth_id: Optional[str] = None
    suitecloud: SuiteCloudConfig = field(default_factory=SuiteCloudConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


# Default config file path
DEFAULT_CONFIG_PATH = Path.home() / ".config/suitebackup/config.toml"

# Required keys in configuration
REQUIRED_KEYS = ["project_root"]


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # bool is a subclass of int; reject it where an int is expected
    if expected_type is int and isinstance(value, bool):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _validate_number(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int or float, "
            f"got {type(value).__name__}"
        )
    return float(value)


def _parse_suitecloud_config(data: Dict[str, Any]) -> SuiteCloudConfig:
    """Parse suitecloud CLI configuration from dict."""
    section = data.get("suitecloud", {})

    executable = section.get("executable", "suitecloud")
    _validate_type(executable, str, "suitecloud.executable")

    timeout = section.get("command_timeout_seconds", 300)
    _validate_type(timeout, int, "suitecloud.command_timeout_seconds")

    return SuiteCloudConfig(executable=executable, command_timeout_seconds=timeout)


def _parse_restore_config(data: Dict[str, Any]) -> RestoreConfig:
    """Parse restore configuration from dict."""
    section = data.get("restore", {})

    timeout = section.get("timeout_seconds", 120)
    _validate_type(timeout, int, "restore.timeout_seconds")

    warning = section.get("large_file_warning_bytes", 1024 * 1024)
    _validate_type(warning, int, "restore.large_file_warning_bytes")

    return RestoreConfig(timeout_seconds=timeout, large_file_warning_bytes=warning)


def _parse_retention_config(data: Dict[str, Any]) -> RetentionConfig:
    """Parse retention configuration from dict."""
    section = data.get("retention", {})

    max_versions = section.get("max_versions_per_file", 0)
    _validate_type(max_versions, int, "retention.max_versions_per_file")
    if max_versions < 0:
        raise ValidationError(
            "Key 'retention.max_versions_per_file' must be zero or positive"
        )

    return RetentionConfig(max_versions_per_file=max_versions)


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")

    log_file = logging_data.get(
        "log_file",
        str(Path.home() / ".local/log/suitebackup.log")
    )
    _validate_type(log_file, str, "logging.log_file")

    error_log_file = logging_data.get(
        "error_log_file",
        str(Path.home() / ".local/log/suitebackup.err")
    )
    _validate_type(error_log_file, str, "logging.error_log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level,
        log_file=Path(log_file),
        error_log_file=Path(error_log_file),
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def _parse_retry_config(data: Dict[str, Any]) -> RetryConfig:
    """Parse retry configuration from dict."""
    retry_data = data.get("retry", {})

    retry_count = retry_data.get("retry_count", 2)
    _validate_type(retry_count, int, "retry.retry_count")

    delay = _validate_number(
        retry_data.get("retry_delay_seconds", 2.0), "retry.retry_delay_seconds"
    )

    return RetryConfig(retry_count=retry_count, retry_delay_seconds=delay)


def _parse_notifications_config(data: Dict[str, Any]) -> NotificationConfig:
    """Parse notifications configuration from dict."""
    notifications_data = data.get("notifications", {})

    notify_on_success = notifications_data.get("notify_on_success", False)
    _validate_type(notify_on_success, bool, "notifications.notify_on_success")

    notify_on_failure = notifications_data.get("notify_on_failure", True)
    _validate_type(notify_on_failure, bool, "notifications.notify_on_failure")

    return NotificationConfig(
        notify_on_success=notify_on_success,
        notify_on_failure=notify_on_failure,
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Parse TOML string into Configuration object.

    Args:
        toml_content: TOML formatted string

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If required key is missing
        ValidationError: If value has wrong type
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    # Main section may be nested under [main] or at root
    main_data = data.get("main", data)

    for key in REQUIRED_KEYS:
        if key not in main_data:
            raise ConfigurationError(f"Missing required configuration key: '{key}'")

    project_root = main_data["project_root"]
    _validate_type(project_root, str, "project_root")

    backup_directory = main_data.get("backup_directory", DEFAULT_BACKUP_DIRECTORY)
    _validate_type(backup_directory, str, "backup_directory")

    default_auth_id = main_data.get("default_auth_id")
    if default_auth_id is not None:
        _validate_type(default_auth_id, str, "default_auth_id")
        default_auth_id = default_auth_id or None

    return Configuration(
        project_root=Path(os.path.expanduser(project_root)),
        backup_directory=Path(os.path.expanduser(backup_directory)),
        default_auth_id=default_auth_id,
        suitecloud=_parse_suitecloud_config(data),
        restore=_parse_restore_config(data),
        retention=_parse_retention_config(data),
        logging=_parse_logging_config(data),
        retry=_parse_retry_config(data),
        notifications=_parse_notifications_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Parse TOML configuration file into Configuration object.

    Args:
        config_path: Path to config file. Defaults to ~/.config/suitebackup/config.toml

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If file doesn't exist or required key missing
        ValidationError: If value has wrong type
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text()
    except PermissionError:
        raise ConfigurationError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content)


def resolve_backup_root(config: Configuration) -> Path:
    """
    Return the absolute backup root.

    A relative backup_directory is taken relative to the project root.
    """
    if config.backup_directory.is_absolute():
        return config.backup_directory
    return config.project_root / config.backup_directory


def _escape_toml_string(s: str) -> str:
    """Escape a string for TOML basic string format."""
    return s.replace("\\", "\\\\").replace('"', '\\"')


def format_config(config: Configuration) -> str:
    """
    Format Configuration object back to TOML string.

    Used by `auth set` to persist changes and by tests.
    """
    lines = []

    lines.append("[main]")
    lines.append(f'project_root = "{_escape_toml_string(str(config.project_root))}"')
    lines.append(f'backup_directory = "{_escape_toml_string(str(config.backup_directory))}"')
    if config.default_auth_id:
        lines.append(f'default_auth_id = "{_escape_toml_string(config.default_auth_id)}"')
    lines.append("")

    lines.append("[suitecloud]")
    lines.append(f'executable = "{_escape_toml_string(config.suitecloud.executable)}"')
    lines.append(f"command_timeout_seconds = {config.suitecloud.command_timeout_seconds}")
    lines.append("")

    lines.append("[restore]")
    lines.append(f"timeout_seconds = {config.restore.timeout_seconds}")
    lines.append(f"large_file_warning_bytes = {config.restore.large_file_warning_bytes}")
    lines.append("")

    lines.append("[retention]")
    lines.append(f"max_versions_per_file = {config.retention.max_versions_per_file}")
    lines.append("")

    lines.append("[logging]")
    lines.append(f'level = "{_escape_toml_string(config.logging.level)}"')
    lines.append(f'log_file = "{_escape_toml_string(str(config.logging.log_file))}"')
    lines.append(f'error_log_file = "{_escape_toml_string(str(config.logging.error_log_file))}"')
    lines.append(f"log_max_size_mb = {config.logging.log_max_size_mb}")
    lines.append(f"log_backup_count = {config.logging.log_backup_count}")
    lines.append("")

    lines.append("[retry]")
    lines.append(f"retry_count = {config.retry.retry_count}")
    lines.append(f"retry_delay_seconds = {config.retry.retry_delay_seconds}")
    lines.append("")

    lines.append("[notifications]")
    lines.append(f"notify_on_success = {'true' if config.notifications.notify_on_success else 'false'}")
    lines.append(f"notify_on_failure = {'true' if config.notifications.notify_on_failure else 'false'}")

    return "\n".join(lines)


def create_default_config(project_root: Optional[Path] = None) -> str:
    """
    Generate default configuration TOML for `suitebackup init`.

    Args:
        project_root: SuiteCloud project directory. Defaults to the current directory.

    Returns:
        TOML formatted string with default configuration
    """
    root = _escape_toml_string(str(project_root or Path.cwd()))
    return f'''# suitebackup configuration file

[main]
# SuiteCloud project directory (the folder holding project.json)
project_root = "{root}"

# Where backups are stored. Relative paths are resolved against project_root.
backup_directory = "{DEFAULT_BACKUP_DIRECTORY}"

# Authentication ID used when project.json has no defaultAuthId
# default_auth_id = "my-sandbox"

[suitecloud]
# Path or name of the SuiteCloud CLI executable
executable = "suitecloud"
command_timeout_seconds = 300

[restore]
# Wall-clock deadline for restore and comparison
timeout_seconds = 120
large_file_warning_bytes = 1048576

[retention]
# Versions kept per file and source after each upload (0 = unlimited)
max_versions_per_file = 0

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR
level = "INFO"
log_file = "~/.local/log/suitebackup.log"
error_log_file = "~/.local/log/suitebackup.err"
log_max_size_mb = 10
log_backup_count = 5

[retry]
# Retries for transient suitecloud failures (network resets, timeouts)
retry_count = 2
retry_delay_seconds = 2.0

[notifications]
notify_on_success = false
notify_on_failure = true
'''
