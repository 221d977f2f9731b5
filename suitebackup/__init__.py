"""suitebackup - Versioned backups around SuiteCloud file uploads."""

__version__ = "0.1.0"

from suitebackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    format_config,
    create_default_config,
    resolve_backup_root,
)
from suitebackup.lock import LockManager, LockError
from suitebackup.logger import (
    LoggingError,
    setup_logging,
    get_logger,
    log_sync_start,
    log_sync_completion,
    log_sync_error,
    log_cli_output,
)
from suitebackup.accounts import (
    AccountInfo,
    AccountRegistry,
    resolve_auth_id,
)
from suitebackup.suitecloud import (
    CommandResult,
    SuiteCloudCLI,
    SuiteCloudError,
)
from suitebackup.store import (
    BackupRecord,
    BackupSource,
    BackupStore,
    RestoreTimeoutError,
    StoreError,
)
from suitebackup.workflow import (
    SyncResult,
    RestoreResult,
    upload_with_backup,
    restore_backup,
    backup_diff,
    EXIT_SUCCESS,
    EXIT_CONFIG_ERROR,
    EXIT_LOCK_ERROR,
    EXIT_AUTH_ERROR,
    EXIT_SYNC_ERROR,
    EXIT_RESTORE_ERROR,
)

__all__ = [
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "format_config",
    "create_default_config",
    "resolve_backup_root",
    "LockManager",
    "LockError",
    "LoggingError",
    "setup_logging",
    "get_logger",
    "log_sync_start",
    "log_sync_completion",
    "log_sync_error",
    "log_cli_output",
    "AccountInfo",
    "AccountRegistry",
    "resolve_auth_id",
    "CommandResult",
    "SuiteCloudCLI",
    "SuiteCloudError",
    "BackupRecord",
    "BackupSource",
    "BackupStore",
    "RestoreTimeoutError",
    "StoreError",
    "SyncResult",
    "RestoreResult",
    "upload_with_backup",
    "restore_backup",
    "backup_diff",
    "EXIT_SUCCESS",
    "EXIT_CONFIG_ERROR",
    "EXIT_LOCK_ERROR",
    "EXIT_AUTH_ERROR",
    "EXIT_SYNC_ERROR",
    "EXIT_RESTORE_ERROR",
]
