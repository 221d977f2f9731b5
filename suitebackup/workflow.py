"""Upload-with-backup orchestration for suitebackup.

upload_with_backup() is the main entry point. For one project file it:
- Resolves the authentication ID
- Backs up the local version
- Uploads the file with suitecloud
- Imports the account version back over the local file
- Backs up the account version
- Restores the local version
- Compares the two backups
- Applies per-file retention when configured

Once the local backup exists, any failure puts it back over the project
file before the error is reported, so the working copy always ends up as
it was before the upload started.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional
import time

from suitebackup.accounts import AccountRegistry, resolve_auth_id
from suitebackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    resolve_backup_root,
)
from suitebackup.lock import LockError
from suitebackup.logger import (
    ErrorCode,
    get_error_guidance,
    get_logger,
    log_structured_error,
    log_sync_completion,
    log_sync_error,
    log_sync_start,
    map_exception_to_error_code,
)
from suitebackup.notify import Notifier
from suitebackup.store import BackupSource, BackupStore, RestoreTimeoutError, StoreError
from suitebackup.suitecloud import SuiteCloudCLI, SuiteCloudError


# Exit codes shared by the CLI
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_LOCK_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_SYNC_ERROR = 4
EXIT_RESTORE_ERROR = 5

STATUS_SUCCESS = "success"
STATUS_CONFIG_ERROR = "config_error"
STATUS_FILE_NOT_FOUND = "file_not_found"
STATUS_NOT_SUITESCRIPT = "not_suitescript"
STATUS_AUTH_MISSING = "auth_missing"
STATUS_BACKUP_FAILED = "backup_failed"
STATUS_UPLOAD_FAILED = "upload_failed"
STATUS_IMPORT_FAILED = "import_failed"
STATUS_ERROR = "error"

STATUS_ERROR_CODES = {
    STATUS_CONFIG_ERROR: ErrorCode.CONFIG_INVALID,
    STATUS_NOT_SUITESCRIPT: ErrorCode.CLI_NOT_SUITESCRIPT,
    STATUS_AUTH_MISSING: ErrorCode.AUTH_ID_MISSING,
    STATUS_BACKUP_FAILED: ErrorCode.BACKUP_CREATE_FAILED,
    STATUS_UPLOAD_FAILED: ErrorCode.CLI_UPLOAD_FAILED,
    STATUS_IMPORT_FAILED: ErrorCode.CLI_IMPORT_FAILED,
}

ProgressCallback = Callable[[str], None]


@dataclass
class SyncResult:
    """Result of an upload-with-backup operation."""
    success: bool
    exit_code: int
    status: str
    file_path: Optional[Path] = None
    auth_id: Optional[str] = None
    local_backup: Optional[Path] = None
    account_backup: Optional[Path] = None
    has_differences: bool = False
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    local_restored: bool = False
    pruned: List[Path] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def guidance(self) -> Optional[str]:
        return get_error_guidance(self.error_code) if self.error_code else None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status,
            "file": str(self.file_path) if self.file_path else None,
            "auth_id": self.auth_id,
            "local_backup": str(self.local_backup) if self.local_backup else None,
            "account_backup": str(self.account_backup) if self.account_backup else None,
            "has_differences": self.has_differences,
            "local_restored": self.local_restored,
            "pruned": [str(p) for p in self.pruned],
            "error": self.error_message,
            "error_code": self.error_code.value if self.error_code else None,
            "guidance": self.guidance,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class RestoreResult:
    """Result of restoring one backup over its original file."""
    success: bool
    exit_code: int
    backup_path: Path
    target: Optional[Path] = None
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None


def build_store(config: Configuration, accounts: Optional[AccountRegistry] = None) -> BackupStore:
    """Create the BackupStore described by a configuration."""
    return BackupStore(
        backup_root=resolve_backup_root(config),
        project_root=config.project_root,
        accounts=accounts if accounts is not None else AccountRegistry(config.project_root),
        timeout_seconds=config.restore.timeout_seconds,
        large_file_bytes=config.restore.large_file_warning_bytes,
    )


def _store_exit_code(error: StoreError) -> int:
    if isinstance(error.__cause__, LockError):
        return EXIT_LOCK_ERROR
    return EXIT_SYNC_ERROR


def _store_error_code(error: StoreError) -> ErrorCode:
    if isinstance(error.__cause__, LockError):
        return ErrorCode.LOCK_HELD
    return map_exception_to_error_code(error)


def upload_with_backup(
    file_path: Path,
    config: Optional[Configuration] = None,
    config_path: Optional[Path] = None,
    cli: Optional[SuiteCloudCLI] = None,
    store: Optional[BackupStore] = None,
    notifier: Optional[Notifier] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> SyncResult:
    """
    Upload a file to the account, backing up both versions around it.

    Args:
        file_path: Project file to upload
        config: Pre-loaded Configuration. If provided, config_path is ignored.
        config_path: Path to configuration file. If None, uses default path.
        cli: SuiteCloudCLI to use; built from config if None
        store: BackupStore to use; built from config if None
        notifier: Notifier to use; built from config if None
        progress_callback: Called with a short message before each step

    Returns:
        SyncResult with status, exit code and backup paths
    """
    logger = get_logger("workflow")
    start_time = time.time()
    file_path = Path(file_path).absolute()

    def progress(message: str) -> None:
        logger.info(message)
        if progress_callback is not None:
            progress_callback(message)

    def finish(result: SyncResult) -> SyncResult:
        result.duration_seconds = time.time() - start_time
        if not result.success:
            message = result.error_message or result.status
            if result.error_code is None:
                result.error_code = STATUS_ERROR_CODES.get(result.status) or map_exception_to_error_code(
                    Exception(message)
                )
            log_structured_error(
                logger,
                message,
                result.error_code,
                context={"file": str(file_path), "status": result.status},
            )
        if notifier is not None:
            if result.success:
                notifier.notify_success(file_path.name, result.has_differences, result.duration_seconds)
            else:
                notifier.notify_failure(result.error_message or result.status, result.duration_seconds)
        return result

    if config is None:
        try:
            config = parse_config(config_path)
        except (ConfigurationError, ValidationError) as e:
            return finish(SyncResult(
                success=False,
                exit_code=EXIT_CONFIG_ERROR,
                status=STATUS_CONFIG_ERROR,
                file_path=file_path,
                error_message=str(e),
                error_code=map_exception_to_error_code(e),
            ))

    if notifier is None:
        notifier = Notifier(config.notifications)

    if not file_path.is_file():
        return finish(SyncResult(
            success=False,
            exit_code=EXIT_SYNC_ERROR,
            status=STATUS_FILE_NOT_FOUND,
            file_path=file_path,
            error_message=f"File not found: {file_path}",
        ))

    if cli is None:
        cli = SuiteCloudCLI.from_config(config)

    if cli.cabinet_path(file_path) is None:
        return finish(SyncResult(
            success=False,
            exit_code=EXIT_SYNC_ERROR,
            status=STATUS_NOT_SUITESCRIPT,
            file_path=file_path,
            error_message=f"Not a SuiteScripts file: {file_path}",
        ))

    try:
        if store is None:
            store = build_store(config)
    except StoreError as e:
        log_sync_error(logger, e, "store initialization")
        return finish(SyncResult(
            success=False,
            exit_code=EXIT_SYNC_ERROR,
            status=STATUS_BACKUP_FAILED,
            file_path=file_path,
            error_message=str(e),
            error_code=ErrorCode.STORE_UNAVAILABLE,
        ))

    progress("Resolving authentication ID...")
    try:
        auth_id = resolve_auth_id(config) or cli.detect_auth_id()
    except SuiteCloudError as e:
        log_sync_error(logger, e, "authentication lookup")
        return finish(SyncResult(
            success=False,
            exit_code=EXIT_AUTH_ERROR,
            status=STATUS_AUTH_MISSING,
            file_path=file_path,
            error_message=str(e),
            error_code=ErrorCode.AUTH_DETECTION_FAILED,
        ))
    if not auth_id:
        message = "No authentication ID found. Run 'suitecloud account:setup' or 'suitebackup auth set ID'."
        logger.error(message)
        return finish(SyncResult(
            success=False,
            exit_code=EXIT_AUTH_ERROR,
            status=STATUS_AUTH_MISSING,
            file_path=file_path,
            error_message=message,
        ))

    log_sync_start(logger, file_path, auth_id)
    result = SyncResult(
        success=False,
        exit_code=EXIT_SYNC_ERROR,
        status=STATUS_ERROR,
        file_path=file_path,
        auth_id=auth_id,
    )

    progress("Creating local backup...")
    try:
        result.local_backup = store.create_backup(file_path, BackupSource.LOCAL, auth_id)
    except StoreError as e:
        log_sync_error(logger, e, "local backup")
        result.exit_code = _store_exit_code(e)
        result.error_code = _store_error_code(e)
        result.status = STATUS_BACKUP_FAILED
        result.error_message = str(e)
        return finish(result)

    try:
        progress("Uploading file...")
        upload = cli.upload_file(file_path)
        if not upload.success:
            log_sync_error(logger, Exception(upload.error or "Unknown error"), "upload")
            result.status = STATUS_UPLOAD_FAILED
            result.error_message = f"Upload failed: {upload.error}"
            return finish(result)

        progress("Importing account version...")
        imported = cli.import_file(file_path)
        if not imported.success:
            log_sync_error(logger, Exception(imported.error or "Unknown error"), "import")
            store.restore_file(file_path, result.local_backup)
            result.local_restored = True
            result.status = STATUS_IMPORT_FAILED
            result.error_message = f"File uploaded, but could not import account version: {imported.error}"
            return finish(result)

        progress("Creating account backup...")
        result.account_backup = store.create_backup(file_path, BackupSource.ACCOUNT, auth_id)

        progress("Restoring local version...")
        store.restore_file(file_path, result.local_backup)
        result.local_restored = True

        result.has_differences = store.compare_files(result.local_backup, result.account_backup)

        if config.retention.max_versions_per_file > 0:
            try:
                pruned = store.prune(config.retention.max_versions_per_file)
                result.pruned = pruned.deleted
            except (StoreError, LockError) as e:
                # Both backups exist; a failed prune does not fail the upload
                log_sync_error(logger, e, "retention")

    except (StoreError, SuiteCloudError, OSError) as e:
        log_sync_error(logger, e, "upload workflow")
        result.error_message = str(e)
        if isinstance(e, RestoreTimeoutError):
            result.exit_code = EXIT_RESTORE_ERROR
        elif isinstance(e, StoreError):
            result.exit_code = _store_exit_code(e)
        result.error_code = _store_error_code(e) if isinstance(e, StoreError) else map_exception_to_error_code(e)
        if not result.local_restored:
            try:
                store.restore_file(file_path, result.local_backup)
                result.local_restored = True
                logger.info(f"Restored pre-upload version from {result.local_backup}")
            except StoreError as restore_error:
                logger.error(f"Could not restore pre-upload version: {restore_error}")
                result.exit_code = EXIT_RESTORE_ERROR
                result.error_code = ErrorCode.RESTORE_FAILED
                result.error_message = f"{e}; restoring local backup also failed: {restore_error}"
        return finish(result)

    result.success = True
    result.exit_code = EXIT_SUCCESS
    result.status = STATUS_SUCCESS
    log_sync_completion(
        logger,
        duration_seconds=time.time() - start_time,
        local_backup=result.local_backup,
        account_backup=result.account_backup,
        has_differences=result.has_differences,
    )
    return finish(result)


def restore_backup(
    backup_path: Path,
    store: BackupStore,
    target: Optional[Path] = None,
) -> RestoreResult:
    """
    Restore a backup over its original file, or over target if given.

    Returns:
        RestoreResult; exit_code is EXIT_RESTORE_ERROR on any failure
    """
    logger = get_logger("workflow")
    backup_path = Path(backup_path)

    if target is None:
        target = store.get_original_file_path(backup_path)
        if target is None:
            message = "Could not determine original file path for this backup"
            log_structured_error(
                logger, message, ErrorCode.ORIGINAL_PATH_UNKNOWN, context={"backup": str(backup_path)}
            )
            return RestoreResult(
                success=False,
                exit_code=EXIT_RESTORE_ERROR,
                backup_path=backup_path,
                error_message=message,
                error_code=ErrorCode.ORIGINAL_PATH_UNKNOWN,
            )

    try:
        store.restore_file(Path(target), backup_path)
    except StoreError as e:
        error_code = ErrorCode.RESTORE_TIMEOUT if isinstance(e, RestoreTimeoutError) else ErrorCode.RESTORE_FAILED
        log_structured_error(
            logger, f"Restore failed: {e}", error_code, context={"backup": str(backup_path), "target": str(target)}
        )
        return RestoreResult(
            success=False,
            exit_code=EXIT_RESTORE_ERROR,
            backup_path=backup_path,
            target=Path(target),
            error_message=str(e),
            error_code=error_code,
        )

    logger.info(f"Backup restored successfully: {target}")
    return RestoreResult(success=True, exit_code=EXIT_SUCCESS, backup_path=backup_path, target=Path(target))


def backup_diff(
    backup_path: Path,
    store: BackupStore,
    against: Optional[Path] = None,
) -> List[str]:
    """
    Unified diff between the current file (or against) and a backup.

    Raises:
        StoreError: If the backup is missing or its original file is unknown
    """
    backup_path = Path(backup_path)
    if not backup_path.is_file():
        raise StoreError(f"Backup file not found: {backup_path}")

    if against is None:
        against = store.get_original_file_path(backup_path)
        if against is None:
            raise StoreError("Could not determine original file path for this backup")

    return store.diff(Path(against), backup_path)
