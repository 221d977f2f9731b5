"""Backup store for suitebackup.

Each backup is a flat copy of a project file plus a JSON sidecar:

    <backup_root>/<auth_id>/<source>/<relative_dir>/<name>.<stamp>.bak
    <backup_root>/<auth_id>/<source>/<relative_dir>/<name>.<stamp>.bak.meta.json

<stamp> is the UTC time in ISO 8601 with ':' and '.' replaced by '-'
(2024-05-01T10-22-33-123Z), optionally followed by a -NN sequence number
when two backups of one file land in the same millisecond.

There is no index on disk. list_backups() rebuilds it from a directory
scan on every call.
"""

import difflib
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from suitebackup.accounts import AccountInfo, AccountRegistry
from suitebackup.lock import LockError, LockManager
from suitebackup.logger import ErrorCode, log_structured_error

logger = logging.getLogger(__name__)


BACKUP_SUFFIX = ".bak"
META_SUFFIX = ".meta.json"
LOCK_FILE_NAME = ".suitebackup.lock"

DEFAULT_TIMEOUT_SECONDS = 120
LARGE_FILE_BYTES = 1024 * 1024
CHUNK_SIZE = 64 * 1024

STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
STAMP_PATTERN = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2})T(?P<h>\d{2})-(?P<m>\d{2})-(?P<s>\d{2})-(?P<ms>\d{3})Z(?:-(?P<seq>\d{2}))?$"
)


class StoreError(Exception):
    """Raised when a backup cannot be created, read or restored."""
    pass


class RestoreTimeoutError(StoreError):
    """Raised when a copy does not finish before its deadline."""
    pass


class BackupSource(str, Enum):
    """Which side of a sync a backup was taken from."""
    LOCAL = "local"
    ACCOUNT = "account"


@dataclass
class BackupRecord:
    """One stored version of a file."""
    path: Path
    timestamp: datetime
    source: BackupSource
    auth_id: str = ""
    account_info: AccountInfo = field(default_factory=AccountInfo)
    original_file: Optional[Path] = None
    relative_path: str = ""
    sha256: Optional[str] = None

    @property
    def metadata_path(self) -> Path:
        return metadata_path_for(self.path)

    @property
    def sort_key(self) -> tuple:
        """Chronological key; the -NN suffix orders same-millisecond backups."""
        return self.timestamp, stamp_sequence(self.path.name)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "timestamp": self.timestamp.isoformat(),
            "source": self.source.value,
            "authId": self.auth_id,
            "accountInfo": self.account_info.to_dict(),
            "originalFile": str(self.original_file) if self.original_file else None,
            "relativePath": self.relative_path,
            "sha256": self.sha256,
        }


@dataclass
class VerifyResult:
    """Outcome of checking a backup against its recorded checksum."""
    path: Path
    ok: bool
    expected: Optional[str]
    actual: Optional[str]
    error: Optional[str] = None


@dataclass
class PruneResult:
    """Backups removed by prune()."""
    deleted: List[Path] = field(default_factory=list)
    kept: int = 0
    freed_bytes: int = 0


def metadata_path_for(backup_path: Path) -> Path:
    """Sidecar path for a backup file."""
    return backup_path.with_name(backup_path.name + META_SUFFIX)


def format_stamp(moment: datetime) -> str:
    """
    Format a UTC time as a filename-safe stamp.

    2024-05-01T10:22:33.123Z becomes 2024-05-01T10-22-33-123Z.
    """
    moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(STAMP_FORMAT)}-{moment.microsecond // 1000:03d}Z"


def parse_stamp(stamp: str) -> Optional[datetime]:
    """Parse a stamp produced by format_stamp(), with or without a -NN suffix."""
    match = STAMP_PATTERN.match(stamp)
    if not match:
        return None
    try:
        return datetime.strptime(
            f"{match['date']}T{match['h']}:{match['m']}:{match['s']}.{match['ms']}",
            "%Y-%m-%dT%H:%M:%S.%f",
        ).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def split_backup_name(name: str) -> Optional[tuple]:
    """
    Split "<name>.<stamp>.bak" into (original name, stamp).

    Returns None for anything that is not a backup file name.
    """
    if not name.endswith(BACKUP_SUFFIX):
        return None
    stem = name[: -len(BACKUP_SUFFIX)]
    original, dot, stamp = stem.rpartition(".")
    if not dot or not original or not stamp:
        return None
    return original, stamp


def stamp_sequence(backup_name: str) -> int:
    """The -NN sequence number of a backup file name, 0 if it has none."""
    parsed = split_backup_name(backup_name)
    if parsed is None:
        return 0
    match = STAMP_PATTERN.match(parsed[1])
    if not match or not match["seq"]:
        return 0
    return int(match["seq"])


def format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.2f} MB"
    if size_bytes >= 1024:
        return f"{size_bytes / 1024:.2f} KB"
    return f"{size_bytes} bytes"


def _deadline_check(deadline: float, what: str, timeout: float) -> None:
    if time.monotonic() > deadline:
        raise RestoreTimeoutError(f"{what} timed out after {timeout:g} seconds")


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _atomic_write_bytes(target: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class BackupStore:
    """
    Stores timestamped versions of project files with JSON sidecars.

    Writers are serialized through a lock file in the backup root, and both
    the content copy and the sidecar are written via temp file + rename.
    """

    def __init__(
        self,
        backup_root: Path,
        project_root: Path,
        accounts: Optional[AccountRegistry] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        large_file_bytes: int = LARGE_FILE_BYTES,
        lock_timeout: float = 30,
    ):
        """
        Args:
            backup_root: Directory holding all backups; created if missing
            project_root: Project directory that backed-up paths are relative to
            accounts: Registry used to describe the account of each backup
            timeout_seconds: Deadline for restore and compare operations
            large_file_bytes: Size above which a restore logs a warning
            lock_timeout: Seconds to wait for another writer

        Raises:
            StoreError: If the backup root cannot be created
        """
        self.backup_root = Path(backup_root)
        self.project_root = Path(project_root)
        self.accounts = accounts if accounts is not None else AccountRegistry(self.project_root)
        self.timeout_seconds = timeout_seconds
        self.large_file_bytes = large_file_bytes
        self.lock_timeout = lock_timeout
        self._listeners: List[Callable[[], None]] = []

        logger.debug(f"[BackupStore] Ensuring backup directory exists: {self.backup_root}")
        try:
            self._ensure_directory(self.backup_root)
        except StoreError as e:
            logger.error(f"[BackupStore] CRITICAL ERROR: {e}")
            raise

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback fired after backups are created or restored."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.warning(f"[BackupStore] Change listener failed: {e}")

    def _ensure_directory(self, path: Path) -> None:
        if path.is_dir():
            return
        try:
            path.mkdir(parents=True, exist_ok=True)
            logger.debug(f"[BackupStore] Created directory: {path}")
        except OSError as e:
            raise StoreError(f"Failed to create directory: {path} ({e})")

    def relative_path(self, file_path: Path) -> str:
        """
        Path of file_path relative to the project root.

        Files outside the project keep their absolute path minus any anchor
        (drive letter or leading slash), so they still map under the root.
        """
        file_path = Path(file_path)
        try:
            return file_path.resolve().relative_to(self.project_root.resolve()).as_posix()
        except ValueError:
            logger.warning(f"[BackupStore] File is outside the project root: {file_path}")
            parts = file_path.parts[1:] if file_path.anchor else file_path.parts
            return Path(*parts).as_posix() if parts else file_path.name

    def _lock(self, label: str) -> LockManager:
        return LockManager(
            lock_path=self.backup_root / LOCK_FILE_NAME,
            timeout=self.lock_timeout,
            label=label,
        )

    def _unique_backup_path(self, directory: Path, file_name: str, moment: datetime) -> Path:
        stamp = format_stamp(moment)
        candidate = directory / f"{file_name}.{stamp}{BACKUP_SUFFIX}"
        if not candidate.exists():
            return candidate
        for seq in range(1, 100):
            candidate = directory / f"{file_name}.{stamp}-{seq:02d}{BACKUP_SUFFIX}"
            if not candidate.exists():
                logger.debug(f"[BackupStore] Timestamp collision, using sequence {seq:02d}")
                return candidate
        raise StoreError(f"Too many backups of {file_name} within one millisecond")

    def create_backup(
        self,
        file_path: Path,
        source: BackupSource,
        auth_id: Optional[str],
    ) -> Path:
        """
        Copy file_path into the store and write its sidecar.

        Args:
            file_path: Project file to back up
            source: BackupSource.LOCAL before an upload, ACCOUNT after import
            auth_id: Authentication ID of the target account

        Returns:
            Path to the new backup file

        Raises:
            StoreError: On any failure, including a missing auth_id
        """
        source = BackupSource(source)
        file_path = Path(file_path)
        try:
            if not auth_id:
                raise StoreError("No authentication ID found")

            relative = self.relative_path(file_path)
            relative_dir = Path(relative).parent
            backup_dir = self.backup_root / auth_id / source.value / relative_dir
            self._ensure_directory(backup_dir)

            account_info = self.accounts.lookup(auth_id)

            with self._lock(label=relative):
                content = file_path.read_bytes()
                moment = datetime.now(timezone.utc)
                backup_path = self._unique_backup_path(backup_dir, file_path.name, moment)

                metadata = {
                    "originalFile": str(file_path),
                    "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                    "source": source.value,
                    "authId": auth_id,
                    "relativePath": relative,
                    "accountInfo": account_info.to_dict(),
                    "sha256": hashlib.sha256(content).hexdigest(),
                }

                _atomic_write_bytes(backup_path, content)
                shutil.copymode(file_path, backup_path)
                _atomic_write_bytes(
                    metadata_path_for(backup_path),
                    json.dumps(metadata, indent=2).encode("utf-8"),
                )

            logger.info(f"[BackupStore] Created {source.value} backup: {backup_path}")
        except (OSError, LockError, StoreError) as e:
            logger.error(f"[BackupStore] Backup creation error: {e}")
            raise StoreError(f"Failed to create backup: {e}") from e

        self._notify()
        return backup_path

    def _copy_with_deadline(self, source: Path, target: Path, deadline: float, timeout: float) -> None:
        """Copy source over target via a temp file in target's directory."""
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
        try:
            with open(source, "rb") as src, os.fdopen(fd, "wb") as dst:
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                    _deadline_check(deadline, "File restoration", timeout)
                    dst.write(chunk)
            # An existing target keeps its own permissions
            shutil.copymode(target if target.exists() else source, tmp_name)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def restore_file(
        self,
        target: Path,
        backup_path: Path,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """
        Overwrite target with the content of backup_path.

        Raises:
            StoreError: If the backup is missing or the copy fails
            RestoreTimeoutError: If the copy does not finish in time
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        logger.info(f"[BackupStore] Restoring from backup: {backup_path}")
        logger.info(f"[BackupStore] Target file: {target}")

        if not backup_path or not str(backup_path):
            raise StoreError("Backup path is undefined or empty")
        if not target or not str(target):
            raise StoreError("Target path is invalid or missing")

        backup_path = Path(backup_path)
        target = Path(target)
        if not backup_path.is_file():
            error = f"Backup file not found: {backup_path}"
            logger.error(f"[BackupStore] {error}")
            raise StoreError(error)

        start = time.monotonic()
        deadline = start + timeout
        try:
            size = backup_path.stat().st_size
            logger.debug(f"[BackupStore] Backup file size: {size} bytes")
            if size > self.large_file_bytes:
                logger.warning(
                    f"[BackupStore] Large file detected ({format_size(size)}), restoration may take longer"
                )

            self._ensure_directory(target.parent)
            self._copy_with_deadline(backup_path, target, deadline, timeout)

            if not target.exists():
                raise StoreError(f"Target file not found after write: {target}")
        except StoreError:
            logger.error("[BackupStore] File restoration failed")
            raise
        except OSError as e:
            logger.error(f"[BackupStore] ERROR during file restoration: {e}")
            raise StoreError(f"Failed to restore {target}: {e}") from e

        logger.info(
            f"[BackupStore] Restoration complete in {(time.monotonic() - start) * 1000:.0f}ms: "
            f"{backup_path} -> {target}"
        )
        self._notify()

    def compare_files(
        self,
        first: Path,
        second: Path,
        timeout_seconds: Optional[float] = None,
    ) -> bool:
        """
        Return True if the two files differ.

        Any failure (missing file, read error, deadline) counts as a
        difference, so callers never skip showing a diff they needed.
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        logger.debug(f"[BackupStore] Comparing files: {first} and {second}")
        try:
            first = Path(first)
            second = Path(second)
            if not first.is_file():
                raise StoreError(f"First file not found: {first}")
            if not second.is_file():
                raise StoreError(f"Second file not found: {second}")

            size_first = first.stat().st_size
            size_second = second.stat().st_size
            if size_first != size_second:
                logger.debug("[BackupStore] File sizes differ, files are different")
                return True
            if size_first > self.large_file_bytes:
                logger.warning(
                    f"[BackupStore] Large files detected ({format_size(size_first)}), comparison may take longer"
                )

            deadline = time.monotonic() + timeout
            with open(first, "rb") as f1, open(second, "rb") as f2:
                while True:
                    _deadline_check(deadline, "File comparison", timeout)
                    chunk1 = f1.read(CHUNK_SIZE)
                    chunk2 = f2.read(CHUNK_SIZE)
                    if chunk1 != chunk2:
                        logger.debug("[BackupStore] Comparison result: files are different")
                        return True
                    if not chunk1:
                        logger.debug("[BackupStore] Comparison result: files are identical")
                        return False
        except (OSError, StoreError) as e:
            logger.error(f"[BackupStore] ERROR during comparison: {e}")
            logger.warning("[BackupStore] Assuming files are different due to error")
            return True

    def diff(self, old: Path, new: Path, context_lines: int = 3) -> List[str]:
        """
        Unified diff from old to new, as a list of lines.

        Binary content is reported with a single summary line.
        """
        old = Path(old)
        new = Path(new)
        old_bytes = old.read_bytes() if old.exists() else b""
        new_bytes = new.read_bytes() if new.exists() else b""
        try:
            old_text = old_bytes.decode("utf-8")
            new_text = new_bytes.decode("utf-8")
        except UnicodeDecodeError:
            if old_bytes == new_bytes:
                return []
            return [f"Binary files {old} and {new} differ\n"]

        return list(difflib.unified_diff(
            old_text.splitlines(keepends=True),
            new_text.splitlines(keepends=True),
            fromfile=str(old),
            tofile=str(new),
            n=context_lines,
        ))

    def read_metadata(self, backup_path: Path) -> Optional[dict]:
        """Return the parsed sidecar of a backup, or None."""
        meta_path = metadata_path_for(Path(backup_path))
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[BackupStore] Unreadable metadata {meta_path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def get_original_file_path(self, backup_path: Path) -> Optional[Path]:
        """
        Work out which project file a backup belongs to.

        Uses the sidecar's originalFile when present, otherwise infers it
        from the <auth_id>/<source>/<relative_dir>/<name>.<stamp>.bak layout.
        """
        backup_path = Path(backup_path)
        try:
            metadata = self.read_metadata(backup_path)
            if metadata and metadata.get("originalFile"):
                return Path(metadata["originalFile"])

            parsed = split_backup_name(backup_path.name)
            if parsed is None:
                return None
            file_name = parsed[0]

            relative_dir_parts = list(
                backup_path.resolve().parent.relative_to(self.backup_root.resolve()).parts
            )
            # Drop <auth_id>/<source>
            del relative_dir_parts[:2]
            return self.project_root.joinpath(*relative_dir_parts, file_name)
        except ValueError as e:
            logger.warning(f"[BackupStore] Error getting original file path: {e}")
            return None

    def _record_from(self, backup_path: Path, source: BackupSource, auth_dir: str) -> Optional[BackupRecord]:
        original = self.get_original_file_path(backup_path)
        if original is None:
            return None

        metadata = self.read_metadata(backup_path)
        timestamp: Optional[datetime] = None
        record = BackupRecord(path=backup_path, timestamp=datetime.now(timezone.utc), source=source,
                              auth_id=auth_dir, original_file=original)

        if metadata is not None:
            raw_ts = metadata.get("timestamp")
            if isinstance(raw_ts, str):
                try:
                    timestamp = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
                except ValueError:
                    timestamp = None
            record.auth_id = str(metadata.get("authId") or "")
            record.account_info = AccountInfo.from_dict(metadata.get("accountInfo"))
            record.relative_path = str(metadata.get("relativePath") or "")
            record.sha256 = metadata.get("sha256")
        else:
            parsed = split_backup_name(backup_path.name)
            if parsed is not None:
                timestamp = parse_stamp(parsed[1])

        if timestamp is None:
            try:
                timestamp = datetime.fromtimestamp(backup_path.stat().st_mtime, tz=timezone.utc)
            except OSError:
                return None
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        record.timestamp = timestamp
        return record

    def _walk_backups(self, directory: Path) -> Iterator[Path]:
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.warning(f"[BackupStore] Error finding backup files in {directory}: {e}")
            return
        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_dir():
                yield from self._walk_backups(entry)
            elif entry.is_file() and entry.name.endswith(BACKUP_SUFFIX):
                yield entry

    def iter_records(self) -> Iterator[BackupRecord]:
        """Yield every backup under the root, in directory order."""
        if not self.backup_root.is_dir():
            return
        try:
            auth_dirs = sorted(self.backup_root.iterdir())
        except OSError as e:
            logger.error(f"[BackupStore] Error listing backups: {e}")
            return

        for auth_dir in auth_dirs:
            if not auth_dir.is_dir():
                continue
            for source in BackupSource:
                source_dir = auth_dir / source.value
                if not source_dir.is_dir():
                    continue
                for backup_path in self._walk_backups(source_dir):
                    record = self._record_from(backup_path, source, auth_dir.name)
                    if record is not None:
                        yield record

    def list_backups(self) -> Dict[str, List[BackupRecord]]:
        """
        Rebuild the index: original file path -> its backups.

        Records for each file keep directory scan order; use history() for
        a time-sorted view.
        """
        backups: Dict[str, List[BackupRecord]] = {}
        for record in self.iter_records():
            backups.setdefault(str(record.original_file), []).append(record)
        return backups

    def history(self, file_path: Path) -> List[BackupRecord]:
        """All backups of one file, newest first."""
        records = self.list_backups().get(str(Path(file_path)), [])
        return sorted(records, key=lambda r: r.sort_key, reverse=True)

    def latest(self, file_path: Path, source: Optional[BackupSource] = None) -> Optional[BackupRecord]:
        """Newest backup of a file, optionally limited to one source."""
        for record in self.history(file_path):
            if source is None or record.source == source:
                return record
        return None

    def find_record(self, backup_path: Path) -> Optional[BackupRecord]:
        """Build the record for a single backup file."""
        backup_path = Path(backup_path).absolute()
        if not backup_path.is_file():
            return None
        try:
            relative = backup_path.resolve().relative_to(self.backup_root.resolve())
        except ValueError:
            return None
        if len(relative.parts) < 3:
            return None
        try:
            source = BackupSource(relative.parts[1])
        except ValueError:
            return None
        return self._record_from(backup_path, source, relative.parts[0])

    def verify(self, record: BackupRecord) -> VerifyResult:
        """Recompute a backup's SHA-256 and compare it with the sidecar."""
        expected = record.sha256
        try:
            actual = _sha256(record.path)
        except OSError as e:
            return VerifyResult(path=record.path, ok=False, expected=expected, actual=None, error=str(e))
        if expected is None:
            return VerifyResult(
                path=record.path, ok=False, expected=None, actual=actual,
                error="No checksum recorded for this backup",
            )
        if actual != expected:
            log_structured_error(
                logger,
                f"Checksum mismatch for backup {record.path}",
                ErrorCode.BACKUP_CHECKSUM_MISMATCH,
                context={"backup": str(record.path), "expected": expected, "actual": actual},
            )
        return VerifyResult(path=record.path, ok=actual == expected, expected=expected, actual=actual)

    def prune(self, max_versions_per_file: int) -> PruneResult:
        """
        Keep the newest max_versions_per_file backups per (file, source).

        0 disables pruning. Sidecars are deleted with their backups.
        """
        result = PruneResult()
        if max_versions_per_file <= 0:
            result.kept = sum(len(v) for v in self.list_backups().values())
            return result

        groups: Dict[tuple, List[BackupRecord]] = {}
        for record in self.iter_records():
            groups.setdefault((str(record.original_file), record.source), []).append(record)

        with self._lock(label="prune"):
            for records in groups.values():
                records.sort(key=lambda r: r.sort_key, reverse=True)
                result.kept += min(len(records), max_versions_per_file)
                for record in records[max_versions_per_file:]:
                    try:
                        size = record.path.stat().st_size
                        record.path.unlink()
                        meta = record.metadata_path
                        if meta.exists():
                            meta.unlink()
                    except OSError as e:
                        logger.warning(f"[BackupStore] Could not delete {record.path}: {e}")
                        result.kept += 1
                        continue
                    result.deleted.append(record.path)
                    result.freed_bytes += size

        if result.deleted:
            logger.info(
                f"[BackupStore] Pruned {len(result.deleted)} backup(s), freed {format_size(result.freed_bytes)}"
            )
            self._notify()
        return result
