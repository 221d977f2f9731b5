"""Lock management for suitebackup.

Backups of the same file must not interleave: two writers racing on the
same timestamp name or the same sidecar would leave a content file paired
with the wrong metadata. The store serializes writers through an exclusive
fcntl.flock on a lock file inside the backup root.
"""

import fcntl
import json
import os
import time
from pathlib import Path
from typing import Optional


class LockError(Exception):
    """Raised when lock cannot be acquired."""
    pass


class LockManager:
    """
    Exclusive, process-level lock with holder tracking.

    The holder writes {"pid": ..., "label": ...} into the lock file while it
    holds the flock, so a waiting process can report who is in the way.
    A holder whose PID no longer exists is treated as stale and replaced.

    The lock file itself is left in place on release. Unlinking it would let
    a waiter that already opened the old inode hold a lock nobody else sees.
    """

    DEFAULT_LOCK_PATH = Path.home() / ".cache/suitebackup/backup.lock"

    def __init__(
        self,
        lock_path: Optional[Path] = None,
        timeout: float = 5,
        label: str = "",
    ):
        """
        Args:
            lock_path: Path to lock file. Defaults to ~/.cache/suitebackup/backup.lock
            timeout: Seconds to wait for the lock before raising LockError
            label: Free text stored with the holder PID, e.g. the file being backed up
        """
        self.lock_path = lock_path if lock_path is not None else self.DEFAULT_LOCK_PATH
        self.timeout = timeout
        self.label = label
        self._lock_fd: Optional[int] = None

    @property
    def acquired(self) -> bool:
        return self._lock_fd is not None

    def acquire(self) -> bool:
        """
        Acquire the lock, polling until the timeout expires.

        Returns True once the lock is held.

        Raises:
            LockError: If the lock file cannot be opened or another process
                keeps the lock past the timeout.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockError(f"Cannot open lock file {self.lock_path}: {e}")

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise LockError(self._describe_holder())
                time.sleep(0.05)

        self._lock_fd = fd
        self._write_holder()
        return True

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        if self._lock_fd is None:
            return
        try:
            os.ftruncate(self._lock_fd, 0)
        except OSError:
            pass
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        except OSError:
            pass
        try:
            os.close(self._lock_fd)
        except OSError:
            pass
        self._lock_fd = None

    def is_locked(self) -> bool:
        """Check if the lock is currently held by any process."""
        if not self.lock_path.exists():
            return False
        try:
            fd = os.open(str(self.lock_path), os.O_RDONLY)
        except OSError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        except BlockingIOError:
            return True
        finally:
            os.close(fd)

    def read_holder(self) -> Optional[dict]:
        """Return the recorded holder as {"pid", "label"}, or None."""
        try:
            content = self.lock_path.read_text().strip()
        except OSError:
            return None
        if not content:
            return None
        try:
            holder = json.loads(content)
        except json.JSONDecodeError:
            return None
        if not isinstance(holder, dict) or not isinstance(holder.get("pid"), int):
            return None
        return holder

    def get_lock_holder_pid(self) -> Optional[int]:
        holder = self.read_holder()
        if holder is None or not self._is_process_running(holder["pid"]):
            return None
        return holder["pid"]

    def _describe_holder(self) -> str:
        holder = self.read_holder()
        if holder is None:
            return f"Lock held by another process after {self.timeout}s timeout"
        label = holder.get("label")
        suffix = f" ({label})" if label else ""
        return f"Lock held by process {holder['pid']}{suffix} after {self.timeout}s timeout"

    def _is_process_running(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True

    def _write_holder(self) -> None:
        if self._lock_fd is None:
            return
        payload = json.dumps({"pid": os.getpid(), "label": self.label})
        try:
            os.ftruncate(self._lock_fd, 0)
            os.lseek(self._lock_fd, 0, os.SEEK_SET)
            os.write(self._lock_fd, payload.encode())
        except OSError:
            pass  # Holder info is advisory

    def __enter__(self) -> "LockManager":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
