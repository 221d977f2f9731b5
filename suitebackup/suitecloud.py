"""Gateway to the SuiteCloud command-line tool.

Remote synchronization and authentication are handled entirely by the
`suitecloud` CLI. This module spawns it with the project root as working
directory and scrapes its text output with regular expressions.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Sequence

from suitebackup.accounts import AccountInfo
from suitebackup.config import Configuration
from suitebackup.logger import log_cli_output
from suitebackup.retry import RetryAttempt, is_transient_failure, retry_with_backoff

logger = logging.getLogger(__name__)


NOT_SUITESCRIPT_ERROR = "Invalid file path: Not a SuiteScripts file"

CREDENTIALS_FOUND_MARKER = "Account credentials were found"
AUTH_ID_PATTERN: Pattern[str] = re.compile(r"ID: (\S+)")

# One account per line of `account:manageauth --list`, fields separated by "|"
ACCOUNT_LINE_PATTERN: Pattern[str] = re.compile(r"^\s*(?P<auth_id>[\w.\-]+)\s*\|\s*(?P<rest>.+?)\s*$")
URL_PATTERN: Pattern[str] = re.compile(r"https?://\S+")
COMPANY_ID_PATTERN: Pattern[str] = re.compile(r"^\d+(?:[_\-][A-Za-z0-9]+)?$")
NAME_WITH_ID_PATTERN: Pattern[str] = re.compile(r"^(?P<name>.*?)\s*\((?P<id>\d+(?:[_\-][A-Za-z0-9]+)?)\)\s*$")
FIELD_LABEL_PATTERN: Pattern[str] = re.compile(r"^(?:Account|Company|Name|URL|Domain)\s*:\s*", re.IGNORECASE)
ROLE_PATTERN: Pattern[str] = re.compile(r"^Role\s*:", re.IGNORECASE)

CABINET_MARKER = "FileCabinet/SuiteScripts"
SCRIPTS_MARKER = "SuiteScripts"


class SuiteCloudError(Exception):
    """Raised when the suitecloud executable cannot be run at all."""
    pass


@dataclass
class CommandResult:
    """Outcome of one suitecloud invocation."""
    success: bool
    output: str = ""
    error: Optional[str] = None
    return_code: Optional[int] = None


def parse_auth_id(output: str) -> Optional[str]:
    """Extract the auth ID from `account:manageauth` output, if credentials exist."""
    if not output or CREDENTIALS_FOUND_MARKER not in output:
        return None
    match = AUTH_ID_PATTERN.search(output)
    return match.group(1) if match else None


def _parse_account_fields(fields: List[str]) -> AccountInfo:
    info = AccountInfo()
    for raw in fields:
        value = FIELD_LABEL_PATTERN.sub("", raw.strip())
        if not value or ROLE_PATTERN.match(raw.strip()):
            continue
        url_match = URL_PATTERN.search(value)
        if url_match:
            info.url = info.url or url_match.group(0)
            continue
        if COMPANY_ID_PATTERN.match(value):
            info.id = info.id or value
            continue
        named = NAME_WITH_ID_PATTERN.match(value)
        if named:
            info.name = info.name or named.group("name")
            info.id = info.id or named.group("id")
            continue
        if not info.name:
            info.name = value
    return info


def parse_account_list(output: str) -> Dict[str, AccountInfo]:
    """
    Parse `account:manageauth --list` output into descriptors.

    Accepts lines such as:
        prod | ACME Corp (1234567) | https://1234567.app.netsuite.com
        sb1 | Account: ACME Sandbox | 1234567_SB1 | Role: Administrator | https://...
    Lines without a "|" separator (banners, prompts) are ignored.
    """
    accounts: Dict[str, AccountInfo] = {}
    for line in output.splitlines():
        match = ACCOUNT_LINE_PATTERN.match(line)
        if not match:
            continue
        fields = match.group("rest").split("|")
        info = _parse_account_fields(fields)
        if info.is_empty and not info.url:
            continue
        accounts[match.group("auth_id")] = info
    return accounts


def to_cabinet_path(project_root: Path, file_path: Path) -> Optional[str]:
    """
    Map a project file to its File Cabinet path ("SuiteScripts/...").

    Returns None if the file is not under a SuiteScripts folder.
    """
    try:
        relative = Path(file_path).resolve().relative_to(Path(project_root).resolve())
        relative_str = relative.as_posix()
    except ValueError:
        relative_str = str(file_path)
    relative_str = relative_str.replace("\\", "/")

    for marker in (CABINET_MARKER, SCRIPTS_MARKER):
        if marker in relative_str:
            tail = relative_str.split(marker, 1)[1].lstrip("/")
            return f"{SCRIPTS_MARKER}/{tail}" if tail else SCRIPTS_MARKER

    return None


class SuiteCloudCLI:
    """
    Runs suitecloud commands for one project.

    Every command runs with cwd set to the project root. Failures come back
    as CommandResult objects; only a missing executable raises.
    """

    def __init__(
        self,
        project_root: Path,
        executable: str = "suitecloud",
        timeout_seconds: int = 300,
        max_retries: int = 0,
        retry_delay_seconds: float = 2.0,
    ):
        self.project_root = Path(project_root)
        self.executable = executable
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

    @classmethod
    def from_config(cls, config: Configuration) -> "SuiteCloudCLI":
        return cls(
            project_root=config.project_root,
            executable=config.suitecloud.executable,
            timeout_seconds=config.suitecloud.command_timeout_seconds,
            max_retries=config.retry.retry_count,
            retry_delay_seconds=config.retry.retry_delay_seconds,
        )

    def _run_once(self, cmd: List[str]) -> CommandResult:
        try:
            completed = subprocess.run(
                cmd,
                cwd=str(self.project_root),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            raise SuiteCloudError(
                f"suitecloud executable not found: {self.executable}"
            ) from e
        except subprocess.TimeoutExpired:
            message = f"Command timed out after {self.timeout_seconds} seconds"
            logger.error(f"[SuiteCloud] {message}")
            return CommandResult(success=False, error=message)

        stdout = completed.stdout or ""
        stderr = completed.stderr or ""
        log_cli_output(logger, stdout)
        if stderr.strip():
            logger.debug(f"[SuiteCloud] Command stderr: {stderr.strip()}")

        if completed.returncode != 0:
            error = stderr.strip() or stdout.strip() or f"suitecloud exited with code {completed.returncode}"
            logger.error(f"[SuiteCloud] Command error: {error}")
            return CommandResult(
                success=False,
                output=stderr,
                error=error,
                return_code=completed.returncode,
            )

        return CommandResult(success=True, output=stdout, return_code=completed.returncode)

    def run_command(self, args: Sequence[str]) -> CommandResult:
        """
        Run `suitecloud <args>` and retry transient failures.

        Raises:
            SuiteCloudError: If the executable cannot be found.
        """
        if not self.project_root.is_dir():
            return CommandResult(success=False, error="No project root directory found")

        cmd = [self.executable, *args]
        logger.info(f"[SuiteCloud] Running command: {' '.join(cmd)}")

        def attempt():
            result = self._run_once(cmd)
            text = "\n".join(filter(None, [result.error, result.output]))
            return result.success, text, result

        def on_retry(retry: RetryAttempt) -> None:
            logger.warning(f"[SuiteCloud] Retrying '{args[0]}' (attempt {retry.attempt_number + 1})")

        _, result = retry_with_backoff(
            attempt,
            is_retryable=is_transient_failure,
            max_retries=self.max_retries,
            base_delay=self.retry_delay_seconds,
            on_retry=on_retry,
        )
        return result

    def cabinet_path(self, file_path: Path) -> Optional[str]:
        cabinet = to_cabinet_path(self.project_root, file_path)
        if cabinet is None:
            logger.warning(f"[SuiteCloud] Could not convert to SuiteCloud path: {file_path}")
        return cabinet

    def upload_file(self, file_path: Path) -> CommandResult:
        """Upload a SuiteScripts file to the account."""
        cabinet = self.cabinet_path(file_path)
        if cabinet is None:
            return CommandResult(success=False, error=NOT_SUITESCRIPT_ERROR)
        return self.run_command(["file:upload", "--paths", cabinet])

    def import_file(self, file_path: Path) -> CommandResult:
        """Import the account's copy of a SuiteScripts file over the local one."""
        cabinet = self.cabinet_path(file_path)
        if cabinet is None:
            return CommandResult(success=False, error=NOT_SUITESCRIPT_ERROR)
        # file:import expects an absolute File Cabinet path
        return self.run_command(["file:import", "--paths", f"/{cabinet}"])

    def detect_auth_id(self) -> Optional[str]:
        """Ask the CLI for stored credentials and return their auth ID."""
        result = self.run_command(["account:manageauth"])
        if not result.success:
            return None
        auth_id = parse_auth_id(result.output)
        if auth_id:
            logger.info(f"[SuiteCloud] Detected authId: {auth_id}")
        return auth_id

    def list_accounts(self) -> Dict[str, AccountInfo]:
        """Return account descriptors keyed by auth ID, empty on failure."""
        result = self.run_command(["account:manageauth", "--list"])
        if not result.success:
            return {}
        return parse_account_list(result.output)
