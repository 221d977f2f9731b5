"""Account descriptors and authentication ID resolution.

A SuiteCloud project names its account through an authentication ID
(defaultAuthId in project.json). Backups record the ID together with a
descriptor of the remote account (company name, company ID, domain URL)
so versions taken against sandbox and production stay distinguishable.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

from suitebackup.config import Configuration

logger = logging.getLogger(__name__)


PROJECT_FILE_NAME = "project.json"


@dataclass
class AccountInfo:
    """Descriptor of a remote NetSuite account."""
    name: str = ""
    id: str = ""
    url: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.name and not self.id

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AccountInfo":
        """Build from a sidecar dict, tolerating missing or null keys."""
        if not isinstance(data, dict):
            return cls()
        return cls(
            name=str(data.get("name") or ""),
            id=str(data.get("id") or ""),
            url=str(data.get("url") or ""),
        )


def read_project_file(project_root: Path) -> Optional[Dict[str, Any]]:
    """
    Read project.json from the project root.

    Returns None if the file is missing or unreadable; parse errors are
    logged rather than raised.
    """
    project_file = project_root / PROJECT_FILE_NAME
    if not project_file.exists():
        return None
    try:
        data = json.loads(project_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[Accounts] Error reading {PROJECT_FILE_NAME}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"[Accounts] {PROJECT_FILE_NAME} is not a JSON object")
        return None
    return data


def resolve_auth_id(config: Configuration) -> Optional[str]:
    """
    Resolve the authentication ID for the project.

    Order: project.json defaultAuthId, then the configured default_auth_id.
    """
    project_data = read_project_file(config.project_root)
    if project_data:
        auth_id = project_data.get("defaultAuthId")
        if isinstance(auth_id, str) and auth_id:
            logger.debug(f"[Accounts] Found defaultAuthId in {PROJECT_FILE_NAME}: {auth_id}")
            return auth_id

    if config.default_auth_id:
        logger.debug(f"[Accounts] Using default_auth_id from config: {config.default_auth_id}")
        return config.default_auth_id

    return None


def account_from_project(project_root: Path, auth_id: str) -> AccountInfo:
    """Read accountSpecificValues[auth_id] from project.json."""
    project_data = read_project_file(project_root)
    if not project_data:
        return AccountInfo()

    specific = project_data.get("accountSpecificValues")
    if not isinstance(specific, dict):
        return AccountInfo()

    values = specific.get(auth_id)
    if not isinstance(values, dict):
        return AccountInfo()

    return AccountInfo(
        name=str(values.get("companyName") or ""),
        id=str(values.get("companyId") or ""),
        url=str(values.get("netSuiteUrl") or ""),
    )


class AccountRegistry:
    """
    Cache of account descriptors keyed by authentication ID.

    The cache is filled from `suitecloud account:manageauth --list` through
    refresh(). Lookups that miss fall back to project.json.
    """

    def __init__(self, project_root: Path):
        self.project_root = project_root
        self._accounts: Dict[str, AccountInfo] = {}

    def update(self, accounts: Dict[str, AccountInfo]) -> None:
        self._accounts = dict(accounts)

    def refresh(self, cli) -> Dict[str, AccountInfo]:
        """Reload descriptors from the CLI. Keeps the old cache on failure."""
        accounts = cli.list_accounts()
        if accounts:
            self.update(accounts)
            logger.info(f"[Accounts] Loaded {len(accounts)} account(s) from suitecloud")
        else:
            logger.warning("[Accounts] suitecloud reported no accounts; keeping cached values")
        return dict(self._accounts)

    def all(self) -> Dict[str, AccountInfo]:
        return dict(self._accounts)

    def lookup(self, auth_id: str) -> AccountInfo:
        """Return the best-known descriptor for auth_id, possibly empty."""
        info = self._accounts.get(auth_id)
        if info is not None and not info.is_empty:
            logger.debug(f"[Accounts] Using cached account info: {info.display_name}")
            return info

        info = account_from_project(self.project_root, auth_id)
        if not info.is_empty:
            logger.debug(f"[Accounts] Using account info from {PROJECT_FILE_NAME}: {info.display_name}")
        return info
