"""MCP Server for suitebackup - editor and agent integration.

This module provides the SuiteBackupMCPServer class that exposes the backup
workflow to editors and AI agents via the Model Context Protocol (MCP).

Tools exposed:
- backup_upload: Upload a file with local and account backups
- backup_list: List backups, optionally for one file
- backup_restore: Restore a backup over its original file
- backup_diff: Show differences between a backup and the current file
- backup_verify: Check a backup against its recorded checksum
- backup_auth_status: Show the authentication ID uploads will use
- backup_accounts: Refresh and list account information
- backup_recent_errors: Show recent structured errors from the log file
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from suitebackup.accounts import AccountRegistry, resolve_auth_id
from suitebackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from suitebackup.logger import LoggingError, get_logger, get_recent_errors, setup_logging
from suitebackup.store import BackupStore, StoreError
from suitebackup.suitecloud import SuiteCloudCLI, SuiteCloudError
from suitebackup.workflow import (
    EXIT_LOCK_ERROR,
    STATUS_AUTH_MISSING,
    SyncResult,
    backup_diff,
    build_store,
    restore_backup,
    upload_with_backup,
)

logger = get_logger("mcp")


# Diff output is capped so a large file does not flood the client
MAX_DIFF_LINES = 500


class SuiteBackupMCPServer:
    """
    MCP Server exposing suitebackup to editors and agents.

    All tools return JSON. Failures use {"error": {"code", "message"}}.
    Backups are written through the same store lock as the CLI, and the
    configuration comes from the same config.toml file.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        cli: Optional[SuiteCloudCLI] = None,
    ):
        """
        Initialize the MCP server.

        Args:
            config_path: Path to configuration file. Defaults to ~/.config/suitebackup/config.toml
            cli: SuiteCloudCLI to use instead of one built from the configuration
        """
        self.config_path = config_path
        self._config: Optional[Configuration] = None
        self._cli = cli
        self._accounts: Optional[AccountRegistry] = None
        self.server = Server("suitebackup")
        self._register_tools()

    def _load_config(self) -> Configuration:
        """
        Load configuration from file, once.

        Raises:
            ConfigurationError: If config file is missing or invalid
            ValidationError: If config values have wrong types
        """
        if self._config is None:
            self._config = parse_config(self.config_path)
        return self._config

    def _get_cli(self, config: Configuration) -> SuiteCloudCLI:
        if self._cli is None:
            self._cli = SuiteCloudCLI.from_config(config)
        return self._cli

    def _get_store(self, config: Configuration) -> BackupStore:
        if self._accounts is None:
            self._accounts = AccountRegistry(config.project_root)
        return build_store(config, accounts=self._accounts)

    def _error_response(self, code: str, message: str) -> str:
        """
        Create a JSON error response.

        Args:
            code: Error code (e.g., "CONFIG_ERROR", "AUTH_ERROR")
            message: Human-readable error message
        """
        return json.dumps({
            "error": {
                "code": code,
                "message": message
            }
        }, indent=2)

    def _success_response(self, data: Dict[str, Any]) -> str:
        return json.dumps(data, indent=2, default=str)

    def _resolve_backup_path(self, store: BackupStore, backup_path: str) -> Optional[Path]:
        """
        Resolve a client-supplied backup path inside the backup root.

        Relative paths are taken relative to the backup root. Returns None if
        the result escapes the root.
        """
        candidate = Path(backup_path)
        if not candidate.is_absolute():
            candidate = store.backup_root / candidate
        try:
            candidate.resolve().relative_to(store.backup_root.resolve())
        except ValueError:
            return None
        return candidate

    def _register_tools(self):
        """Register all MCP tools with the server."""

        @self.server.list_tools()
        async def list_tools() -> List[Tool]:
            return [
                Tool(
                    name="backup_upload",
                    description="Upload a SuiteScripts file to the NetSuite account. Backs up the local version, uploads, imports the account version, backs it up, restores the local version and reports whether the two differ.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "file_path": {
                                "type": "string",
                                "description": "Path of the file to upload, absolute or relative to the project root"
                            }
                        },
                        "required": ["file_path"]
                    }
                ),
                Tool(
                    name="backup_list",
                    description="List backups grouped by original file, newest first.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "file_path": {
                                "type": "string",
                                "description": "Only list backups of this file (optional)"
                            }
                        },
                        "required": []
                    }
                ),
                Tool(
                    name="backup_restore",
                    description="Restore a backup over its original file. Without confirm=true only reports what would be restored.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "backup_path": {
                                "type": "string",
                                "description": "Path to the .bak file, absolute or relative to the backup directory"
                            },
                            "target": {
                                "type": "string",
                                "description": "Restore to this path instead of the original file (optional)"
                            },
                            "confirm": {
                                "type": "boolean",
                                "description": "Set to true to overwrite the file"
                            }
                        },
                        "required": ["backup_path"]
                    }
                ),
                Tool(
                    name="backup_diff",
                    description="Show a unified diff between the current file and a backup.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "backup_path": {
                                "type": "string",
                                "description": "Path to the .bak file"
                            },
                            "against": {
                                "type": "string",
                                "description": "Compare with this file instead of the original (optional)"
                            }
                        },
                        "required": ["backup_path"]
                    }
                ),
                Tool(
                    name="backup_verify",
                    description="Verify a backup's content against the SHA-256 recorded when it was taken.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "backup_path": {
                                "type": "string",
                                "description": "Path to the .bak file"
                            }
                        },
                        "required": ["backup_path"]
                    }
                ),
                Tool(
                    name="backup_auth_status",
                    description="Show the authentication ID that uploads will use and where it comes from.",
                    inputSchema={
                        "type": "object",
                        "properties": {},
                        "required": []
                    }
                ),
                Tool(
                    name="backup_accounts",
                    description="Refresh account information from suitecloud and list known accounts.",
                    inputSchema={
                        "type": "object",
                        "properties": {},
                        "required": []
                    }
                ),
                Tool(
                    name="backup_recent_errors",
                    description="Show recent errors from the suitebackup log with their codes and hints.",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "limit": {
                                "type": "integer",
                                "description": "Maximum number of errors to return (default: 10)"
                            }
                        },
                        "required": []
                    }
                ),
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            """Dispatch tool calls to appropriate handlers."""
            arguments = arguments or {}
            try:
                if name == "backup_upload":
                    result = await self._tool_backup_upload(
                        file_path=arguments.get("file_path", ""),
                    )
                elif name == "backup_list":
                    result = await self._tool_backup_list(
                        file_path=arguments.get("file_path"),
                    )
                elif name == "backup_restore":
                    result = await self._tool_backup_restore(
                        backup_path=arguments.get("backup_path", ""),
                        target=arguments.get("target"),
                        confirm=arguments.get("confirm", False),
                    )
                elif name == "backup_diff":
                    result = await self._tool_backup_diff(
                        backup_path=arguments.get("backup_path", ""),
                        against=arguments.get("against"),
                    )
                elif name == "backup_verify":
                    result = await self._tool_backup_verify(
                        backup_path=arguments.get("backup_path", ""),
                    )
                elif name == "backup_auth_status":
                    result = await self._tool_backup_auth_status()
                elif name == "backup_accounts":
                    result = await self._tool_backup_accounts()
                elif name == "backup_recent_errors":
                    result = await self._tool_backup_recent_errors(
                        limit=arguments.get("limit", 10),
                    )
                else:
                    result = self._error_response("UNKNOWN_TOOL", f"Unknown tool: {name}")

                return [TextContent(type="text", text=result)]
            except Exception as e:
                logger.error(f"Tool {name} failed: {e}")
                return [TextContent(type="text", text=self._error_response("INTERNAL_ERROR", str(e)))]

    async def _tool_backup_upload(self, file_path: str) -> str:
        """
        Upload a file with backups around it.

        Returns JSON with the SyncResult fields: status, local_backup,
        account_backup, has_differences and duration_seconds.
        """
        if not file_path:
            return self._error_response("INVALID_ARGUMENT", "file_path is required")

        try:
            config = self._load_config()
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))

        path = Path(file_path)
        if not path.is_absolute():
            path = config.project_root / path

        cli = self._get_cli(config)
        try:
            store = self._get_store(config)
        except StoreError as e:
            return self._error_response("STORE_ERROR", str(e))

        # The workflow blocks on subprocesses, keep it off the event loop
        loop = asyncio.get_running_loop()
        result: SyncResult = await loop.run_in_executor(
            None,
            lambda: upload_with_backup(path, config=config, cli=cli, store=store),
        )

        if result.success:
            return self._success_response(result.to_dict())

        if result.status == STATUS_AUTH_MISSING:
            code = "AUTH_ERROR"
        elif result.exit_code == EXIT_LOCK_ERROR:
            code = "LOCK_ERROR"
        else:
            code = result.status.upper()
        return self._error_response(code, result.error_message or "Unknown error")

    async def _tool_backup_list(self, file_path: Optional[str] = None) -> str:
        """List backups, grouped by original file."""
        try:
            config = self._load_config()
            store = self._get_store(config)
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))
        except StoreError as e:
            return self._error_response("STORE_ERROR", str(e))

        if file_path:
            path = Path(file_path)
            if not path.is_absolute():
                path = config.project_root / path
            groups = {str(path): store.history(path)}
        else:
            groups = {
                original: sorted(records, key=lambda r: r.sort_key, reverse=True)
                for original, records in sorted(store.list_backups().items())
            }

        return self._success_response({
            "backup_root": str(store.backup_root),
            "total": sum(len(records) for records in groups.values()),
            "files": {
                original: [record.to_dict() for record in records]
                for original, records in groups.items()
            },
        })

    async def _tool_backup_restore(
        self,
        backup_path: str,
        target: Optional[str] = None,
        confirm: bool = False,
    ) -> str:
        """
        Restore a backup over its original file or over target.

        Without confirm, returns a preview of what would be overwritten.
        """
        if not backup_path:
            return self._error_response("INVALID_ARGUMENT", "backup_path is required")

        try:
            config = self._load_config()
            store = self._get_store(config)
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))
        except StoreError as e:
            return self._error_response("STORE_ERROR", str(e))

        resolved = self._resolve_backup_path(store, backup_path)
        if resolved is None:
            return self._error_response("INVALID_ARGUMENT", "backup_path must be inside the backup directory")
        if not resolved.is_file():
            return self._error_response("BACKUP_NOT_FOUND", f"Backup not found: {backup_path}")

        target_path = Path(target) if target else store.get_original_file_path(resolved)
        if target_path is None:
            return self._error_response(
                "ORIGINAL_PATH_UNKNOWN",
                "Could not determine original file path for this backup",
            )

        if not confirm:
            return self._success_response({
                "success": False,
                "needs_confirmation": True,
                "backup_path": str(resolved),
                "target": str(target_path),
                "message": "Call again with confirm=true to overwrite the target file.",
            })

        result = restore_backup(resolved, store, target=target_path)
        if not result.success:
            return self._error_response("RESTORE_FAILED", result.error_message or "Unknown error")

        return self._success_response({
            "success": True,
            "backup_path": str(resolved),
            "restored_path": str(result.target),
        })

    async def _tool_backup_diff(self, backup_path: str, against: Optional[str] = None) -> str:
        """Unified diff between the current file and a backup."""
        if not backup_path:
            return self._error_response("INVALID_ARGUMENT", "backup_path is required")

        try:
            config = self._load_config()
            store = self._get_store(config)
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))
        except StoreError as e:
            return self._error_response("STORE_ERROR", str(e))

        resolved = self._resolve_backup_path(store, backup_path)
        if resolved is None:
            return self._error_response("INVALID_ARGUMENT", "backup_path must be inside the backup directory")

        try:
            lines = backup_diff(resolved, store, against=Path(against) if against else None)
        except StoreError as e:
            return self._error_response("DIFF_FAILED", str(e))

        truncated = len(lines) > MAX_DIFF_LINES
        return self._success_response({
            "backup_path": str(resolved),
            "has_differences": bool(lines),
            "diff": "".join(lines[:MAX_DIFF_LINES]),
            "truncated": truncated,
        })

    async def _tool_backup_verify(self, backup_path: str) -> str:
        """Verify a backup against its recorded checksum."""
        if not backup_path:
            return self._error_response("INVALID_ARGUMENT", "backup_path is required")

        try:
            config = self._load_config()
            store = self._get_store(config)
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))
        except StoreError as e:
            return self._error_response("STORE_ERROR", str(e))

        resolved = self._resolve_backup_path(store, backup_path)
        if resolved is None:
            return self._error_response("INVALID_ARGUMENT", "backup_path must be inside the backup directory")

        record = store.find_record(resolved)
        if record is None:
            return self._error_response("BACKUP_NOT_FOUND", f"Backup not found: {backup_path}")

        result = store.verify(record)
        return self._success_response({
            "backup_path": str(resolved),
            "ok": result.ok,
            "expected": result.expected,
            "actual": result.actual,
            "error": result.error,
        })

    async def _tool_backup_auth_status(self) -> str:
        """Report the authentication ID and its origin."""
        try:
            config = self._load_config()
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))

        auth_id = resolve_auth_id(config)
        origin = "configuration"
        if not auth_id:
            loop = asyncio.get_running_loop()
            try:
                auth_id = await loop.run_in_executor(None, self._get_cli(config).detect_auth_id)
            except SuiteCloudError as e:
                return self._error_response("CLI_NOT_FOUND", str(e))
            origin = "suitecloud"

        if not auth_id:
            return self._error_response(
                "AUTH_ERROR",
                "No authentication ID found. Run 'suitecloud account:setup' first.",
            )

        info = (self._accounts or AccountRegistry(config.project_root)).lookup(auth_id)
        return self._success_response({
            "auth_id": auth_id,
            "source": origin,
            "account": info.to_dict(),
        })

    async def _tool_backup_accounts(self) -> str:
        """Refresh account descriptors from suitecloud."""
        try:
            config = self._load_config()
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))

        if self._accounts is None:
            self._accounts = AccountRegistry(config.project_root)

        cli = self._get_cli(config)
        loop = asyncio.get_running_loop()
        try:
            accounts = await loop.run_in_executor(None, lambda: self._accounts.refresh(cli))
        except SuiteCloudError as e:
            return self._error_response("CLI_NOT_FOUND", str(e))

        return self._success_response({
            "current": resolve_auth_id(config),
            "accounts": {auth_id: info.to_dict() for auth_id, info in accounts.items()},
        })

    async def _tool_backup_recent_errors(self, limit: int = 10) -> str:
        """Return the newest structured errors from the main log file."""
        try:
            config = self._load_config()
        except (ConfigurationError, ValidationError) as e:
            return self._error_response("CONFIG_ERROR", str(e))

        entries = get_recent_errors(config.logging.log_file, max_entries=max(int(limit), 0))
        return self._success_response({
            "log_file": str(config.logging.log_file),
            "errors": [entry.to_dict() for entry in entries],
        })

    async def run(self):
        """Start the MCP server using stdio transport."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options()
            )


def run_server(config_path: Optional[Path] = None):
    """
    Entry point for the `suitebackup mcp-server` command.

    Logs go to the configured files only; stdio carries the protocol.
    """
    server = SuiteBackupMCPServer(config_path=config_path)
    try:
        config = server._load_config()
        setup_logging(config.logging, console=False)
    except (ConfigurationError, ValidationError, LoggingError) as e:
        # Tools report configuration problems per call
        logger.warning(f"Starting without file logging: {e}")
    asyncio.run(server.run())
