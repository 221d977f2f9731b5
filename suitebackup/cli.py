"""Command-line interface for suitebackup.

This module provides the CLI for suitebackup, supporting commands for:
- upload: Upload a file with local and account backups
- list: List backups
- restore: Restore a backup over its original file
- diff: Show differences between a backup and the current file
- verify: Check a backup against its recorded checksum
- prune: Delete old versions beyond the retention limit
- auth: Check or set the authentication ID
- accounts: Refresh and show account information
- errors: Show recent errors from the log file
- init: Create default config
- mcp-server: Start the MCP server
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from suitebackup import __version__
from suitebackup.accounts import AccountRegistry, resolve_auth_id
from suitebackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    create_default_config,
    format_config,
    DEFAULT_CONFIG_PATH,
)
from suitebackup.logger import LoggingError, get_recent_errors, setup_logging
from suitebackup.notify import Notifier
from suitebackup.store import BackupRecord, BackupStore, StoreError
from suitebackup.suitecloud import SuiteCloudCLI, SuiteCloudError
from suitebackup.workflow import (
    EXIT_AUTH_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_RESTORE_ERROR,
    EXIT_SUCCESS,
    EXIT_SYNC_ERROR,
    backup_diff,
    build_store,
    restore_backup,
    upload_with_backup,
)


EXIT_GENERAL_ERROR = 1


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog='suitebackup',
        description='Versioned backups around SuiteCloud file uploads'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to config file (default: ~/.config/suitebackup/config.toml)',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    upload_parser = subparsers.add_parser(
        'upload',
        help='Upload a file, backing up the local and account versions'
    )
    upload_parser.add_argument('file', type=Path, help='SuiteScripts file to upload')

    list_parser = subparsers.add_parser('list', help='List backups')
    list_parser.add_argument(
        '--file',
        type=Path,
        help='Only show backups of this file, newest first'
    )
    list_parser.add_argument('--json', action='store_true', help='Output in JSON format')

    restore_parser = subparsers.add_parser(
        'restore',
        help='Restore a backup over its original file'
    )
    restore_parser.add_argument('backup', type=Path, help='Path to the .bak file')
    restore_parser.add_argument(
        '--to',
        type=Path,
        dest='target',
        help='Restore to this path instead of the original file'
    )
    restore_parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Do not ask for confirmation'
    )

    diff_parser = subparsers.add_parser(
        'diff',
        help='Show differences between the current file and a backup'
    )
    diff_parser.add_argument('backup', type=Path, help='Path to the .bak file')
    diff_parser.add_argument(
        '--against',
        type=Path,
        help='Compare with this file instead of the original'
    )

    verify_parser = subparsers.add_parser(
        'verify',
        help='Verify a backup against its recorded checksum'
    )
    verify_parser.add_argument('backup', type=Path, help='Path to the .bak file')

    prune_parser = subparsers.add_parser(
        'prune',
        help='Delete old versions beyond the retention limit'
    )
    prune_parser.add_argument(
        '--keep',
        type=int,
        help='Versions to keep per file and source (default: retention.max_versions_per_file)'
    )

    auth_parser = subparsers.add_parser('auth', help='Check or set the authentication ID')
    auth_subparsers = auth_parser.add_subparsers(dest='auth_command')
    auth_subparsers.add_parser('check', help='Show the authentication ID that uploads will use')
    auth_set_parser = auth_subparsers.add_parser('set', help='Store a default authentication ID in the config')
    auth_set_parser.add_argument('auth_id', help='Authentication ID')

    accounts_parser = subparsers.add_parser(
        'accounts',
        help='Refresh and show account information from suitecloud'
    )
    accounts_parser.add_argument('--json', action='store_true', help='Output in JSON format')

    errors_parser = subparsers.add_parser('errors', help='Show recent errors from the log file')
    errors_parser.add_argument(
        '--limit', '-n',
        type=int,
        default=10,
        help='Maximum number of errors to show (default: 10)'
    )
    errors_parser.add_argument('--json', action='store_true', help='Output in JSON format')

    init_parser = subparsers.add_parser('init', help='Create default configuration file')
    init_parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Overwrite existing config file'
    )

    subparsers.add_parser(
        'mcp-server',
        help='Start MCP server for editor integration'
    )

    return parser


def load_config(config_path: Optional[Path], verbose: bool = False) -> Optional[Configuration]:
    """
    Load configuration from file and set up logging.

    Returns None and prints error on failure.
    """
    try:
        config = parse_config(config_path)
        if verbose:
            print(f"Loaded config from: {config_path or DEFAULT_CONFIG_PATH}")
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None

    try:
        setup_logging(config.logging, console=verbose)
    except LoggingError as e:
        print(f"Warning: logging disabled: {e}", file=sys.stderr)
    return config


def _open_store(config: Configuration) -> Optional[BackupStore]:
    try:
        return build_store(config)
    except StoreError as e:
        print(f"Backup store error: {e}", file=sys.stderr)
        return None


def cmd_upload(args: argparse.Namespace) -> int:
    """Execute the 'upload' command."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    def progress(message: str) -> None:
        if args.verbose:
            print(message)

    result = upload_with_backup(
        args.file,
        config=config,
        notifier=Notifier(config.notifications),
        progress_callback=progress,
    )

    if not result.success:
        print(f"Error: {result.error_message}", file=sys.stderr)
        if result.guidance:
            print(f"Hint: {result.guidance}", file=sys.stderr)
        if result.local_restored:
            print(f"Local version restored from {result.local_backup}", file=sys.stderr)
        return result.exit_code

    if result.has_differences:
        print("File processed successfully. Differences detected between local and account versions.")
        print(f"  Local backup:   {result.local_backup}")
        print(f"  Account backup: {result.account_backup}")
        print(f"Run 'suitebackup diff {result.account_backup} --against {result.local_backup}' to view them.")
    else:
        print("File processed successfully. No differences detected.")
        if args.verbose:
            print(f"  Local backup:   {result.local_backup}")
            print(f"  Account backup: {result.account_backup}")
    if result.pruned:
        print(f"Pruned {len(result.pruned)} old backup(s).")
    return EXIT_SUCCESS


def _record_line(record: BackupRecord) -> str:
    timestamp_str = record.timestamp.strftime('%Y-%m-%d %H:%M:%S')
    account = record.account_info.display_name or record.auth_id
    size = record.path.stat().st_size if record.path.exists() else 0
    return f"  {timestamp_str:<20} {record.source.value:<8} {account:<24} {_format_size(size):>10}  {record.path}"


def cmd_list(args: argparse.Namespace) -> int:
    """Execute the 'list' command - list backups."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    store = _open_store(config)
    if store is None:
        return EXIT_GENERAL_ERROR

    if args.file:
        backups = {str(args.file.absolute()): store.history(args.file.absolute())}
    else:
        backups = {
            original: sorted(records, key=lambda r: r.sort_key, reverse=True)
            for original, records in sorted(store.list_backups().items())
        }

    if args.json:
        output = {
            original: [record.to_dict() for record in records]
            for original, records in backups.items()
        }
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    total = sum(len(records) for records in backups.values())
    if total == 0:
        print("No backups found.")
        return EXIT_SUCCESS

    for original, records in backups.items():
        if not records:
            continue
        print(original)
        for record in records:
            print(_record_line(record))
        print()
    print(f"Total: {total} backup(s) of {sum(1 for r in backups.values() if r)} file(s)")
    return EXIT_SUCCESS


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def cmd_restore(args: argparse.Namespace) -> int:
    """Execute the 'restore' command - restore a backup."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    store = _open_store(config)
    if store is None:
        return EXIT_GENERAL_ERROR

    if not args.backup.is_file():
        print(f"Backup not found: {args.backup}", file=sys.stderr)
        return EXIT_RESTORE_ERROR

    target = args.target or store.get_original_file_path(args.backup)
    if target is None:
        print("Could not determine original file path for this backup", file=sys.stderr)
        return EXIT_RESTORE_ERROR

    if not args.yes and not _confirm(f"Restore {args.backup.name} over {target}? This will overwrite the current file."):
        print("Restore cancelled.")
        return EXIT_SUCCESS

    result = restore_backup(args.backup, store, target=target)
    if not result.success:
        print(f"Restore failed: {result.error_message}", file=sys.stderr)
        return result.exit_code

    print(f"Backup restored successfully: {result.target}")
    return EXIT_SUCCESS


def cmd_diff(args: argparse.Namespace) -> int:
    """Execute the 'diff' command - show differences against a backup."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    store = _open_store(config)
    if store is None:
        return EXIT_GENERAL_ERROR

    try:
        lines = backup_diff(args.backup, store, against=args.against)
    except StoreError as e:
        print(f"Failed to view diff: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    if not lines:
        print("No differences.")
        return EXIT_SUCCESS

    for line in lines:
        sys.stdout.write(line if line.endswith("\n") else line + "\n")
    return EXIT_SUCCESS


def cmd_verify(args: argparse.Namespace) -> int:
    """Execute the 'verify' command - verify backup integrity."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    store = _open_store(config)
    if store is None:
        return EXIT_GENERAL_ERROR

    record = store.find_record(args.backup)
    if record is None:
        print(f"Backup not found: {args.backup}", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    result = store.verify(record)
    print(f"Verification of backup: {args.backup}")
    print("=" * 50)
    if result.ok:
        print("Status: PASSED")
        print(f"SHA-256: {result.actual}")
        return EXIT_SUCCESS

    print("Status: FAILED")
    if result.error:
        print(f"Error: {result.error}")
    if result.expected:
        print(f"Expected: {result.expected}")
    if result.actual:
        print(f"Actual:   {result.actual}")
    return EXIT_GENERAL_ERROR


def cmd_prune(args: argparse.Namespace) -> int:
    """Execute the 'prune' command - apply per-file retention."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    keep = args.keep if args.keep is not None else config.retention.max_versions_per_file
    if keep <= 0:
        print("Retention is disabled; nothing to prune. Pass --keep N or set retention.max_versions_per_file.")
        return EXIT_SUCCESS

    store = _open_store(config)
    if store is None:
        return EXIT_GENERAL_ERROR

    try:
        result = store.prune(keep)
    except StoreError as e:
        print(f"Prune failed: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    print(f"Deleted {len(result.deleted)} backup(s), kept {result.kept}, freed {_format_size(result.freed_bytes)}")
    if args.verbose:
        for path in result.deleted:
            print(f"  - {path}")
    return EXIT_SUCCESS


def cmd_auth(args: argparse.Namespace) -> int:
    """Execute the 'auth' command - check or set the authentication ID."""
    if args.auth_command == 'set':
        return _auth_set(args)
    if args.auth_command in (None, 'check'):
        return _auth_check(args)
    print(f"Unknown auth command: {args.auth_command}", file=sys.stderr)
    return EXIT_GENERAL_ERROR


def _auth_check(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    auth_id = resolve_auth_id(config)
    origin = "configuration"
    if not auth_id:
        try:
            auth_id = SuiteCloudCLI.from_config(config).detect_auth_id()
        except SuiteCloudError as e:
            print(f"Authentication check failed: {e}", file=sys.stderr)
            return EXIT_AUTH_ERROR
        origin = "suitecloud"

    if not auth_id:
        print("No authentication ID found.", file=sys.stderr)
        print("Run 'suitecloud account:setup' or 'suitebackup auth set ID'.", file=sys.stderr)
        return EXIT_AUTH_ERROR

    print(f"Authentication ID: {auth_id} (from {origin})")
    return EXIT_SUCCESS


def _auth_set(args: argparse.Namespace) -> int:
    config_path = args.config or DEFAULT_CONFIG_PATH
    try:
        config = parse_config(config_path)
    except (ConfigurationError, ValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    updated = replace(config, default_auth_id=args.auth_id)
    try:
        config_path.write_text(format_config(updated))
    except OSError as e:
        print(f"Could not write config file {config_path}: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    print(f"Authentication ID set to: {args.auth_id}")
    return EXIT_SUCCESS


def cmd_accounts(args: argparse.Namespace) -> int:
    """Execute the 'accounts' command - refresh account information."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    registry = AccountRegistry(config.project_root)
    try:
        accounts = registry.refresh(SuiteCloudCLI.from_config(config))
    except SuiteCloudError as e:
        print(f"Failed to refresh account information: {e}", file=sys.stderr)
        return EXIT_SYNC_ERROR

    current = resolve_auth_id(config)
    if current and current not in accounts:
        info = registry.lookup(current)
        if not info.is_empty:
            accounts[current] = info

    if args.json:
        print(json.dumps({
            "current": current,
            "accounts": {auth_id: info.to_dict() for auth_id, info in accounts.items()},
        }, indent=2))
        return EXIT_SUCCESS

    if not accounts:
        print("No account information available.")
        return EXIT_SUCCESS

    print(f"{'':2}{'Auth ID':<20} {'Account':<30} {'ID':<16} URL")
    print("-" * 90)
    for auth_id, info in sorted(accounts.items()):
        marker = "* " if auth_id == current else "  "
        print(f"{marker}{auth_id:<20} {info.name:<30} {info.id:<16} {info.url}")
    return EXIT_SUCCESS


def cmd_errors(args: argparse.Namespace) -> int:
    """Execute the 'errors' command - show recent structured errors."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    entries = get_recent_errors(config.logging.log_file, max_entries=max(args.limit, 0))

    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return EXIT_SUCCESS

    if not entries:
        print("No recent errors.")
        return EXIT_SUCCESS

    for entry in entries:
        code = f"[{entry.error_code}] " if entry.error_code else ""
        print(f"{entry.timestamp}  {code}{entry.message}")
        if entry.guidance:
            print(f"    Hint: {entry.guidance}")
    return EXIT_SUCCESS


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the 'init' command - create default config."""
    config_path = args.config or DEFAULT_CONFIG_PATH

    if config_path.exists() and not args.force:
        print(f"Config file already exists: {config_path}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(create_default_config(Path.cwd()))

    print(f"Created default config: {config_path}")
    print("Edit project_root if this is not your SuiteCloud project directory.")

    return EXIT_SUCCESS


def cmd_mcp_server(args: argparse.Namespace) -> int:
    """Execute the 'mcp-server' command - start MCP server."""
    from suitebackup.mcp_server import run_server

    try:
        run_server(config_path=args.config)
        return EXIT_SUCCESS
    except KeyboardInterrupt:
        return EXIT_SUCCESS
    except Exception as e:
        print(f"MCP server error: {e}", file=sys.stderr)
        return EXIT_GENERAL_ERROR


def _format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_SUCCESS

    try:
        if args.command == 'upload':
            return cmd_upload(args)
        elif args.command == 'list':
            return cmd_list(args)
        elif args.command == 'restore':
            return cmd_restore(args)
        elif args.command == 'diff':
            return cmd_diff(args)
        elif args.command == 'verify':
            return cmd_verify(args)
        elif args.command == 'prune':
            return cmd_prune(args)
        elif args.command == 'auth':
            return cmd_auth(args)
        elif args.command == 'accounts':
            return cmd_accounts(args)
        elif args.command == 'errors':
            return cmd_errors(args)
        elif args.command == 'init':
            return cmd_init(args)
        elif args.command == 'mcp-server':
            return cmd_mcp_server(args)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return EXIT_GENERAL_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return EXIT_GENERAL_ERROR


if __name__ == '__main__':
    sys.exit(main())
