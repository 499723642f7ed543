#!/usr/bin/env python3
"""
CLI for tablesync operations.

Usage:
    tablesync [--config tablesync.yaml] ping
    tablesync load  --table Employee [--where "Salary > ?" --param 40000]
    tablesync apply --table Employee --changes changes.json [--rollback-all] [--timeout 30]

The change file for ``apply`` is JSON:

    {
        "added":    [{"Name": "Ada", "Salary": 50000}],
        "modified": [{"key": {"Id": 1}, "values": {"Salary": 55000}}],
        "deleted":  [{"Id": 2}]
    }
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from .config import SyncConfig, build_retry_policy, build_store, build_synchronizer
from .core.exceptions import ConfigError, TableSyncError
from .core.logging import configure_logging
from .core.models import SynchronizationResult, TabularSnapshot
from .sync.query import QueryRunner


logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging."""
    log_level = logging.DEBUG if verbose else logging.INFO
    configure_logging(level=log_level, structured=json_logs)


def _parse_param(value: str) -> Any:
    """Interpret a --param value as JSON when possible, else as a string."""
    try:
        return json.loads(value)
    except ValueError:
        return value


def _find_row(snapshot: TabularSnapshot, key: Dict[str, Any], change_file: Path):
    row = snapshot.find(**key)
    if row is None:
        raise ConfigError(f"{change_file}: no row in {snapshot.qualified_name} matches key {key}")
    return row


def apply_changes(snapshot: TabularSnapshot, changes: Dict[str, Any], change_file: Path) -> int:
    """
    Apply a change document to a loaded snapshot.

    Args:
        snapshot: Snapshot holding the current table rows
        changes: Parsed change file
        change_file: Path of the change file (for error messages)

    Returns:
        Number of rows changed
    """
    count = 0
    for values in changes.get("added", []):
        snapshot.new_row(values)
        count += 1
    for change in changes.get("modified", []):
        row = _find_row(snapshot, change.get("key", {}), change_file)
        row.update(**change.get("values", {}))
        count += 1
    for key in changes.get("deleted", []):
        _find_row(snapshot, key, change_file).delete()
        count += 1
    return count


def cmd_ping(args, config: SyncConfig) -> int:
    """Check that the store is reachable."""
    store = build_store(config)
    try:
        runner = QueryRunner(store, build_retry_policy(config))
        result = runner.get_scalar("SELECT 1", expected_type=int)
        if result.value_or(0) != 1:
            logger.error(f"Unexpected ping result: {result.status.value}")
            return 1
        print(f"OK ({store.dialect})")
        return 0
    finally:
        store.close()


def cmd_load(args, config: SyncConfig) -> int:
    """Print the rows of a table as JSON."""
    table = config.get_table(args.table)
    store = build_store(config)
    try:
        runner = QueryRunner(store, build_retry_policy(config))
        parameters = [_parse_param(p) for p in args.param or []]
        snapshot = runner.load_snapshot(
            table,
            where=args.where,
            parameters=parameters,
            timeout=config.get("sync.timeout_seconds"),
        )
        print(json.dumps(snapshot.to_records(), indent=2, default=str))
        return 0
    finally:
        store.close()


def cmd_apply(args, config: SyncConfig) -> int:
    """Apply a change file to a table."""
    change_file = Path(args.changes)
    if not change_file.exists():
        logger.error(f"Change file not found: {change_file}")
        return 1

    with open(change_file, "r", encoding="utf-8") as f:
        changes = json.load(f)

    table = config.get_table(args.table)
    timeout = args.timeout if args.timeout is not None else config.get("sync.timeout_seconds")
    rollback_all = args.rollback_all or bool(config.get("sync.rollback_all_on_error", False))

    store = build_store(config)
    try:
        runner = QueryRunner(store, build_retry_policy(config))
        snapshot = runner.load_snapshot(table, timeout=timeout)
        count = apply_changes(snapshot, changes, change_file)
        logger.info(f"Applying {count} change(s) to {snapshot.qualified_name}")

        synchronizer = build_synchronizer(config, store)
        outcome = synchronizer.synchronize(
            snapshot,
            rollback_all_on_error=rollback_all,
            timeout=timeout,
        )

        print(json.dumps({
            "result": outcome.result.value,
            "inserted": outcome.inserted,
            "updated": outcome.updated,
            "deleted": outcome.deleted,
            "failed": outcome.failed,
            "error_message": outcome.error_message,
        }, indent=2))
        return 0 if outcome.result == SynchronizationResult.SUCCESS else 1
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply change-tracked table snapshots to a relational store",
    )
    parser.add_argument("--config", "-c", help="Path to YAML configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("ping", help="Check that the store is reachable")

    load_parser = subparsers.add_parser("load", help="Print the rows of a table as JSON")
    load_parser.add_argument("--table", required=True, help="Declared table name")
    load_parser.add_argument(
        "--where",
        help="WHERE predicate using '?' placeholders; the predicate text is sent to the store as written, "
             "so pass only trusted input and bind values with --param",
    )
    load_parser.add_argument("--param", action="append", help="Placeholder value (repeatable)")

    apply_parser = subparsers.add_parser("apply", help="Apply a JSON change file to a table")
    apply_parser.add_argument("--table", required=True, help="Declared table name")
    apply_parser.add_argument("--changes", required=True, help="Path to JSON change file")
    apply_parser.add_argument(
        "--rollback-all",
        action="store_true",
        help="Roll back every change unless all rows succeed",
    )
    apply_parser.add_argument("--timeout", type=int, help="Per-statement timeout in seconds")

    return parser


COMMANDS = {
    "ping": cmd_ping,
    "load": cmd_load,
    "apply": cmd_apply,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = SyncConfig(args.config)
        return COMMANDS[args.command](args, config)
    except TableSyncError as e:
        logger.error(str(e))
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
