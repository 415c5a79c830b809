from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

from chatdesk_core.config import load_core_config, resolve_configured_paths
from chatdesk_core.db.migrate import MigrationManager
from chatdesk_core.db.migrations import get_database_configs
from chatdesk_core.home import ChatDeskPaths, ensure_chatdesk_layout, resolve_chatdesk_home


def open_migration_manager(paths: ChatDeskPaths) -> MigrationManager:
    manager = MigrationManager(paths.backups_dir)
    for db_config in get_database_configs(paths):
        manager.add_database(db_config)
    return manager


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m chatdesk_core.internal.db_admin",
        description="ChatDesk Core database maintenance (no API, no key material).",
    )
    parser.add_argument("--home", type=Path, default=None, help="Override CHATDESK_HOME")
    parser.add_argument("--status", action="store_true", help="Print migration status")
    parser.add_argument("--migrate", action="store_true", help="Apply pending migrations")
    parser.add_argument(
        "--rollback",
        nargs=2,
        metavar=("NAME", "VERSION"),
        help="Roll database NAME back to VERSION",
    )
    parser.add_argument("--backup", action="store_true", help="Back up every database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log migration progress")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    environ = None
    if args.home is not None:
        environ = {"CHATDESK_HOME": str(args.home)}

    home = resolve_chatdesk_home(environ)
    paths = ensure_chatdesk_layout(home)
    config = load_core_config(paths)
    paths = resolve_configured_paths(paths, config)

    exit_code = 0
    manager = open_migration_manager(paths)
    try:
        if args.migrate:
            result = manager.migrate_all()
            _print_json(
                {
                    "success": result.success,
                    "results": {name: asdict(r) for name, r in result.results.items()},
                }
            )
            if not result.success:
                exit_code = 1

        if args.rollback:
            name, raw_version = args.rollback
            migrator = manager.get_migrator(name)
            if migrator is None:
                parser.error(f"unknown database: {name}")
            if not raw_version.isdigit():
                parser.error(f"VERSION must be a non-negative integer, got {raw_version!r}")
            result = migrator.rollback(int(raw_version))
            _print_json(asdict(result))
            if not result.success:
                exit_code = 1

        if args.backup:
            backups: dict[str, str | None] = {}
            for name in manager.database_names():
                backup_path = manager.backup_database(name)
                backups[name] = str(backup_path) if backup_path is not None else None
            _print_json(backups)
            if any(p is None for p in backups.values()):
                exit_code = 1

        if args.status or not (args.migrate or args.rollback or args.backup):
            _print_json({name: asdict(s) for name, s in manager.get_all_status().items()})
    finally:
        manager.close_all()

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
