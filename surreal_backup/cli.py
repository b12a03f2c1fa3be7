"""Command-line entry points for restoring a slot and running a backup now."""
from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from services.restore import RestoreRequest
from surreal_backup.app import build_components, build_pipeline, build_restore
from surreal_backup.config import BACKUP_KINDS, load_config
from surreal_backup.logging import configure_logging

RESTORE_EPILOG = """\
Examples:
    surreal-restore nightly
    surreal-restore weekly --force
    surreal-restore nightly --verify
"""


def build_restore_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="surreal-restore",
        description="Restore SurrealDB from backup file.",
        epilog=RESTORE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "backup_type",
        choices=BACKUP_KINDS,
        help="Which retention slot to restore from",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    parser.add_argument(
        "-v",
        "--verify",
        action="store_true",
        help="Verify backup integrity only (don't restore)",
    )
    return parser


def restore_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_restore_parser().parse_args(argv)
    config = load_config()
    configure_logging(config)

    workflow = build_restore(build_components(config, mirror_health=False))
    outcome = workflow.restore(
        RestoreRequest(kind=args.backup_type, verify_only=args.verify, force=args.force)
    )

    if outcome.status == "cancelled":
        print("Restore cancelled.")
    elif not outcome.ok:
        print(f"Error: {outcome.error_code}: {outcome.error_message}", file=sys.stderr)
    return 0 if outcome.ok else 1


def backup_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="surreal-backup-run",
        description="Run one SurrealDB backup now and commit it to its slot.",
    )
    parser.add_argument("backup_type", choices=BACKUP_KINDS)
    args = parser.parse_args(argv)

    config = load_config()
    configure_logging(config)

    components = build_components(config, mirror_health=False)
    components.store.ensure_dirs()
    result = build_pipeline(components).run(args.backup_type)
    return 0 if result.ok else 1


def restore_entry() -> None:
    sys.exit(restore_main())


def backup_entry() -> None:
    sys.exit(backup_main())
