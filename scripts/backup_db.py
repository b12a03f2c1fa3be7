#!/usr/bin/env python3
"""SurrealDB backup operator script.

Usage:
    python scripts/backup_db.py --kind nightly     # Run a nightly backup now
    python scripts/backup_db.py --schedule         # Show cron schedule suggestion
    python scripts/backup_db.py --list             # Show both retention slots

The daemon (surreal-backup) already runs both kinds on its own schedule;
this script is for one-off runs and inspection.
"""
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from surreal_backup.app import build_components, build_pipeline
from surreal_backup.config import BACKUP_KINDS, get_schedule, load_config
from surreal_backup.logging import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="SurrealDB backup utility")
    parser.add_argument(
        "--kind",
        choices=BACKUP_KINDS,
        help="Run a backup of this kind now",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Show cron schedule suggestion",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Show retention slot status",
    )

    args = parser.parse_args()
    config = load_config()

    if args.schedule:
        print("Add this to your crontab (crontab -e) if not running the daemon:")
        print()
        for kind in BACKUP_KINDS:
            print(f"# {kind.capitalize()} SurrealDB backup")
            print(f"{get_schedule(kind, config)} cd {Path.cwd()} && python scripts/backup_db.py --kind {kind}")
        return 0

    components = build_components(config, mirror_health=False)

    if args.list:
        for kind in BACKUP_KINDS:
            slot = components.store.path(kind)
            stat = components.store.stat(kind)
            if not stat.exists:
                print(f"  {slot.name}: missing")
                continue
            modified = datetime.fromtimestamp(slot.stat().st_mtime, tz=timezone.utc)
            print(f"  {slot.name} ({stat.size_bytes / (1024 * 1024):.2f} MB) - {modified.isoformat()}")
        return 0

    if not args.kind:
        parser.error("one of --kind, --list or --schedule is required")

    configure_logging(config)
    components.store.ensure_dirs()
    result = build_pipeline(components).run(args.kind)
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
