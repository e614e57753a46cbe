"""
Sync Harvest time entries to Redmine.

Usage:
    # Sync today's entries
    python sync_harvest_to_redmine.py

    # Sync a single day / a date range
    python sync_harvest_to_redmine.py 20240115
    python sync_harvest_to_redmine.py 20240101:20240131

    # Simulate only
    python sync_harvest_to_redmine.py 20240115 --dry-run

    # Also update entries that were synced before, and tell people about errors
    python sync_harvest_to_redmine.py 20240101:20240131 --update --notify
"""

import argparse

from clients import ApiError
from mapping import EmptyMapError
from reconcile import options_from_config, sync
from utils import CONFIG_FILE, load_config_safe, parse_date_range


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Push time entries from Harvest to Redmine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Dry-run for a week
    python sync_harvest_to_redmine.py 20240108:20240114 --dry-run

    # Update existing entries
    python sync_harvest_to_redmine.py 20240115 --update

    # Reject entries of Harvest projects that are not linked in Redmine
    python sync_harvest_to_redmine.py 20240115 --strict
        """,
    )
    parser.add_argument(
        "date", nargs="?", default=None,
        help="Date (YYYYMMDD) or range (YYYYMMDD:YYYYMMDD) to sync, default: today",
    )
    parser.add_argument("-u", "--update", action="store_true", help="Update existing time entries")
    parser.add_argument(
        "-d", "--dry-run", action="store_true", help="Do a simulation of what would happen"
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Reject entries whose Harvest project has no linked Redmine project. Only entries "
        "from outside the mapped projects are affected; the sync itself only fetches mapped projects",
    )
    parser.add_argument(
        "-s", "--notify", action="store_true",
        help="Send Slack notifications to users about errors in their time entries",
    )
    parser.add_argument(
        "-c", "--config", default=CONFIG_FILE, help=f"Path to configuration file (default: {CONFIG_FILE})"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        date_from, date_to = parse_date_range(args.date)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    config = load_config_safe(args.config)
    if config is None:
        return 1

    options = options_from_config(
        config, update=args.update, dry_run=args.dry_run, strict=args.strict, notify=args.notify
    )

    try:
        report = sync(config, date_from, date_to, options)
    except EmptyMapError as e:
        print(f"[!] ERROR: {e}")
        return 1
    except ApiError as e:
        print(f"[!] ERROR: {e}")
        return 1

    print()
    print("[*] Done.")
    return 1 if report.has_errors else 0


if __name__ == "__main__":
    exit(main())
