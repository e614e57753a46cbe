"""
Find (and optionally remove) duplicate Redmine time entries.

Two Redmine time entries carrying the same Harvest id are duplicates. The
newest one is kept.

Usage:
    # Print duplicate groups as JSON
    python find_duplicates.py

    # Only Redmine ids
    python find_duplicates.py --short

    # Show what would be removed / remove it
    python find_duplicates.py --remove
    python find_duplicates.py --remove --execute
"""

import argparse
import json

from clients import ApiError, RedmineClient
from duplicates import find_duplicate_groups, index_entries_by_source_id, plan_removal, remove_entries
from utils import CONFIG_FILE, load_config_safe


def _as_json(groups: dict) -> str:
    def member(m):
        return m if isinstance(m, int) else {
            "id": m.id,
            "issue_id": m.issue_id,
            "hours": m.hours,
            "spent_on": m.spent_on,
            "comments": m.comments,
        }

    return json.dumps({k: [member(m) for m in v] for k, v in groups.items()}, indent=2)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Find duplicate Redmine time entries")
    parser.add_argument("-s", "--short", action="store_true", help="Return only IDs rather than full time entries")
    parser.add_argument("--remove", action="store_true", help="Plan removal of all but the newest entry")
    parser.add_argument("--execute", action="store_true", help="Actually delete (default: dry-run)")
    parser.add_argument("-c", "--config", default=CONFIG_FILE, help="Path to configuration file")
    args = parser.parse_args(argv)

    config = load_config_safe(args.config)
    if config is None:
        return 1
    field_id = config["redmine"].get("entry_id_field", 20)
    redmine = RedmineClient(config)

    try:
        entries = redmine.list_time_entries()
    except ApiError as e:
        print(f"[!] Unable to connect to Redmine. Error: {e}")
        return 1

    groups = find_duplicate_groups(index_entries_by_source_id(entries, field_id, short=args.short))
    if not args.remove:
        print(_as_json(groups))
        return 0

    to_remove = plan_removal(groups)
    print(f"[*] {len(groups)} duplicate groups, {len(to_remove)} entries to remove")
    if not args.execute:
        for entry_id in to_remove:
            print(f"    [DRY-RUN] Would delete time entry {entry_id}")
        print()
        print("Run with --execute to apply changes.")
        return 0

    result = remove_entries(to_remove, redmine.delete_time_entry)
    print()
    print(f"[*] Removed {len(result.removed)}, failed {len(result.failed)}")
    if result.failed:
        print(f"    Failed: {', '.join(str(i) for i in result.failed)}")
        return 1
    return 0


if __name__ == "__main__":
    exit(main())
