"""
Find Redmine time entries whose Harvest entry no longer exists.

Usage:
    python find_orphans.py
    python find_orphans.py --short
"""

import argparse
import json

from clients import ApiError, HarvestClient, RedmineClient
from duplicates import find_orphans
from utils import CONFIG_FILE, load_config_safe


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Find Redmine time entries whose Harvest IDs no longer exist")
    parser.add_argument("-s", "--short", action="store_true", help="Return only IDs rather than full time entries")
    parser.add_argument("-c", "--config", default=CONFIG_FILE, help="Path to configuration file")
    args = parser.parse_args(argv)

    config = load_config_safe(args.config)
    if config is None:
        return 1
    field_id = config["redmine"].get("entry_id_field", 20)
    harvest = HarvestClient(config)
    redmine = RedmineClient(config)

    try:
        entries = redmine.list_time_entries()
        orphans = find_orphans(
            entries,
            field_id,
            lambda harvest_id: harvest.get_entry(harvest_id) is not None,
            short=args.short,
        )
    except ApiError as e:
        print(f"[!] ERROR: {e}")
        return 1

    if not args.short:
        orphans = {k: [vars(m) for m in v] for k, v in orphans.items()}
    print(json.dumps(orphans, indent=2, default=str))
    return 0


if __name__ == "__main__":
    exit(main())
