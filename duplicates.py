"""Find and remove duplicate or orphaned Redmine time entries.

Synced Redmine time entries carry the Harvest entry id in a custom field.
Several Redmine entries sharing one Harvest id are duplicates; the newest
(highest id) is kept and the rest may be removed.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from models import TargetTimeEntry


@dataclass
class RemovalResult:
    removed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def index_entries_by_source_id(
    entries: list[TargetTimeEntry],
    field_id: int,
    short: bool = True,
    use_comments: bool = False,
) -> dict[str, list]:
    """Group Redmine entries by the Harvest id they were synced from.

    Entries without a Harvest id are skipped.

    Args:
        entries: Redmine time entries
        field_id: Custom field holding the Harvest entry id
        short: Index entry ids instead of whole entries
        use_comments: Fall back to the [Harvest ID: n] comment marker
    """
    indexed = defaultdict(list)
    for entry in entries:
        harvest_id = entry.source_id(field_id, use_comments=use_comments)
        if not harvest_id:
            continue
        indexed[harvest_id].append(entry.id if short else entry)
    return dict(indexed)


def _entry_id(member) -> int:
    return int(member) if not isinstance(member, TargetTimeEntry) else member.id


def find_duplicate_groups(index: dict[str, list]) -> dict[str, list]:
    """Groups with more than one member, sorted ascending by Redmine id."""
    return {
        harvest_id: sorted(members, key=_entry_id)
        for harvest_id, members in index.items()
        if len(members) > 1
    }


def plan_removal(groups: dict[str, list]) -> list[int]:
    """Redmine ids to delete: all but the newest entry of every group."""
    to_remove = []
    for members in groups.values():
        ids = sorted(_entry_id(m) for m in members)
        # Keep the most recent Redmine time entry
        to_remove.extend(ids[:-1])
    return sorted(to_remove)


def remove_entries(entry_ids: list[int], delete: Callable[[int], bool]) -> RemovalResult:
    """Delete entries one by one; a failure does not stop the rest."""
    result = RemovalResult()
    for entry_id in entry_ids:
        print(f"    Deleting time entry {entry_id}...", end=" ", flush=True)
        try:
            ok = delete(entry_id)
        except Exception as e:
            print(f"error: {e}")
            result.failed.append(entry_id)
            continue
        if ok:
            print("OK")
            result.removed.append(entry_id)
        else:
            print("FAILED")
            result.failed.append(entry_id)
    return result


def find_orphans(
    entries: list[TargetTimeEntry],
    field_id: int,
    entry_exists: Callable[[str], bool],
    short: bool = True,
) -> dict[str, list]:
    """Redmine entries whose Harvest entry no longer exists."""
    orphans = {}
    for harvest_id, members in index_entries_by_source_id(entries, field_id, short=short).items():
        if not entry_exists(harvest_id):
            orphans[harvest_id] = members
    return orphans
