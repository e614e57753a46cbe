"""Tests for duplicate and orphan detection."""

import pytest

from clients import ApiError
from duplicates import (
    find_duplicate_groups,
    find_orphans,
    index_entries_by_source_id,
    plan_removal,
    remove_entries,
)
from models import TargetTimeEntry

FIELD = 20


def target(entry_id: int, harvest_id=None, comments: str = "") -> TargetTimeEntry:
    fields = {} if harvest_id is None else {FIELD: harvest_id}
    return TargetTimeEntry(
        id=entry_id, issue_id=42, project_id=10, hours=1.0, spent_on="2024-01-15",
        comments=comments, custom_fields=fields,
    )


# ---------------------------------------------------------------------------
# index_entries_by_source_id
# ---------------------------------------------------------------------------

class TestIndex:

    def test_no_custom_fields_gives_empty_index(self):
        assert index_entries_by_source_id([target(1), target(2)], FIELD) == {}

    def test_shared_value_grouped(self):
        index = index_entries_by_source_id(
            [target(11, "123565"), target(12, "123565"), target(13, "777")], FIELD
        )
        assert index == {"123565": [11, 12], "777": [13]}

    def test_other_field_ignored(self):
        entry = TargetTimeEntry(
            id=1, issue_id=1, project_id=1, hours=1, spent_on="", custom_fields={21: "5"}
        )
        assert index_entries_by_source_id([entry], FIELD) == {}

    def test_full_records(self):
        a, b = target(11, "5"), target(12, "5")
        assert index_entries_by_source_id([a, b], FIELD, short=False) == {"5": [a, b]}

    def test_comment_marker_only_when_asked(self):
        legacy = target(11, comments="deploy #42 [Harvest ID: 9001]")
        assert index_entries_by_source_id([legacy], FIELD) == {}
        assert index_entries_by_source_id([legacy], FIELD, use_comments=True) == {"9001": [11]}

    def test_custom_field_preferred_over_comment(self):
        entry = target(11, "5", comments="[Harvest ID: 6]")
        assert index_entries_by_source_id([entry], FIELD, use_comments=True) == {"5": [11]}


# ---------------------------------------------------------------------------
# find_duplicate_groups / plan_removal
# ---------------------------------------------------------------------------

class TestDuplicateGroups:

    def test_only_groups_with_several_members(self):
        groups = find_duplicate_groups({"100": [55, 20, 90], "101": [3]})
        assert groups == {"100": [20, 55, 90]}

    def test_numeric_sort(self):
        assert find_duplicate_groups({"1": [100, 9]}) == {"1": [9, 100]}

    def test_full_records_sorted_by_id(self):
        a, b = target(30, "5"), target(4, "5")
        assert find_duplicate_groups({"5": [a, b]}) == {"5": [b, a]}

    def test_plan_removal_keeps_newest(self):
        assert plan_removal({100: [55, 20, 90]}) == [20, 55]

    def test_plan_removal_several_groups(self):
        assert plan_removal({"1": [5, 3], "2": [10, 1, 7]}) == [1, 3, 7]

    def test_plan_removal_empty(self):
        assert plan_removal({}) == []


# ---------------------------------------------------------------------------
# remove_entries
# ---------------------------------------------------------------------------

class TestRemoveEntries:

    def test_best_effort(self):
        calls = []

        def delete(entry_id):
            calls.append(entry_id)
            if entry_id == 2:
                raise ApiError("Redmine: Server error.", 500)
            if entry_id == 5:
                raise RuntimeError("connection reset")
            return entry_id != 3

        result = remove_entries([1, 2, 3, 4, 5, 6], delete)
        assert calls == [1, 2, 3, 4, 5, 6]
        assert result.removed == [1, 4, 6]
        assert result.failed == [2, 3, 5]


# ---------------------------------------------------------------------------
# find_orphans
# ---------------------------------------------------------------------------

class TestFindOrphans:

    def test_missing_harvest_entries(self):
        entries = [target(1, "100"), target(2, "200"), target(3)]
        orphans = find_orphans(entries, FIELD, lambda harvest_id: harvest_id == "100")
        assert orphans == {"200": [2]}

    @pytest.mark.parametrize("short", [True, False])
    def test_short_form(self, short):
        entry = target(1, "200")
        orphans = find_orphans([entry], FIELD, lambda _: False, short=short)
        assert orphans == {"200": [1 if short else entry]}
