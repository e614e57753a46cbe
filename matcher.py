"""Match Harvest time entries to Redmine issues."""

from dataclasses import dataclass
from typing import Callable

from clients import ApiError
from mapping import ProjectMap
from models import Issue, TimeEntry
from patterns import parse_issue_reference
from report import IssueNotFound, NoIssueReference, ProjectMismatch


@dataclass
class Matched:
    """The entry belongs to this issue."""

    issue: Issue


# Anything else match_entry returns is the error to record for the entry
MatchResult = Matched | NoIssueReference | IssueNotFound | ProjectMismatch


def match_entry(
    entry: TimeEntry,
    project_map: ProjectMap,
    fetch_issue: Callable[[int], Issue | None],
    strict: bool = False,
    fallback_issues: dict[str, int] | None = None,
) -> MatchResult:
    """Find the Redmine issue a Harvest entry should be logged against.

    Args:
        entry: Harvest time entry
        project_map: Harvest project -> Redmine projects
        fetch_issue: Returns the issue for an id, or None if it doesn't exist
        strict: Reject entries whose Harvest project is not in the project map
        fallback_issues: Harvest project id -> issue used when notes contain
            no reference (e.g. a catch-all project management issue)

    Returns:
        Matched(issue), or the classified failure.
    """
    issue_id = parse_issue_reference(entry.notes)
    if issue_id is None:
        issue_id = (fallback_issues or {}).get(str(entry.project_id))
        if issue_id is None:
            return NoIssueReference(entry)

    try:
        issue = fetch_issue(issue_id)
    except ApiError as e:
        print(f"    [!] Could not fetch Redmine issue #{issue_id}: {e}")
        issue = None

    if issue is None or issue.project_id is None:
        # Most likely a GitHub issue reference
        return IssueNotFound(entry, issue_id=issue_id)

    if project_map.knows(entry.project_id):
        expected = project_map.lookup(entry.project_id)
        if issue.project_id not in {pid for pid, _ in expected}:
            return ProjectMismatch(entry, issue_id=issue_id, expected=expected)
    elif strict:
        return ProjectMismatch(entry, issue_id=issue_id, expected=frozenset())

    return Matched(issue)
