"""Error classification and run report for Harvest to Redmine sync.

Every problem found while processing a single Harvest entry is one of the
``EntryError`` variants below. They are plain records: the sync keeps going
after recording one. Each variant knows how to describe itself, so the
console summary and the Slack messages share the same wording.
"""

from collections import defaultdict
from dataclasses import dataclass, field

from models import TimeEntry


def _short(notes: str, width: int = 50) -> str:
    notes = " ".join(notes.split())
    return notes if len(notes) <= width else notes[: width - 3] + "..."


# ============================================================================
# Errors
# ============================================================================


@dataclass
class EntryError:
    """Base class for per-entry errors."""

    entry: TimeEntry

    category = "Error"
    # Operator-level errors are never sent to the entry's author
    operator_level = False

    @property
    def user_id(self) -> int:
        return self.entry.user_id

    def format(self) -> str:
        raise NotImplementedError


@dataclass
class NoIssueReference(EntryError):
    category = "NoIssueReference"

    def format(self) -> str:
        return (
            f"Entry {self.entry.id} on {self.entry.spent_date} (\"{_short(self.entry.notes)}\") "
            "has no Redmine issue reference (#1234)"
        )


@dataclass
class IssueNotFound(EntryError):
    issue_id: int = 0

    category = "IssueNotFound"

    def format(self) -> str:
        return (
            f"Entry {self.entry.id} on {self.entry.spent_date} references #{self.issue_id}, "
            "which does not exist in Redmine"
        )


@dataclass
class ProjectMismatch(EntryError):
    issue_id: int = 0
    expected: frozenset = frozenset()

    category = "ProjectMismatch"

    def format(self) -> str:
        if not self.expected:
            return (
                f"Entry {self.entry.id} on {self.entry.spent_date}: Harvest project "
                f"{self.entry.project_id} is not linked to any Redmine project"
            )
        names = ", ".join(sorted(name for _, name in self.expected))
        return (
            f"Entry {self.entry.id} on {self.entry.spent_date} references #{self.issue_id}, "
            f"which is not in the expected Redmine project(s): {names}"
        )


@dataclass
class UserNotMapped(EntryError):
    category = "UserNotMapped"

    def format(self) -> str:
        return f"No Redmine user is mapped to Harvest user {self.entry.user_id} ({self.entry.user_name or '?'})"


@dataclass
class DuplicateTargetEntries(EntryError):
    target_ids: list[int] = field(default_factory=list)

    category = "DuplicateTargetEntries"
    operator_level = True

    def format(self) -> str:
        ids = ", ".join(str(i) for i in self.target_ids)
        return f"Multiple Redmine time entries match Harvest entry {self.entry.id}: {ids}"


@dataclass
class SubmissionFailed(EntryError):
    issue_id: int = 0
    message: str = ""

    category = "SubmissionFailed"

    def format(self) -> str:
        return (
            f"Failed to save time entry for #{self.issue_id} "
            f"(Harvest entry {self.entry.id}): {self.message}"
        )


@dataclass
class SubmissionNotPersisted(EntryError):
    issue_id: int = 0

    category = "SubmissionNotPersisted"

    def format(self) -> str:
        return (
            f"Time entry for #{self.issue_id} (Harvest entry {self.entry.id}) was accepted "
            "by Redmine but is missing afterwards"
        )


# ============================================================================
# Annotations and successes
# ============================================================================


@dataclass
class Annotation:
    """Non-fatal remark about an entry."""

    entry: TimeEntry

    # Whether this annotation alone justifies a notification
    notify = False

    @property
    def user_id(self) -> int:
        return self.entry.user_id

    def format(self) -> str:
        raise NotImplementedError


@dataclass
class Misspelling(Annotation):
    words: list[str] = field(default_factory=list)

    notify = True

    def format(self) -> str:
        return (
            f"Entry {self.entry.id} on {self.entry.spent_date} has possible spelling errors: "
            + ", ".join(self.words)
        )


@dataclass
class RoundedHours(Annotation):
    original: float = 0.0
    rounded: float = 0.0

    def format(self) -> str:
        return f"Entry {self.entry.id}: {self.original}h rounded up to {self.rounded}h"


@dataclass
class Success:
    entry: TimeEntry
    issue_id: int
    hours: float
    action: str  # "Created" or "Updated"
    user_login: str


# ============================================================================
# Report
# ============================================================================


@dataclass
class SyncReport:
    """Outcome of one sync run."""

    errors: list[EntryError] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)
    successes: list[Success] = field(default_factory=list)
    skipped: int = 0
    dry_run: bool = False

    def add_error(self, error: EntryError) -> None:
        print(f"    [!] {error.format()}")
        self.errors.append(error)

    def annotate(self, annotation: Annotation) -> None:
        print(f"    [~] {annotation.format()}")
        self.annotations.append(annotation)

    def add_success(self, success: Success) -> None:
        self.successes.append(success)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def errors_by_user(self) -> dict[int, list[EntryError]]:
        """User-attributable errors grouped by Harvest user id."""
        grouped = defaultdict(list)
        for error in self.errors:
            if not error.operator_level:
                grouped[error.user_id].append(error)
        return dict(grouped)

    def users_to_notify(self) -> list[int]:
        users = set(self.errors_by_user())
        users.update(a.user_id for a in self.annotations if a.notify)
        return sorted(users, key=str)

    def user_message(self, user_id: int) -> str:
        """Slack message summarising one user's own problems."""
        errors = self.errors_by_user().get(user_id, [])
        notes = [a for a in self.annotations if a.user_id == user_id]
        lines = ["Hi! The Harvest to Redmine sync found problems with your time entries:"]
        lines.extend(f"• {e.format()}" for e in errors)
        if notes:
            if errors:
                lines.append("")
                lines.append("Also worth a look:")
            lines.extend(f"• {a.format()}" for a in notes)
        return "\n".join(lines)

    def print_summary(self) -> None:
        mode = " (dry-run)" if self.dry_run else ""
        print()
        print("=" * 70)
        print(f"SUMMARY{mode}: {len(self.successes)} synced, {self.skipped} skipped, {len(self.errors)} errors")
        print("=" * 70)

        if self.successes:
            print()
            print(f"{'Action':<9} {'Issue':<8} {'Hours':>6} {'Date':<11} {'User':<15} {'Harvest ID'}")
            print("-" * 70)
            for s in self.successes:
                print(
                    f"{s.action:<9} #{s.issue_id:<7} {s.hours:>6.2f} {s.entry.spent_date:<11} "
                    f"{s.user_login[:15]:<15} {s.entry.id}"
                )

        if self.errors:
            print()
            print(f"{'Category':<24} {'User':<10} {'Message'}")
            print("-" * 70)
            for e in self.errors:
                print(f"{e.category:<24} {str(e.user_id):<10} {e.format()}")
