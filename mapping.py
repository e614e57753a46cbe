"""Harvest <-> Redmine project and user mappings.

Both maps are read from Redmine custom fields at the start of every run:
projects carry the Harvest project id(s) they bill to, users carry their
Harvest user id (and optionally their Slack handle).
"""

from collections import defaultdict
from dataclasses import dataclass, field

# Values people type into the custom field instead of leaving it empty
PLACEHOLDER_VALUES = {"", "0", "-", "none", "n/a", "na", "null", "tbd"}


class EmptyMapError(Exception):
    """A mapping built from Redmine came out empty."""


def _custom_field(record: dict, name: str):
    for custom_field in record.get("custom_fields") or []:
        if custom_field.get("name") == name:
            return custom_field.get("value")
    return None


def _is_placeholder(value) -> bool:
    return str(value).strip().lower() in PLACEHOLDER_VALUES


@dataclass
class ProjectMap:
    """Harvest project id -> {(redmine_project_id, redmine_project_name)}."""

    projects: dict[str, set[tuple[int, str]]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.projects)

    def knows(self, harvest_project_id) -> bool:
        return str(harvest_project_id) in self.projects

    def lookup(self, harvest_project_id) -> frozenset[tuple[int, str]]:
        """Redmine projects for a Harvest project (empty if unknown)."""
        return frozenset(self.projects.get(str(harvest_project_id), ()))

    def redmine_ids(self, harvest_project_id) -> set[int]:
        return {pid for pid, _ in self.lookup(harvest_project_id)}

    def harvest_ids(self) -> list[str]:
        return sorted(self.projects)


@dataclass
class UserMap:
    """Harvest user id -> Redmine login (+ Slack handle)."""

    logins: dict[str, str] = field(default_factory=dict)
    slack_handles: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.logins)

    def lookup(self, harvest_user_id) -> str | None:
        return self.logins.get(str(harvest_user_id))

    def slack_handle(self, harvest_user_id) -> str | None:
        return self.slack_handles.get(str(harvest_user_id))


def build_project_map(projects: list[dict], field_name: str = "Harvest Project ID(s)") -> ProjectMap:
    """Build the project map from Redmine projects.

    Raises:
        EmptyMapError: If no project carries a Harvest id.
    """
    mapped = defaultdict(set)
    for project in projects:
        value = _custom_field(project, field_name)
        if not value:
            continue
        for harvest_id in str(value).split(","):
            harvest_id = harvest_id.strip()
            if _is_placeholder(harvest_id):
                continue
            mapped[harvest_id].add((project["id"], project.get("name", "")))

    if not mapped:
        raise EmptyMapError(
            f"Unable to populate project map: no Redmine project has '{field_name}' set. "
            "Check the Redmine API key and the custom field name."
        )
    return ProjectMap(dict(mapped))


def build_user_map(
    users: list[dict], field_name: str = "Harvest ID", slack_field: str | None = None
) -> UserMap:
    """Build the user map from Redmine users (active and locked).

    Raises:
        EmptyMapError: If no user carries a Harvest id.
    """
    logins = {}
    handles_by_login = {}
    for user in users:
        login = user.get("login")
        if not login:
            continue
        harvest_id = _custom_field(user, field_name)
        if harvest_id and not _is_placeholder(harvest_id):
            logins[str(harvest_id).strip()] = login
        if slack_field:
            handle = _custom_field(user, slack_field)
            if handle and not _is_placeholder(handle):
                handles_by_login[login] = str(handle).strip().lstrip("@")

    if not logins:
        raise EmptyMapError(
            f"Unable to populate user map: no Redmine user has '{field_name}' set."
        )

    slack_handles = {
        harvest_id: handles_by_login[login]
        for harvest_id, login in logins.items()
        if login in handles_by_login
    }
    return UserMap(logins, slack_handles)
