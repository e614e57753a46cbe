"""Data models for Harvest to Redmine sync."""

from dataclasses import dataclass, field

from patterns import extract_source_id


def custom_field_values(payload: dict) -> dict[int, object]:
    """Flatten a Redmine ``custom_fields`` list into {field_id: value}."""
    values = {}
    for custom_field in payload.get("custom_fields") or []:
        if "id" in custom_field:
            values[int(custom_field["id"])] = custom_field.get("value")
    return values


@dataclass(frozen=True)
class TimeEntry:
    """A time entry from Harvest."""

    id: int
    user_id: int
    project_id: int
    notes: str
    spent_date: str  # YYYY-MM-DD
    hours: float
    billable: bool = True
    client_id: int | None = None
    user_name: str = ""
    project_name: str = ""

    @classmethod
    def from_harvest(cls, data: dict) -> "TimeEntry":
        user = data.get("user") or {}
        project = data.get("project") or {}
        client = data.get("client") or {}
        return cls(
            id=data["id"],
            user_id=user.get("id"),
            project_id=project.get("id"),
            notes=data.get("notes") or "",
            spent_date=data.get("spent_date", ""),
            hours=float(data.get("hours") or 0),
            billable=bool(data.get("billable", True)),
            client_id=client.get("id"),
            user_name=user.get("name", ""),
            project_name=project.get("name", ""),
        )


@dataclass
class Issue:
    """A Redmine issue."""

    id: int
    project_id: int | None
    project_name: str = ""
    subject: str = ""
    estimated_hours: float | None = None
    spent_hours: float | None = None
    custom_fields: dict[int, object] = field(default_factory=dict)

    @classmethod
    def from_redmine(cls, data: dict) -> "Issue":
        # Accept both {"issue": {...}} and the bare issue dict
        data = data.get("issue", data)
        project = data.get("project") or {}
        return cls(
            id=data["id"],
            project_id=project.get("id"),
            project_name=project.get("name", ""),
            subject=data.get("subject", ""),
            estimated_hours=data.get("estimated_hours"),
            spent_hours=data.get("spent_hours"),
            custom_fields=custom_field_values(data),
        )


@dataclass
class TargetTimeEntry:
    """A time entry in Redmine."""

    id: int
    issue_id: int | None
    project_id: int | None
    hours: float
    spent_on: str
    comments: str = ""
    user_login: str = ""
    custom_fields: dict[int, object] = field(default_factory=dict)

    @classmethod
    def from_redmine(cls, data: dict) -> "TargetTimeEntry":
        data = data.get("time_entry", data)
        return cls(
            id=data["id"],
            issue_id=(data.get("issue") or {}).get("id"),
            project_id=(data.get("project") or {}).get("id"),
            hours=float(data.get("hours") or 0),
            spent_on=data.get("spent_on", ""),
            comments=data.get("comments") or "",
            user_login=(data.get("user") or {}).get("login")
            or (data.get("user") or {}).get("name", ""),
            custom_fields=custom_field_values(data),
        )

    def source_id(self, field_id: int, use_comments: bool = False) -> str | None:
        """Harvest entry id this record was synced from, if recognisable."""
        value = self.custom_fields.get(field_id)
        if value not in (None, ""):
            return str(value).strip()
        if use_comments:
            return extract_source_id(self.comments)
        return None


@dataclass
class SyncOptions:
    """Configuration for sync behavior."""

    update: bool = False
    dry_run: bool = False
    strict: bool = False
    notify: bool = False
    billable_only: bool = False
    entry_id_field: int = 20
    activity_id: int = 9
    exclude_projects: set[str] = field(default_factory=set)
    spell_check_only: set[str] = field(default_factory=set)
    dont_spell_check_clients: set[str] = field(default_factory=set)
    fallback_issues: dict[str, int] = field(default_factory=dict)
