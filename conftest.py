"""Shared fixtures: in-memory Harvest and Redmine stand-ins."""

import itertools
from contextlib import contextmanager

import pytest

from models import Issue, TargetTimeEntry, TimeEntry

ENTRY_ID_FIELD = 20


def redmine_project(project_id: int, name: str, harvest_ids: str | None) -> dict:
    fields = [{"id": 1, "name": "Client", "value": "ACME"}]
    if harvest_ids is not None:
        fields.append({"id": 17, "name": "Harvest Project ID(s)", "value": harvest_ids})
    return {"id": project_id, "name": name, "custom_fields": fields}


def redmine_user(user_id: int, login: str, harvest_id: str | None, slack: str | None = None) -> dict:
    fields = []
    if harvest_id is not None:
        fields.append({"id": 5, "name": "Harvest ID", "value": harvest_id})
    if slack is not None:
        fields.append({"id": 6, "name": "Slack", "value": slack})
    return {"id": user_id, "login": login, "custom_fields": fields}


def make_entry(**overrides) -> TimeEntry:
    values = {
        "id": 9001,
        "user_id": 7,
        "project_id": 55,
        "notes": "fixed bug #42",
        "spent_date": "2024-01-15",
        "hours": 1.3,
    }
    values.update(overrides)
    return TimeEntry(**values)


class _ActingAs:
    """Client view returned by FakeRedmine.impersonating."""

    def __init__(self, redmine: "FakeRedmine", login: str):
        self.redmine = redmine
        self.login = login

    def create_time_entry(self, params: dict):
        return self.redmine.write("create", self.login, params)

    def update_time_entry(self, entry_id: int, params: dict):
        return self.redmine.write("update", self.login, params, entry_id=entry_id)


class FakeRedmine:
    def __init__(self, projects=None, users=None, issues=None, time_entries=None, wiki=None):
        self.projects = projects or []
        self.users = users or []
        self.issues = {i.id: i for i in (issues or [])}
        self.time_entries = list(time_entries or [])
        self.wiki = wiki or {}
        self.writes = []
        self.impersonated = []
        self.fail_with: Exception | None = None
        self.drop_writes = False
        self._ids = itertools.count(1000)

    def list_projects(self):
        return self.projects

    def list_users(self, include_locked=True):
        return [u for u in self.users if include_locked or not u.get("locked")]

    def get_issue(self, issue_id):
        return self.issues.get(issue_id)

    def list_time_entries(self, **filters):
        entries = self.time_entries
        if filters.get("issue_id"):
            entries = [e for e in entries if e.issue_id == filters["issue_id"]]
        if filters.get("from_"):
            entries = [e for e in entries if e.spent_on >= filters["from_"]]
        if filters.get("to"):
            entries = [e for e in entries if e.spent_on <= filters["to"]]
        return list(entries)

    def delete_time_entry(self, entry_id):
        before = len(self.time_entries)
        self.time_entries = [e for e in self.time_entries if e.id != entry_id]
        return len(self.time_entries) < before

    def get_wiki_text(self, project, page):
        return self.wiki.get((project, page))

    @contextmanager
    def impersonating(self, login):
        self.impersonated.append(login)
        yield _ActingAs(self, login)

    def write(self, action, login, params, entry_id=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.writes.append((action, login, params))
        if self.drop_writes:
            return None
        if action == "update":
            self.time_entries = [e for e in self.time_entries if e.id != entry_id]
        issue = self.issues[params["issue_id"]]
        entry = TargetTimeEntry(
            id=entry_id or next(self._ids),
            issue_id=issue.id,
            project_id=issue.project_id,
            hours=params["hours"],
            spent_on=params["spent_on"],
            comments=params["comments"],
            user_login=login,
            custom_fields={f["id"]: f["value"] for f in params.get("custom_fields", [])},
        )
        self.time_entries.append(entry)
        return entry


class FakeHarvest:
    def __init__(self, entries=None, existing_ids=None):
        self.entries = list(entries or [])
        self.existing_ids = existing_ids

    def list_entries(self, project_id, date_from, date_to):
        return [
            e for e in self.entries
            if str(e.project_id) == str(project_id) and date_from <= e.spent_date <= date_to
        ]

    def get_entry(self, entry_id):
        ids = self.existing_ids if self.existing_ids is not None else {str(e.id) for e in self.entries}
        return {"id": entry_id} if str(entry_id) in ids else None


class FakeNotifier:
    enabled = True

    def __init__(self):
        self.sent = []

    def notify(self, recipient, text):
        self.sent.append((recipient, text))
        return True


@pytest.fixture
def config():
    return {
        "harvest": {"account_id": "1", "access_token": "h-token"},
        "redmine": {
            "url": "https://redmine.example.com",
            "api_key": "r-key",
            "slack_field": "Slack",
            "entry_id_field": ENTRY_ID_FIELD,
        },
        "sync": {"max_retries": 1, "retry_delay_s": 0},
    }


@pytest.fixture
def redmine():
    return FakeRedmine(
        projects=[
            redmine_project(10, "Site", "55"),
            redmine_project(99, "Other", None),
        ],
        users=[
            redmine_user(3, "alice", "7", slack="@alice"),
            redmine_user(4, "bob", "8"),
        ],
        issues=[
            Issue(id=42, project_id=10, project_name="Site"),
            Issue(id=43, project_id=99, project_name="Other"),
        ],
    )


@pytest.fixture
def harvest():
    return FakeHarvest([make_entry()])
