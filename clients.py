"""API clients for Harvest, Redmine and Slack."""

import copy
from contextlib import contextmanager

import requests

from models import Issue, TargetTimeEntry, TimeEntry
from utils import retry

HARVEST_DEFAULT_URL = "https://api.harvestapp.com/v2"
HARVEST_MAX_PER_PAGE = 2000
REDMINE_MAX_LIMIT = 100

# Redmine user status values
USER_ACTIVE = 1
USER_LOCKED = 3


class ApiError(Exception):
    """User-friendly API error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether repeating the same request may succeed."""
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


def _handle_api_error(response: requests.Response, service: str) -> str:
    """Convert HTTP errors to user-friendly messages."""
    status = response.status_code

    messages = {
        401: f"{service}: Authentication failed. Check your API token!",
        403: f"{service}: Access denied. Check your permissions or API token!",
        404: f"{service}: Resource not found. Check the URL in config.json!",
        422: f"{service}: Request rejected: {_validation_errors(response)}",
        429: f"{service}: Too many requests. Wait a moment and try again.",
        500: f"{service}: Server error. The service may be temporarily unavailable.",
        502: f"{service}: Bad gateway. The service may be temporarily unavailable.",
        503: f"{service}: Service unavailable. Try again later.",
    }

    return messages.get(status, f"{service}: HTTP {status} - {response.reason}")


def _validation_errors(response: requests.Response) -> str:
    """Redmine answers 422 with {"errors": [...]}."""
    try:
        errors = response.json().get("errors", [])
    except ValueError:
        errors = []
    return "; ".join(str(e) for e in errors) or "validation failed"


def _send(service: str, method: str, url: str, **kwargs) -> requests.Response:
    """Perform a request, turning network failures into ApiError."""
    try:
        return requests.request(method, url, **kwargs)
    except requests.exceptions.ConnectionError:
        raise ApiError(f"{service}: Cannot connect to {url}. Check your network!")
    except requests.exceptions.Timeout:
        raise ApiError(f"{service}: Connection timed out. The server may be slow.")


def _retry_settings(config: dict) -> tuple[int, int, float]:
    sync = config.get("sync", {})
    return (
        sync.get("timeout_s", 30),
        sync.get("max_retries", 3),
        sync.get("retry_delay_s", 1.0),
    )


def _log_retry(attempt: int, error: Exception) -> None:
    print(f"    [!] {error} (retry {attempt})")


# ============================================================================
# Harvest
# ============================================================================


class HarvestClient:
    """Client for Harvest REST API v2."""

    def __init__(self, config: dict):
        self.base_url = config["harvest"].get("url", HARVEST_DEFAULT_URL).rstrip("/")
        self.account_id = str(config["harvest"]["account_id"])
        self.token = config["harvest"]["access_token"]
        self.timeout, self.max_retries, self.retry_delay = _retry_settings(config)

    def _get(self, path: str, params: dict | None = None) -> dict | None:
        """GET a resource; None when Harvest answers 404."""

        def operation():
            r = _send(
                "Harvest",
                "GET",
                f"{self.base_url}{path}",
                headers={
                    "Harvest-Account-ID": self.account_id,
                    "Authorization": f"Bearer {self.token}",
                    "User-Agent": "harvest-redmine-sync",
                    "Accept": "application/json",
                },
                params=params,
                timeout=self.timeout,
            )
            if r.status_code == 404:
                return None
            if not r.ok:
                raise ApiError(_handle_api_error(r, "Harvest"), r.status_code)
            return r.json()

        return retry(
            operation,
            max_attempts=self.max_retries,
            delay=self.retry_delay,
            on_retry=_log_retry,
            should_retry=lambda e: isinstance(e, ApiError) and e.transient,
        )

    def _paginate(self, path: str, key: str, params: dict) -> list[dict]:
        results = []
        page = 1
        while True:
            data = self._get(path, {**params, "page": page, "per_page": HARVEST_MAX_PER_PAGE})
            if not data:
                break
            results.extend(data.get(key, []))
            # Stop when we have consumed the last page
            if page >= data.get("total_pages", 1):
                break
            page += 1
        return results

    def list_projects(self) -> list[dict]:
        """Fetch all Harvest projects."""
        return self._paginate("/projects", "projects", {})

    def get_project(self, project_id: int | str) -> dict | None:
        return self._get(f"/projects/{project_id}")

    def list_entries(self, project_id: int | str, date_from: str, date_to: str) -> list[TimeEntry]:
        """Fetch time entries of one project within a date range (YYYY-MM-DD)."""
        raw = self._paginate(
            "/time_entries",
            "time_entries",
            {"project_id": project_id, "from": date_from, "to": date_to},
        )
        return [TimeEntry.from_harvest(e) for e in raw]

    def get_entry(self, entry_id: int | str) -> dict | None:
        """Fetch a single time entry, None if it no longer exists."""
        return self._get(f"/time_entries/{entry_id}")


# ============================================================================
# Redmine
# ============================================================================


class RedmineClient:
    """Client for Redmine REST API.

    Requests are sent as the API key owner unless the client was obtained
    through ``as_user``, in which case Redmine records them as that user.
    """

    def __init__(self, config: dict):
        self.base_url = config["redmine"]["url"].rstrip("/")
        self.api_key = config["redmine"]["api_key"]
        self.timeout, self.max_retries, self.retry_delay = _retry_settings(config)
        self.switch_user: str | None = None

    def as_user(self, login: str | None) -> "RedmineClient":
        """Return a copy of this client acting as another Redmine user."""
        view = copy.copy(self)
        view.switch_user = login
        return view

    @contextmanager
    def impersonating(self, login: str | None):
        """Act as login for the duration of a block; self is never modified."""
        yield self.as_user(login)

    def _headers(self) -> dict:
        headers = {
            "X-Redmine-API-Key": self.api_key,
            "Accept": "application/json",
        }
        if self.switch_user:
            headers["X-Redmine-Switch-User"] = self.switch_user
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        return _send(
            "Redmine",
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs,
        )

    def _get(self, path: str, params: dict | None = None) -> dict | None:
        """GET a resource; None when Redmine answers 404."""

        def operation():
            r = self._request("GET", path, params=params)
            if r.status_code == 404:
                return None
            if not r.ok:
                raise ApiError(_handle_api_error(r, "Redmine"), r.status_code)
            return r.json()

        return retry(
            operation,
            max_attempts=self.max_retries,
            delay=self.retry_delay,
            on_retry=_log_retry,
            should_retry=lambda e: isinstance(e, ApiError) and e.transient,
        )

    def _paginate(self, path: str, key: str, params: dict | None = None) -> list[dict]:
        results = []
        offset = 0
        while True:
            data = self._get(path, {**(params or {}), "limit": REDMINE_MAX_LIMIT, "offset": offset})
            if not data:
                break
            page = data.get(key, [])
            results.extend(page)
            offset += len(page)
            if not page or offset >= data.get("total_count", 0):
                break
        return results

    def list_projects(self) -> list[dict]:
        """Fetch all projects including their custom fields."""
        return self._paginate("/projects.json", "projects")

    def list_users(self, include_locked: bool = True) -> list[dict]:
        """Fetch active (and optionally locked) users."""
        statuses = [USER_ACTIVE, USER_LOCKED] if include_locked else [USER_ACTIVE]
        users = {}
        for status in statuses:
            for user in self._paginate("/users.json", "users", {"status": status}):
                users[user["id"]] = user
        return list(users.values())

    def get_issue(self, issue_id: int) -> Issue | None:
        data = self._get(f"/issues/{issue_id}.json")
        if not data:
            return None
        return Issue.from_redmine(data)

    def list_time_entries(self, **filters) -> list[TargetTimeEntry]:
        """Fetch time entries, e.g. list_time_entries(issue_id=42) or from_/to."""
        params = {k.rstrip("_"): v for k, v in filters.items() if v is not None}
        raw = self._paginate("/time_entries.json", "time_entries", params)
        return [TargetTimeEntry.from_redmine(e) for e in raw]

    def create_time_entry(self, params: dict) -> TargetTimeEntry | None:
        r = self._request("POST", "/time_entries.json", json={"time_entry": params})
        if not r.ok:
            raise ApiError(_handle_api_error(r, "Redmine"), r.status_code)
        try:
            return TargetTimeEntry.from_redmine(r.json())
        except ValueError:
            return None

    def update_time_entry(self, entry_id: int, params: dict) -> None:
        r = self._request("PUT", f"/time_entries/{entry_id}.json", json={"time_entry": params})
        if not r.ok:
            raise ApiError(_handle_api_error(r, "Redmine"), r.status_code)

    def delete_time_entry(self, entry_id: int) -> bool:
        r = self._request("DELETE", f"/time_entries/{entry_id}.json")
        return r.ok

    def get_wiki_text(self, project: str, page: str) -> str | None:
        data = self._get(f"/projects/{project}/wiki/{page}.json")
        if not data:
            return None
        return data.get("wiki_page", {}).get("text", "")


# ============================================================================
# Slack
# ============================================================================


class SlackNotifier:
    """Posts messages to a Slack incoming webhook."""

    def __init__(self, config: dict):
        slack = config.get("slack", {})
        self.webhook_url = slack.get("webhook_url")
        self.debug_user = slack.get("debug_user")

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, recipient: str, text: str) -> bool:
        """Send text to @recipient (or to the debug user, if configured)."""
        if self.debug_user:
            payload = {"channel": f"@{self.debug_user}", "text": f"(for @{recipient})\n{text}"}
        else:
            payload = {"channel": f"@{recipient}", "text": text}

        r = _send("Slack", "POST", self.webhook_url, json=payload, timeout=10)
        return r.status_code == 200
