"""Utility functions for Harvest to Redmine sync."""

import json
import os
import time
from datetime import datetime
from typing import Callable, TypeVar

from patterns import Patterns

T = TypeVar("T")

# File paths
CONFIG_FILE = "config.json"

# Environment variables take precedence over config.json
ENV_OVERRIDES = {
    "SYNC_HARVEST_ACCOUNT_ID": ("harvest", "account_id"),
    "SYNC_HARVEST_TOKEN": ("harvest", "access_token"),
    "SYNC_REDMINE_URL": ("redmine", "url"),
    "SYNC_REDMINE_API_KEY": ("redmine", "api_key"),
    "SYNC_SLACK_WEBHOOK_URL": ("slack", "webhook_url"),
}


def load_config(path: str = CONFIG_FILE) -> dict:
    """Load config.json with Harvest and Redmine credentials."""
    with open(path) as f:
        return json.load(f)


def apply_env_overrides(config: dict, environ=None) -> dict:
    """Overlay SYNC_* environment variables onto config (in place)."""
    environ = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        if environ.get(var):
            config.setdefault(section, {})[key] = environ[var]

    if environ.get("SYNC_PROJECTS_EXCLUDE"):
        projects = config.setdefault("sync", {}).setdefault("projects", {})
        projects["exclude"] = [p.strip() for p in environ["SYNC_PROJECTS_EXCLUDE"].split(",") if p.strip()]
    return config


def validate_config(config: dict) -> list[str]:
    """Validate config structure and return list of error messages.

    Returns:
        Empty list if valid, otherwise list of error messages.
    """
    errors = []

    # Check required sections
    for section in ["harvest", "redmine"]:
        if section not in config:
            errors.append(f"Missing section '{section}' in config.json")

    if "harvest" in config:
        for key in ["account_id", "access_token"]:
            if not config["harvest"].get(key):
                errors.append(f"Missing harvest.{key}")

    if "redmine" in config:
        for key in ["url", "api_key"]:
            if not config["redmine"].get(key):
                errors.append(f"Missing redmine.{key}")
        field_id = config["redmine"].get("entry_id_field", 20)
        if not isinstance(field_id, int):
            errors.append("redmine.entry_id_field must be a number (the custom field id)")

    spellcheck = config.get("spellcheck", {})
    if bool(spellcheck.get("project")) != bool(spellcheck.get("wiki_page")):
        errors.append("spellcheck.project and spellcheck.wiki_page must be set together")

    fallback = config.get("sync", {}).get("fallback_issues", {})
    if not isinstance(fallback, dict):
        errors.append("sync.fallback_issues must map Harvest project ids to issue numbers")

    return errors


def load_config_safe(path: str = CONFIG_FILE) -> dict | None:
    """Load config with user-friendly error messages.

    Returns:
        Config dict if valid, None if errors occurred.
    """
    if not os.path.exists(path):
        print(f"[!] ERROR: {path} not found!")
        print()
        print("    Create config.json based on config.example.json:")
        print("    $ cp config.example.json config.json")
        print("    $ nano config.json  # Fill in your credentials")
        print()
        return None

    try:
        config = load_config(path)
    except json.JSONDecodeError as e:
        print(f"[!] ERROR: {path} is not valid JSON!")
        print(f"    Line {e.lineno}, column {e.colno}: {e.msg}")
        print()
        print("    Check for missing commas, quotes, or brackets.")
        return None

    apply_env_overrides(config)

    errors = validate_config(config)
    if errors:
        print(f"[!] ERROR: {path} is incomplete:")
        for err in errors:
            print(f"    - {err}")
        print()
        print("    See config.example.json for the required structure.")
        return None

    return config


def parse_date_range(value: str | None) -> tuple[str, str]:
    """Turn 'YYYYMMDD' or 'YYYYMMDD:YYYYMMDD' into (from, to) as YYYY-MM-DD.

    Defaults to today.

    Raises:
        ValueError: On malformed dates or a range that ends before it starts.
    """
    if not value:
        today = datetime.now().strftime("%Y-%m-%d")
        return today, today

    if ":" in value:
        date_from, date_to = value.split(":", 1)
    else:
        date_from = date_to = value

    parsed = []
    for part in (date_from, date_to):
        if not Patterns.DATE_ARG.match(part):
            raise ValueError(f"Invalid date '{part}'. Expected YYYYMMDD (e.g., 20240115)")
        parsed.append(datetime.strptime(part, "%Y%m%d"))

    if parsed[1] < parsed[0]:
        raise ValueError(f"Date range {value} ends before it starts")
    return parsed[0].strftime("%Y-%m-%d"), parsed[1].strftime("%Y-%m-%d")


def retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 1.0,
    on_retry: Callable[[int, Exception], None] | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
) -> T:
    """Execute an idempotent operation with retries.

    Args:
        operation: Callable to execute
        max_attempts: Maximum number of attempts
        delay: Delay in seconds between attempts
        on_retry: Optional callback when retrying (attempt_num, exception)
        should_retry: Optional predicate; errors it rejects are raised at once

    Returns:
        Result of operation

    Raises:
        The last error once all attempts failed.
    """
    for attempt in range(max(1, max_attempts)):
        try:
            return operation()
        except Exception as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= max_attempts - 1:
                raise
            if on_retry:
                on_retry(attempt + 1, e)
            time.sleep(delay)
