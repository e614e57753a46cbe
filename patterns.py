"""Centralized regex patterns for Harvest to Redmine sync."""

import re


class Patterns:
    """Regex patterns used throughout the sync process."""

    # Redmine issue reference in Harvest notes: #1234
    ISSUE_REFERENCE = re.compile(r"#(\d+)")

    # Harvest marker embedded in Redmine comments: [Harvest ID: 12345]
    HARVEST_MARKER = re.compile(r"\[Harvest ID:?\s*#?(\d+)\]")

    # Date argument: YYYYMMDD
    DATE_ARG = re.compile(r"^\d{8}$")

    # Date format: YYYY-MM-DD
    DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")

    # Words considered for spell checking (letters and inner apostrophes)
    WORD = re.compile(r"[A-Za-z]+(?:'[A-Za-z]+)*")

    # Anything URL-like is removed before spell checking
    URL = re.compile(r"(?:https?://|www\.)\S+")


def parse_issue_reference(text: str | None) -> int | None:
    """Return the issue number of the first #<digits> in text, if any.

    Later references are ignored; whether the number names a real issue is
    decided by the matcher.
    """
    if not text:
        return None
    m = Patterns.ISSUE_REFERENCE.search(text)
    if not m:
        return None
    return int(m.group(1))


def harvest_marker(entry_id: int | str) -> str:
    """Marker appended to Redmine comments to recognise synced entries."""
    return f"[Harvest ID: {entry_id}]"


def extract_source_id(comments: str | None) -> str | None:
    """Extract the Harvest entry id from a Redmine comment marker."""
    if not comments:
        return None
    m = Patterns.HARVEST_MARKER.search(comments)
    return m.group(1) if m else None
