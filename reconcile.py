"""Reconcile Harvest time entries into Redmine.

A run builds its maps from Redmine, fetches the Harvest entries for the date
range and pushes each entry through the same pipeline:

    spell check -> match issue -> look for existing Redmine entry
    -> resolve user -> round hours -> create/update -> record outcome

Problems with single entries are recorded in the run's SyncReport and never
stop the batch; only configuration and mapping problems abort a run. Entries
already present in Redmine are skipped, so a run can always be repeated.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal

from clients import ApiError, HarvestClient, RedmineClient, SlackNotifier
from duplicates import index_entries_by_source_id
from mapping import ProjectMap, UserMap, build_project_map, build_user_map
from matcher import Matched, match_entry
from models import SyncOptions, TargetTimeEntry, TimeEntry
from patterns import harvest_marker
from report import (
    DuplicateTargetEntries,
    Misspelling,
    RoundedHours,
    SubmissionFailed,
    SubmissionNotPersisted,
    Success,
    SyncReport,
    UserNotMapped,
)
from spelling import Dictionary, find_misspellings, load_dictionary

# Redmine rejects longer time entry comments
MAX_COMMENT_LENGTH = 1024


@dataclass
class RunContext:
    """Everything one sync run reads and writes."""

    options: SyncOptions
    project_map: ProjectMap
    user_map: UserMap
    dictionary: Dictionary | None = None
    # Harvest id -> existing Redmine entries, built once per run
    index: dict[str, list[TargetTimeEntry]] = field(default_factory=dict)
    report: SyncReport = field(default_factory=SyncReport)
    # Harvest id -> (entry, issue id) for everything written this run
    submitted: dict[str, tuple[TimeEntry, int]] = field(default_factory=dict)


def options_from_config(
    config: dict,
    update: bool = False,
    dry_run: bool = False,
    strict: bool = False,
    notify: bool = False,
) -> SyncOptions:
    """Combine config.json settings with command line flags."""
    redmine = config.get("redmine", {})
    sync = config.get("sync", {})
    projects = sync.get("projects", {})
    clients = sync.get("clients", {})
    return SyncOptions(
        update=update,
        dry_run=dry_run,
        strict=strict or bool(sync.get("strict", False)),
        notify=notify,
        billable_only=bool(sync.get("billable_only", False)),
        entry_id_field=redmine.get("entry_id_field", 20),
        activity_id=redmine.get("activity_id", 9),
        exclude_projects={str(p) for p in projects.get("exclude", [])},
        spell_check_only={str(p) for p in projects.get("spell_check_only", [])},
        dont_spell_check_clients={str(c) for c in clients.get("dont_spell_check", [])},
        fallback_issues={str(k): int(v) for k, v in sync.get("fallback_issues", {}).items()},
    )


def build_run_context(config: dict, redmine: RedmineClient, options: SyncOptions) -> RunContext:
    """Build project map, user map and dictionary from Redmine.

    Raises:
        EmptyMapError: If either map comes out empty.
    """
    redmine_config = config.get("redmine", {})

    print("[*] Building project map...")
    project_map = build_project_map(
        redmine.list_projects(), redmine_config.get("project_field", "Harvest Project ID(s)")
    )
    print(f"    {len(project_map)} Harvest projects mapped")

    print("[*] Building user map...")
    user_map = build_user_map(
        redmine.list_users(include_locked=True),
        redmine_config.get("user_field", "Harvest ID"),
        redmine_config.get("slack_field"),
    )
    print(f"    {len(user_map)} Harvest users mapped")

    dictionary = load_dictionary(config, redmine)
    return RunContext(
        options=options,
        project_map=project_map,
        user_map=user_map,
        dictionary=dictionary,
        report=SyncReport(dry_run=options.dry_run),
    )


def fetch_harvest_entries(
    harvest: HarvestClient, ctx: RunContext, date_from: str, date_to: str
) -> list[TimeEntry]:
    """Fetch Harvest entries for every mapped, non-excluded project."""
    entries = []
    for project_id in ctx.project_map.harvest_ids():
        if project_id in ctx.options.exclude_projects:
            print(f"    - Skipping project {project_id}, in exclude list")
            continue
        print(f"    - Retrieving time entries for Harvest project {project_id}")
        for entry in harvest.list_entries(project_id, date_from, date_to):
            if ctx.options.billable_only and not entry.billable:
                continue
            entries.append(entry)
    return entries


def index_existing(redmine: RedmineClient, ctx: RunContext, date_from: str, date_to: str) -> dict:
    """Index Redmine time entries of the date range by Harvest id."""
    existing = redmine.list_time_entries(from_=date_from, to=date_to)
    return index_entries_by_source_id(
        existing, ctx.options.entry_id_field, short=False, use_comments=True
    )


def round_hours(hours: float) -> float:
    """Round up to the next quarter hour."""
    # Decimal keeps 0.35 at 0.35; 4 * 0.35 is 1.4000000000000001 as a float
    return math.ceil(Decimal(str(hours)) * 4) / 4


def build_time_entry_params(entry: TimeEntry, issue_id: int, hours: float, options: SyncOptions) -> dict:
    """Redmine time entry payload for a Harvest entry."""
    marker = harvest_marker(entry.id)
    notes = entry.notes.strip()
    room = MAX_COMMENT_LENGTH - len(marker) - 1
    if len(notes) > room:
        notes = notes[: room - 3] + "..."
    return {
        "issue_id": issue_id,
        "spent_on": entry.spent_date,
        "activity_id": options.activity_id,
        "hours": hours,
        "comments": f"{notes} {marker}".strip(),
        "custom_fields": [{"id": options.entry_id_field, "value": str(entry.id)}],
    }


def find_existing(
    ctx: RunContext, redmine: RedmineClient, entry: TimeEntry, issue_id: int
) -> list[TargetTimeEntry]:
    """Redmine entries already synced from this Harvest entry.

    The run's index only covers its date range. An entry whose date was moved
    in Harvest is still found through the time entries of its issue.
    """
    harvest_id = str(entry.id)
    found = {e.id: e for e in ctx.index.get(harvest_id, [])}
    for target in redmine.list_time_entries(issue_id=issue_id):
        if target.source_id(ctx.options.entry_id_field, use_comments=True) == harvest_id:
            found.setdefault(target.id, target)
    return sorted(found.values(), key=lambda e: e.id)


def _project_names(ctx: RunContext, entry: TimeEntry) -> str:
    return ",".join(sorted(name for _, name in ctx.project_map.lookup(entry.project_id))) or "?"


def sync_entry(ctx: RunContext, redmine: RedmineClient, entry: TimeEntry) -> None:
    """Run one Harvest entry through the pipeline, recording the outcome."""
    options = ctx.options
    report = ctx.report

    print(f'[*] Processing entry: "{entry.notes}" ({entry.id}) in Redmine project(s) "{_project_names(ctx, entry)}"')

    if ctx.dictionary is not None and str(entry.client_id) not in options.dont_spell_check_clients:
        misspelled = find_misspellings(entry.notes, ctx.dictionary)
        if misspelled:
            report.annotate(Misspelling(entry, words=misspelled))

    if str(entry.project_id) in options.spell_check_only:
        return

    result = match_entry(
        entry,
        ctx.project_map,
        redmine.get_issue,
        strict=options.strict,
        fallback_issues=options.fallback_issues,
    )
    if not isinstance(result, Matched):
        report.add_error(result)
        return
    issue = result.issue

    try:
        existing = find_existing(ctx, redmine, entry, issue.id)
    except ApiError as e:
        report.add_error(
            SubmissionFailed(entry, issue_id=issue.id, message=f"Cannot look up existing time entries: {e}")
        )
        return
    if existing and not options.update:
        report.skipped += 1
        return
    if len(existing) > 1:
        report.add_error(DuplicateTargetEntries(entry, target_ids=[e.id for e in existing]))
        return

    login = ctx.user_map.lookup(entry.user_id)
    if login is None:
        report.add_error(UserNotMapped(entry))
        return

    hours = round_hours(entry.hours)
    if hours != entry.hours:
        report.annotate(RoundedHours(entry, original=entry.hours, rounded=hours))

    params = build_time_entry_params(entry, issue.id, hours, options)
    action = "Updated" if existing else "Created"

    if not options.dry_run:
        try:
            with redmine.impersonating(login) as client:
                if existing:
                    client.update_time_entry(existing[0].id, params)
                else:
                    client.create_time_entry(params)
        except Exception as e:
            report.add_error(SubmissionFailed(entry, issue_id=issue.id, message=str(e)))
            return
        ctx.submitted[str(entry.id)] = (entry, issue.id)

    prefix = "[DRY-RUN] " if options.dry_run else ""
    print(f"    {prefix}[+] {action} time entry for issue #{issue.id} with {hours} hours (Harvest hours: {entry.hours})")
    report.add_success(Success(entry, issue_id=issue.id, hours=hours, action=action, user_login=login))


def sync_entries(ctx: RunContext, redmine: RedmineClient, entries: list[TimeEntry]) -> SyncReport:
    """Process a batch of Harvest entries in order."""
    for entry in entries:
        sync_entry(ctx, redmine, entry)
    return ctx.report


def verify_persisted(
    ctx: RunContext, redmine: RedmineClient, date_from: str, date_to: str
) -> list[SubmissionNotPersisted]:
    """Re-read Redmine and flag submissions that did not stick."""
    current = index_existing(redmine, ctx, date_from, date_to)
    missing = []
    for harvest_id, (entry, issue_id) in ctx.submitted.items():
        if harvest_id not in current:
            error = SubmissionNotPersisted(entry, issue_id=issue_id)
            ctx.report.add_error(error)
            missing.append(error)
    return missing


def notify_users(report: SyncReport, user_map: UserMap, notifier: SlackNotifier) -> int:
    """Send every affected user a summary of their own problems."""
    sent = 0
    for user_id in report.users_to_notify():
        handle = user_map.slack_handle(user_id)
        if not handle:
            print(f"    [!] No Slack handle for Harvest user {user_id}, not notified")
            continue
        try:
            ok = notifier.notify(handle, report.user_message(user_id))
        except ApiError as e:
            print(f"    [!] {e}")
            continue
        if ok:
            sent += 1
        else:
            print(f"    [!] Slack rejected the message for @{handle}")
    return sent


def sync(
    config: dict,
    date_from: str,
    date_to: str,
    options: SyncOptions,
    harvest: HarvestClient | None = None,
    redmine: RedmineClient | None = None,
    notifier: SlackNotifier | None = None,
) -> SyncReport:
    """Main sync function."""
    harvest = harvest or HarvestClient(config)
    redmine = redmine or RedmineClient(config)

    mode = "DRY-RUN" if options.dry_run else ("UPDATE" if options.update else "CREATE")
    print()
    print("=" * 70)
    print(f"SYNC HARVEST -> REDMINE | {date_from} to {date_to} | Mode: {mode}")
    print("=" * 70)
    print()

    ctx = build_run_context(config, redmine, options)

    print()
    print("[1] Fetching Harvest time entries...")
    entries = fetch_harvest_entries(harvest, ctx, date_from, date_to)
    print(f"    Found {len(entries)} entries")

    print()
    print("[2] Indexing existing Redmine time entries...")
    ctx.index = index_existing(redmine, ctx, date_from, date_to)
    print(f"    {len(ctx.index)} Harvest ids already in Redmine")

    print()
    print("[3] Syncing entries...")
    sync_entries(ctx, redmine, entries)

    if ctx.submitted:
        print()
        print("[4] Verifying submitted entries...")
        missing = verify_persisted(ctx, redmine, date_from, date_to)
        print(f"    {len(ctx.submitted) - len(missing)}/{len(ctx.submitted)} present in Redmine")

    ctx.report.print_summary()

    if options.notify and ctx.report.users_to_notify():
        notifier = notifier or SlackNotifier(config)
        if not notifier.enabled:
            print("[!] slack.webhook_url not configured, skipping notifications")
        else:
            print()
            print("[5] Notifying users...")
            sent = notify_users(ctx.report, ctx.user_map, notifier)
            print(f"    Sent {sent} notification(s)")

    return ctx.report
