"""
Preflight checks run before a sweep to catch common misconfigurations early.
"""

import logging
import sqlite3

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from outlook_welkin_sync.models import TransientRemoteFailure
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.outlook_client import OutlookClient
from outlook_welkin_sync.sync.strategies import STRATEGIES
from outlook_welkin_sync.welkin_client import WelkinClient

logger = logging.getLogger(__name__)

_AUTH_STATUS_CODES = frozenset({401, 403})


def run_preflight_checks(
    cfg: SyncConfig,
    console: Console,
    outlook_client: OutlookClient | None = None,
    welkin_client: WelkinClient | None = None,
) -> bool:
    """Return True if a sweep may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Credentials and required settings
    if not cfg.graph_token:
        issues.append(("Graph token", "not set", "Set graph_token in the config or GRAPH_TOKEN"))
    if not cfg.welkin_token:
        issues.append(("Welkin token", "not set", "Set welkin_token in the config or WELKIN_TOKEN"))
    if not cfg.dummy_patient_id:
        issues.append(
            (
                "Dummy patient",
                "not set",
                "Set dummy_patient_id in the config or WELKIN_DUMMY_PATIENT_ID",
            )
        )
    if cfg.strategy not in STRATEGIES:
        issues.append(
            (
                "Strategy",
                f"unknown strategy {cfg.strategy!r}",
                f"Use one of: {', '.join(STRATEGIES)}",
            )
        )
    if cfg.strategy == "shared" and not (cfg.shared_calendar_user and cfg.shared_calendar_name):
        issues.append(
            (
                "Shared calendar",
                "mailbox or calendar name not set",
                "Set shared_calendar_user and shared_calendar_name",
            )
        )
    if issues:
        _print_issues(issues, console)
        return False

    # 2. Welkin reachable and the dummy patient exists
    welkin_client = welkin_client or WelkinClient(cfg, logger)
    try:
        patient = welkin_client.retrieve_patient(cfg.dummy_patient_id)
    except TransientRemoteFailure as e:
        logger.error("Welkin unreachable: %s", e)
        issues.append(("Welkin API", str(e), _hint_for(e, cfg.welkin_api_url)))
    else:
        if patient is None:
            logger.error("Dummy patient not found in Welkin: %s", cfg.dummy_patient_id)
            issues.append(
                (
                    "Dummy patient",
                    f"patient not found: {cfg.dummy_patient_id}",
                    "Create a patient for placeholders and configure its id",
                )
            )

    # 3. Graph reachable and, for the shared strategy, the calendar resolvable
    outlook_client = outlook_client or OutlookClient(cfg, logger)
    try:
        outlook_client.all_domains()
    except TransientRemoteFailure as e:
        logger.error("Graph unreachable: %s", e)
        issues.append(("Graph API", str(e), _hint_for(e, cfg.graph_api_url)))
    else:
        if cfg.strategy == "shared":
            try:
                calendar_id = outlook_client.calendar_id_by_name(
                    cfg.shared_calendar_user, cfg.shared_calendar_name
                )
            except TransientRemoteFailure as e:
                calendar_id = None
                logger.error("Listing calendars of %s failed: %s", cfg.shared_calendar_user, e)
            if calendar_id is None:
                issues.append(
                    (
                        "Shared calendar",
                        f"{cfg.shared_calendar_name!r} not found in {cfg.shared_calendar_user}",
                        "Check the calendar name and the mailbox's sharing permissions",
                    )
                )

    # 4. State DB parent dir writable + DB writable if it exists
    db_path = cfg.state_db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create state DB directory %s: %s", db_path.parent, e)
        issues.append(
            (
                "State database",
                f"{db_path}: {e}",
                f"Check permissions on {db_path.parent}",
            )
        )
    else:
        if db_path.exists():
            try:
                conn = sqlite3.connect(db_path)
                conn.execute("SELECT 1")
                # BEGIN IMMEDIATE needs a journal file next to the DB
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("ROLLBACK")
                conn.close()
            except sqlite3.Error as e:
                logger.error("State DB not readable/writable (%s): %s", db_path, e)
                issues.append(
                    (
                        "State database",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent} "
                        f"(journal files must be creatable alongside the DB)",
                    )
                )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _hint_for(error: TransientRemoteFailure, api_url: str) -> str:
    if error.status_code in _AUTH_STATUS_CODES:
        return "Token rejected — refresh the access token"
    return f"Check network access to {api_url}"


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
