"""Tracking issue reconciliation.

For each offending member the checker keeps one tracking issue in the
configured repository:

- no issue yet: open one;
- latest issue younger than the threshold: leave it;
- latest issue older than the threshold: close it and open a fresh one.

When enabled, members may opt a bot account out by putting the
``bot-account`` label on their latest tracking issue.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from org_email_compliance.github.client import ComplianceClient, TrackingIssue

logger = logging.getLogger(__name__)

COMPLIANCE_LABEL = "compliance-unverified-email"
BOT_ACCOUNT_LABEL = "bot-account"
ISSUE_TITLE_TEMPLATE = "Compliance: Unverified Email Address -- {login}"
MS_PER_DAY = 24 * 60 * 60 * 1000
RENOTIFY_DAYS = 14

NOTICE_TEMPLATE = """
This is a notice that you have yet to verify your organization email address on GitHub. The {org} organization mandates that you verify your organization email address.

Please verify your email address by navigating to the following link and adding and verifying your organization email address: https://github.com/settings/emails

You will be notified every {renotify_days} days after this issue was opened that you are in violation of this policy.

If this account is a bot account owned by your organization, please apply the `{bot_label}` label to this issue. And you will not receive any further notifications.

Failure to verify your organization email address may result in your removal from the {org} GitHub organization in the future.

Thank you,

{org} GitHub Support
"""


class ReconcileAction(StrEnum):
    CREATE = "create"
    SKIP_FRESH = "skip_fresh"
    REPLACE_STALE = "replace_stale"
    SKIP_BOT = "skip_bot"


@dataclass(frozen=True, slots=True)
class ReconcileFailure:
    """A member whose reconciliation raised."""

    login: str
    error: Exception


@dataclass(slots=True)
class ReconcileReport:
    """Outcome of reconciling every offending member in one run."""

    outcomes: dict[str, ReconcileAction] = field(default_factory=dict)
    failures: list[ReconcileFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def count(self, action: ReconcileAction) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome is action)


def issue_title(login: str) -> str:
    return ISSUE_TITLE_TEMPLATE.format(login=login)


def render_notice(org: str) -> str:
    return NOTICE_TEMPLATE.format(
        org=org, renotify_days=RENOTIFY_DAYS, bot_label=BOT_ACCOUNT_LABEL
    )


def most_recent(issues: Iterable[TrackingIssue]) -> TrackingIssue | None:
    """Return the issue with the latest ``created_at``, or None if there are none.

    Ties keep the listing order.
    """

    ordered = sorted(issues, key=lambda issue: issue.created_at, reverse=True)
    return ordered[0] if ordered else None


def is_stale(issue: TrackingIssue, stale_days: int, now: datetime) -> bool:
    """True when the issue is more than ``stale_days`` days old (millisecond precision)."""

    created = issue.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=UTC)
    return now - created > timedelta(milliseconds=stale_days * MS_PER_DAY)


def decide(
    issues: list[TrackingIssue],
    stale_days: int,
    now: datetime,
    *,
    honor_bot_label: bool = False,
) -> tuple[ReconcileAction, TrackingIssue | None]:
    """Pick the action for one member given their existing tracking issues."""

    latest = most_recent(issues)
    if latest is None:
        return ReconcileAction.CREATE, None
    if honor_bot_label and BOT_ACCOUNT_LABEL in latest.labels:
        return ReconcileAction.SKIP_BOT, latest
    if is_stale(latest, stale_days, now):
        return ReconcileAction.REPLACE_STALE, latest
    return ReconcileAction.SKIP_FRESH, latest


def _open_issue(
    client: ComplianceClient, org: str, repository: str, login: str, *, dry_run: bool
) -> None:
    logger.info("Opening issue", extra={"login": login, "dry_run": dry_run})
    if dry_run:
        return
    created = client.create_issue(
        repository,
        title=issue_title(login),
        body=render_notice(org),
        assignees=[login],
        labels=[COMPLIANCE_LABEL],
    )
    logger.info("Opened issue", extra={"login": login, "issue_number": created.number})


def reconcile(
    client: ComplianceClient,
    org: str,
    repo: str,
    login: str,
    stale_days: int,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    honor_bot_label: bool = False,
) -> ReconcileAction:
    """Bring one member's tracking issue up to date.

    Errors propagate; a close may succeed before a failing create.
    """

    repository = f"{org}/{repo}"
    now = now or datetime.now(tz=UTC)

    logger.info("Searching for existing issue", extra={"login": login})
    issues = client.list_issues(
        repository, assignee=login, labels=[COMPLIANCE_LABEL], state="all"
    )
    action, latest = decide(issues, stale_days, now, honor_bot_label=honor_bot_label)

    if latest is None:
        _open_issue(client, org, repository, login, dry_run=dry_run)
    elif action is ReconcileAction.SKIP_FRESH:
        logger.info(
            "Existing issue not yet stale",
            extra={"login": login, "issue_number": latest.number},
        )
    elif action is ReconcileAction.SKIP_BOT:
        logger.info(
            "Member opted out as a bot account",
            extra={"login": login, "issue_number": latest.number},
        )
    else:
        logger.info(
            "Closing existing issue",
            extra={"login": login, "issue_number": latest.number, "dry_run": dry_run},
        )
        if not dry_run:
            client.close_issue(repository, latest.number)
        _open_issue(client, org, repository, login, dry_run=dry_run)

    return action


def reconcile_all(
    client: ComplianceClient,
    org: str,
    repo: str,
    logins: Iterable[str],
    stale_days: int,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    honor_bot_label: bool = False,
) -> ReconcileReport:
    """Reconcile members one at a time; a failure for one member doesn't stop the rest."""

    report = ReconcileReport()
    for login in logins:
        try:
            report.outcomes[login] = reconcile(
                client,
                org,
                repo,
                login,
                stale_days,
                now=now,
                dry_run=dry_run,
                honor_bot_label=honor_bot_label,
            )
        except Exception as e:
            logger.error(
                f"Failed to reconcile tracking issue: {e}",
                extra={"login": login},
                exc_info=True,
            )
            report.failures.append(ReconcileFailure(login=login, error=e))
    return report
