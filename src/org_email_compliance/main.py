"""CLI entrypoint: scan the organization, then reconcile tracking issues."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from org_email_compliance import __version__
from org_email_compliance.config import ComplianceSettings
from org_email_compliance.github.client import ComplianceClient, new_client
from org_email_compliance.logging import configure_logging
from org_email_compliance.membership import scan
from org_email_compliance.reconcile import ReconcileAction, ReconcileReport, reconcile_all

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="org-email-compliance",
        description=(
            "Open tracking issues for organization members without a verified "
            "organization email address"
        ),
    )
    parser.add_argument(
        "--version", action="version", version=f"org-email-compliance {__version__}"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Days before an existing tracking issue is replaced (overrides INPUT_DAYS)",
    )
    parser.add_argument("--org", default=None, help="Organization to scan (overrides INPUT_ORG)")
    parser.add_argument(
        "--repo",
        "--repository",
        dest="repo",
        default=None,
        help="Repository name, within the organization, for tracking issues (overrides INPUT_REPO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log what would change without closing or creating issues",
    )
    return parser


def load_settings(args: argparse.Namespace) -> ComplianceSettings:
    overrides: dict[str, Any] = {
        key: value
        for key, value in {
            "days": args.days,
            "org": args.org,
            "repo": args.repo,
            "dry_run": args.dry_run,
        }.items()
        if value is not None
    }
    return ComplianceSettings(**overrides)


def run(
    settings: ComplianceSettings,
    client: ComplianceClient,
    *,
    now: datetime | None = None,
) -> ReconcileReport:
    """Scan the organization, then reconcile each offending member in turn.

    Scan errors propagate; per-member errors are collected in the report.
    """

    logins = scan(client, settings.org)
    report = reconcile_all(
        client,
        settings.org,
        settings.repo,
        logins,
        settings.stale_days,
        now=now,
        dry_run=settings.dry_run,
        honor_bot_label=settings.honor_bot_label,
    )
    logger.info(
        "Compliance run finished",
        extra={
            "org": settings.org,
            "offending": len(logins),
            "created": report.count(ReconcileAction.CREATE),
            "replaced": report.count(ReconcileAction.REPLACE_STALE),
            "fresh": report.count(ReconcileAction.SKIP_FRESH),
            "bot_accounts": report.count(ReconcileAction.SKIP_BOT),
            "failed": len(report.failures),
        },
    )
    return report


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check the workflow inputs or .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    client = new_client(
        settings.token,
        policy=settings.backoff_policy(),
        base_url=settings.github_base_url,
    )
    try:
        run(settings, client)
    except Exception:
        logger.exception("Compliance run failed", extra={"org": settings.org})
        return 1
    finally:
        client.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
