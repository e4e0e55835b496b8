"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from org_email_compliance.config import ComplianceSettings
from org_email_compliance.github.client import TrackingIssue

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

_ENV_VARS = (
    "INPUT_DAYS",
    "INPUT_ORG",
    "INPUT_REPO",
    "INPUT_TOKEN",
    "INPUT_DRY_RUN",
    "INPUT_HONOR_BOT_LABEL",
    "INPUT_MAX_RATE_LIMIT_RETRIES",
    "INPUT_MAX_ABUSE_RETRIES",
    "GITHUB_BASE_URL",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


class FakeComplianceClient:
    """In-memory client that records every call in order."""

    def __init__(
        self,
        pages: list[dict[str, Any]] | None = None,
        issues: dict[str, list[TrackingIssue]] | None = None,
    ) -> None:
        self.pages = list(pages or [])
        self.issues = issues or {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_for: dict[str, Exception] = {}
        self.fail_create_for: dict[str, Exception] = {}
        self._next_number = 1000

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("graphql", dict(variables)))
        return self.pages.pop(0)

    def list_issues(
        self,
        repository: str,
        *,
        assignee: str,
        labels: list[str],
        state: str = "all",
    ) -> list[TrackingIssue]:
        self.calls.append(("list", (repository, assignee, tuple(labels), state)))
        if assignee in self.fail_for:
            raise self.fail_for[assignee]
        return list(self.issues.get(assignee, []))

    def close_issue(self, repository: str, number: int) -> None:
        self.calls.append(("close", (repository, number)))

    def create_issue(
        self,
        repository: str,
        *,
        title: str,
        body: str,
        assignees: list[str],
        labels: list[str],
    ) -> TrackingIssue:
        if assignees[0] in self.fail_create_for:
            raise self.fail_create_for[assignees[0]]
        self.calls.append(("create", (repository, title, tuple(assignees), tuple(labels))))
        self._next_number += 1
        issue = TrackingIssue(
            number=self._next_number,
            created_at=NOW,
            state="open",
            assignees=list(assignees),
            labels=list(labels),
        )
        self.issues.setdefault(assignees[0], []).append(issue)
        return issue

    def writes(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if call[0] in ("close", "create")]


def member_page(
    members: list[tuple[str, list[str]]],
    *,
    end_cursor: str | None,
    has_next_page: bool,
) -> dict[str, Any]:
    """Build one GraphQL ``membersWithRole`` page."""

    return {
        "organization": {
            "membersWithRole": {
                "pageInfo": {"endCursor": end_cursor, "hasNextPage": has_next_page},
                "nodes": [
                    {"login": login, "organizationVerifiedDomainEmails": emails}
                    for login, emails in members
                ],
            }
        }
    }


@pytest.fixture
def clean_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear configuration variables and run from an empty directory."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings(clean_env: None) -> ComplianceSettings:
    """Provide valid settings for a run against octo-org/compliance."""
    return ComplianceSettings(days=14, org="octo-org", repo="compliance", token="test-token")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_page():
    return member_page


@pytest.fixture
def make_client():
    return FakeComplianceClient
