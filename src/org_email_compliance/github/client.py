"""GitHub API client used by the compliance checker.

REST issue calls go through PyGithub; GraphQL queries go through a plain
``requests`` session. Every request is wrapped in a ``Throttle`` so rate-limit
handling is configured in one place (see ``BackoffPolicy``).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib.parse import urlparse, urlunparse

import requests
from github import Auth, Github
from github.Issue import Issue
from github.Repository import Repository

from org_email_compliance.errors import GraphQLError, RateLimited, RateLimitKind
from org_email_compliance.github.throttle import BackoffPolicy, Throttle

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"


@dataclass(frozen=True, slots=True)
class TrackingIssue:
    """Minimal issue metadata needed to reconcile a member."""

    number: int
    created_at: datetime
    state: str
    assignees: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    @classmethod
    def from_issue(cls, issue: Issue) -> TrackingIssue:
        created = issue.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return cls(
            number=issue.number,
            created_at=created,
            state=issue.state,
            assignees=[a.login for a in issue.assignees or []],
            labels=[label.name for label in issue.labels or []],
        )


class ComplianceClient(Protocol):
    """The API operations the scanner and reconciler rely on."""

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]: ...

    def list_issues(
        self,
        repository: str,
        *,
        assignee: str,
        labels: list[str],
        state: str = "all",
    ) -> list[TrackingIssue]: ...

    def close_issue(self, repository: str, number: int) -> None: ...

    def create_issue(
        self,
        repository: str,
        *,
        title: str,
        body: str,
        assignees: list[str],
        labels: list[str],
    ) -> TrackingIssue: ...


class GitHubComplianceClient:
    """``ComplianceClient`` backed by the GitHub REST and GraphQL APIs."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        policy: BackoffPolicy | None = None,
        github_api: Github | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")

        self._rest_base_url = base_url.rstrip("/")
        self._throttle = Throttle(policy, sleep=sleep)
        self._repos: dict[str, Repository] = {}

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "org-email-compliance",
            }
        )

        # PyGithub's own retry is disabled; the throttle decides what gets retried.
        self._github = github_api or Github(
            auth=Auth.Token(token),
            base_url=self._rest_base_url,
            per_page=100,
            retry=None,
        )

    @property
    def policy(self) -> BackoffPolicy:
        return self._throttle.policy

    def _repo(self, repository: str) -> Repository:
        repo = self._repos.get(repository)
        if repo is None:
            repo = self._github.get_repo(repository, lazy=True)
            self._repos[repository] = repo
        return repo

    def _graphql_url(self) -> str:
        # Enterprise Server: REST at /api/v3, GraphQL at /api/graphql.
        parsed = urlparse(self._rest_base_url)
        root = parsed.path.rstrip("/").removesuffix("/v3")
        return urlunparse(parsed._replace(path=f"{root}/graphql"))

    def _post_graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        resp = self._session.post(
            self._graphql_url(), json={"query": query, "variables": variables}, timeout=30
        )
        limited = self._throttle.classify(resp.status_code, resp.headers, resp.text)
        if limited is not None:
            raise limited
        resp.raise_for_status()

        payload: dict[str, Any] = resp.json()
        errors = payload.get("errors")
        if errors:
            messages: list[str] = []
            rate_limited = False
            if isinstance(errors, list):
                for item in errors:
                    if not isinstance(item, dict):
                        continue
                    if item.get("type") == "RATE_LIMITED":
                        rate_limited = True
                    msg = item.get("message")
                    if isinstance(msg, str):
                        messages.append(msg)
            message = "; ".join(messages) if messages else "Unknown GraphQL error"
            if rate_limited:
                limited = self._throttle.classify(403, resp.headers, message)
                raise limited or RateLimited(
                    RateLimitKind.PRIMARY, self.policy.default_wait, message
                )
            raise GraphQLError(f"GitHub GraphQL error: {message}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise GraphQLError("GitHub GraphQL response is missing data")
        return data

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Execute a GraphQL query and return its ``data`` object."""

        return self._throttle.call(
            "POST /graphql", lambda: self._post_graphql(query, variables)
        )

    def list_issues(
        self,
        repository: str,
        *,
        assignee: str,
        labels: list[str],
        state: str = "all",
    ) -> list[TrackingIssue]:
        """List issues (every page) assigned to ``assignee`` that carry all ``labels``."""

        logger.debug(
            "Listing issues",
            extra={"repo": repository, "assignee": assignee, "labels": labels, "state": state},
        )

        def fetch() -> list[TrackingIssue]:
            issues = self._repo(repository).get_issues(
                state=state, assignee=assignee, labels=labels
            )
            return [TrackingIssue.from_issue(issue) for issue in issues]

        return self._throttle.call(f"GET /repos/{repository}/issues", fetch)

    def close_issue(self, repository: str, number: int) -> None:
        if number <= 0:
            raise ValueError("issue number must be a positive integer")

        def close() -> None:
            issue = self._repo(repository).get_issue(number)
            issue.edit(state="closed")

        self._throttle.call(f"PATCH /repos/{repository}/issues/{number}", close)
        logger.info("Issue closed", extra={"repo": repository, "issue_number": number})

    def create_issue(
        self,
        repository: str,
        *,
        title: str,
        body: str,
        assignees: list[str],
        labels: list[str],
    ) -> TrackingIssue:
        issue = self._throttle.call(
            f"POST /repos/{repository}/issues",
            lambda: self._repo(repository).create_issue(
                title=title, body=body, assignees=assignees, labels=labels
            ),
        )
        logger.info("Issue created", extra={"repo": repository, "issue_number": issue.number})
        return TrackingIssue.from_issue(issue)

    def close(self) -> None:
        self._session.close()
        self._github.close()


def new_client(
    token: str,
    *,
    policy: BackoffPolicy | None = None,
    base_url: str = DEFAULT_BASE_URL,
) -> GitHubComplianceClient:
    """Build an authenticated client with the given backoff policy.

    A new client is returned on every call.
    """

    client = GitHubComplianceClient(token=token, base_url=base_url, policy=policy)
    logger.info("GitHub client ready", extra={"base_url": base_url})
    return client
