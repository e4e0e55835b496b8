"""GitHub API access for the compliance checker."""

from org_email_compliance.github.client import (
    ComplianceClient,
    GitHubComplianceClient,
    TrackingIssue,
    new_client,
)
from org_email_compliance.github.throttle import BackoffPolicy, Throttle

__all__ = [
    "BackoffPolicy",
    "ComplianceClient",
    "GitHubComplianceClient",
    "Throttle",
    "TrackingIssue",
    "new_client",
]
