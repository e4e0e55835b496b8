"""Exception types raised by the compliance checker."""

from __future__ import annotations

from enum import StrEnum


class ComplianceError(Exception):
    """Base class for errors raised by this package."""


class ScanError(ComplianceError):
    """The organization membership listing could not be read."""


class GraphQLError(ComplianceError):
    """The GraphQL endpoint answered with an error payload."""


class RateLimitKind(StrEnum):
    PRIMARY = "primary"
    ABUSE = "abuse"


class RateLimited(ComplianceError):
    """A request was refused because of a rate limit.

    Attributes:
        kind: Which limit was hit (primary quota or abuse detection).
        retry_after: Seconds the server asked us to wait before retrying.
    """

    def __init__(self, kind: RateLimitKind, retry_after: float, message: str = "") -> None:
        self.kind = kind
        self.retry_after = retry_after
        self.message = message or f"{kind.value} rate limit hit"
        super().__init__(self.message)
