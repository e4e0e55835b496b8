"""Rate-limit aware backoff for GitHub API calls.

GitHub signals two kinds of throttling:

* the primary rate limit, when the hourly request quota is exhausted
  (``x-ratelimit-remaining: 0``, wait until ``x-ratelimit-reset``);
* the secondary ("abuse detection") limit, usually with a ``retry-after`` header.

``Throttle`` waits and retries a bounded number of times per category, as
configured by ``BackoffPolicy``. Everything else propagates to the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from github.GithubException import RateLimitExceededException

from org_email_compliance.errors import RateLimited, RateLimitKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_STATUSES = frozenset({403, 429})


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """How many times to wait and retry one request, per limit category."""

    max_rate_limit_retries: int = 1
    max_abuse_retries: int = 1
    default_wait: float = 60.0
    max_wait: float = 3600.0

    def __post_init__(self) -> None:
        if self.max_rate_limit_retries < 0 or self.max_abuse_retries < 0:
            raise ValueError("retry counts must be >= 0")
        if self.default_wait < 0 or self.max_wait < 0:
            raise ValueError("wait times must be >= 0")

    def max_retries(self, kind: RateLimitKind) -> int:
        if kind is RateLimitKind.PRIMARY:
            return self.max_rate_limit_retries
        return self.max_abuse_retries


def _lower_keys(headers: Mapping[str, object] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v) for k, v in headers.items()}


def _seconds_until_reset(headers: dict[str, str], now: float) -> float | None:
    reset = headers.get("x-ratelimit-reset")
    if reset is None:
        return None
    try:
        return max(0.0, float(reset) - now) + 1.0
    except ValueError:
        return None


def _retry_after(headers: dict[str, str]) -> float | None:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_rate_limit(
    status: int,
    headers: Mapping[str, object] | None,
    message: str = "",
    *,
    now: float,
    policy: BackoffPolicy | None = None,
) -> RateLimited | None:
    """Return a ``RateLimited`` describing the response, or None if it isn't one."""

    if status not in _RATE_LIMIT_STATUSES:
        return None

    policy = policy or BackoffPolicy()
    lowered = _lower_keys(headers)
    text = message.lower()

    if lowered.get("x-ratelimit-remaining") == "0":
        wait = _seconds_until_reset(lowered, now)
        return RateLimited(
            RateLimitKind.PRIMARY,
            wait if wait is not None else policy.default_wait,
            message,
        )

    retry_after = _retry_after(lowered)
    if retry_after is not None or "secondary rate limit" in text or "abuse" in text:
        return RateLimited(
            RateLimitKind.ABUSE,
            retry_after if retry_after is not None else policy.default_wait,
            message,
        )

    if "rate limit" in text:
        wait = _seconds_until_reset(lowered, now)
        return RateLimited(
            RateLimitKind.PRIMARY,
            wait if wait is not None else policy.default_wait,
            message,
        )

    return None


class Throttle:
    """Runs API calls, waiting out rate limits according to a ``BackoffPolicy``."""

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._clock = clock

    def classify(
        self, status: int, headers: Mapping[str, object] | None, message: str = ""
    ) -> RateLimited | None:
        return classify_rate_limit(
            status, headers, message, now=self._clock(), policy=self.policy
        )

    def _from_github_exception(self, exc: RateLimitExceededException) -> RateLimited:
        limited = self.classify(exc.status, exc.headers, str(exc))
        if limited is not None:
            return limited
        # PyGithub only raises this for rate limits; fall back to the primary quota.
        return RateLimited(RateLimitKind.PRIMARY, self.policy.default_wait, str(exc))

    def call(self, description: str, fn: Callable[[], T]) -> T:
        """Run ``fn``, retrying after a wait while the policy allows it.

        ``description`` names the request in log lines (e.g. ``"GET /repos/o/r/issues"``).
        """

        attempts = {RateLimitKind.PRIMARY: 0, RateLimitKind.ABUSE: 0}
        while True:
            try:
                return fn()
            except (RateLimited, RateLimitExceededException) as exc:
                limited = exc if isinstance(exc, RateLimited) else self._from_github_exception(exc)
                if limited.kind is RateLimitKind.PRIMARY:
                    logger.warning(f"Request quota exhausted for request {description}")
                else:
                    logger.warning(f"Abuse detected for request {description}")

                if attempts[limited.kind] >= self.policy.max_retries(limited.kind):
                    raise
                attempts[limited.kind] += 1
                wait = min(limited.retry_after, self.policy.max_wait)

            logger.info(
                f"Retrying after {wait:g} seconds!",
                extra={"request": description, "limit": limited.kind.value},
            )
            self._sleep(wait)
