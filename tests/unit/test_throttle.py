"""Unit tests for the rate-limit backoff policy."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from github.GithubException import GithubException, RateLimitExceededException

from org_email_compliance.errors import RateLimited, RateLimitKind
from org_email_compliance.github.throttle import BackoffPolicy, Throttle, classify_rate_limit

NOW = 1_700_000_000.0


def _throttle(policy: BackoffPolicy | None = None) -> tuple[Throttle, list[float]]:
    sleeps: list[float] = []
    return Throttle(policy, sleep=sleeps.append, clock=lambda: NOW), sleeps


def _flaky(*errors: Exception, result: str = "ok") -> Mock:
    return Mock(side_effect=[*errors, result])


def test_policy_defaults_allow_one_retry_per_category() -> None:
    policy = BackoffPolicy()

    assert policy.max_retries(RateLimitKind.PRIMARY) == 1
    assert policy.max_retries(RateLimitKind.ABUSE) == 1


def test_policy_rejects_negative_retries() -> None:
    with pytest.raises(ValueError):
        BackoffPolicy(max_rate_limit_retries=-1)


def test_classify_primary_rate_limit_waits_until_reset() -> None:
    limited = classify_rate_limit(
        403,
        {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(NOW) + 30)},
        "API rate limit exceeded",
        now=NOW,
    )

    assert limited is not None
    assert limited.kind is RateLimitKind.PRIMARY
    assert limited.retry_after == 31.0


def test_classify_secondary_limit_uses_retry_after() -> None:
    limited = classify_rate_limit(
        403, {"Retry-After": "20"}, "You have exceeded a secondary rate limit", now=NOW
    )

    assert limited is not None
    assert limited.kind is RateLimitKind.ABUSE
    assert limited.retry_after == 20.0


def test_classify_abuse_without_header_uses_default_wait() -> None:
    limited = classify_rate_limit(
        403, {}, "abuse detection mechanism", now=NOW, policy=BackoffPolicy(default_wait=5)
    )

    assert limited is not None
    assert limited.kind is RateLimitKind.ABUSE
    assert limited.retry_after == 5


def test_classify_ignores_other_errors() -> None:
    assert classify_rate_limit(403, {}, "Resource not accessible by integration", now=NOW) is None
    assert classify_rate_limit(500, {"Retry-After": "1"}, "", now=NOW) is None


def test_call_returns_result_without_sleeping() -> None:
    throttle, sleeps = _throttle()

    assert throttle.call("GET /x", lambda: 42) == 42
    assert sleeps == []


def test_primary_limit_is_retried_once(caplog: pytest.LogCaptureFixture) -> None:
    throttle, sleeps = _throttle()
    fn = _flaky(RateLimited(RateLimitKind.PRIMARY, 12))

    with caplog.at_level("INFO"):
        assert throttle.call("POST /graphql", fn) == "ok"

    assert fn.call_count == 2
    assert sleeps == [12]
    assert "Request quota exhausted for request POST /graphql" in caplog.text
    assert "Retrying after 12 seconds!" in caplog.text


def test_second_primary_limit_surfaces() -> None:
    throttle, sleeps = _throttle()
    fn = _flaky(RateLimited(RateLimitKind.PRIMARY, 1), RateLimited(RateLimitKind.PRIMARY, 1))

    with pytest.raises(RateLimited):
        throttle.call("GET /x", fn)

    assert fn.call_count == 2
    assert sleeps == [1]


def test_second_abuse_limit_surfaces(caplog: pytest.LogCaptureFixture) -> None:
    throttle, sleeps = _throttle()
    fn = _flaky(RateLimited(RateLimitKind.ABUSE, 3), RateLimited(RateLimitKind.ABUSE, 3))

    with caplog.at_level("WARNING"), pytest.raises(RateLimited):
        throttle.call("POST /repos/o/r/issues", fn)

    assert sleeps == [3]
    assert caplog.text.count("Abuse detected for request POST /repos/o/r/issues") == 2


def test_categories_are_counted_separately() -> None:
    throttle, sleeps = _throttle()
    fn = _flaky(RateLimited(RateLimitKind.PRIMARY, 1), RateLimited(RateLimitKind.ABUSE, 2))

    assert throttle.call("GET /x", fn) == "ok"
    assert sleeps == [1, 2]


def test_zero_retries_surface_immediately() -> None:
    throttle, sleeps = _throttle(BackoffPolicy(max_rate_limit_retries=0, max_abuse_retries=0))

    with pytest.raises(RateLimited):
        throttle.call("GET /x", _flaky(RateLimited(RateLimitKind.ABUSE, 1)))

    assert sleeps == []


def test_wait_is_capped_by_policy() -> None:
    throttle, sleeps = _throttle(BackoffPolicy(max_wait=10))

    throttle.call("GET /x", _flaky(RateLimited(RateLimitKind.PRIMARY, 5000)))

    assert sleeps == [10]


def test_pygithub_rate_limit_exception_is_classified() -> None:
    throttle, sleeps = _throttle()
    exc = RateLimitExceededException(
        403,
        {"message": "You have exceeded a secondary rate limit"},
        {"retry-after": "7"},
    )

    assert throttle.call("GET /x", _flaky(exc)) == "ok"
    assert sleeps == [7]


def test_other_errors_propagate_without_retry() -> None:
    throttle, sleeps = _throttle()
    fn = _flaky(GithubException(404, {"message": "Not Found"}, {}))

    with pytest.raises(GithubException):
        throttle.call("GET /x", fn)

    assert fn.call_count == 1
    assert sleeps == []
