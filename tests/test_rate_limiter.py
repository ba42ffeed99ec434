"""Tests for the per-actor quota."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from structlog.testing import capture_logs

from plusplus_bot.domain.models import RateLimitRecord
from plusplus_bot.domain.protocols import RepositoryProtocol
from plusplus_bot.services.rate_limiter import (
    WINDOW_SECONDS,
    RateLimiter,
    evaluate_window,
    new_record,
)
from tests.conftest import FakeClock

ACTOR = "U0ACTOR01"


def test_evaluate_window_counts_then_denies() -> None:
    record = new_record(ACTOR, now=100)

    decisions = []
    for _ in range(4):
        decision = evaluate_window(record, now=200, max_ops=3)
        decisions.append(decision.allowed)
        record = decision.record

    assert decisions == [True, True, True, False]
    assert record.count == 3
    assert record.window_start == 100


def test_evaluate_window_denial_leaves_record_unchanged() -> None:
    record = RateLimitRecord(actor=ACTOR, count=3, window_start=0)

    decision = evaluate_window(record, now=WINDOW_SECONDS - 1, max_ops=3)

    assert not decision.allowed
    assert decision.record == record


def test_evaluate_window_starts_new_window_at_boundary() -> None:
    record = RateLimitRecord(actor=ACTOR, count=3, window_start=0)

    decision = evaluate_window(record, now=WINDOW_SECONDS, max_ops=3)

    assert decision.allowed
    assert decision.record.count == 1
    assert decision.record.window_start == WINDOW_SECONDS


def test_zero_quota_denies_everything_inside_window() -> None:
    decision = evaluate_window(new_record(ACTOR, now=0), now=0, max_ops=0)

    assert not decision.allowed


def test_limiter_allows_three_then_denies_then_recovers(
    repo: RepositoryProtocol, clock: FakeClock
) -> None:
    limiter = RateLimiter(repo, max_ops=3, clock=clock)

    results = [limiter.check_and_consume(ACTOR) for _ in range(4)]
    assert results == [True, True, True, False]

    clock.advance(3600)
    assert limiter.check_and_consume(ACTOR) is True

    record = repo.get_rate_limit(ACTOR)
    assert record is not None
    assert record.count == 1
    assert record.window_start == int(clock.now)


def test_limiter_tracks_actors_independently_and_case_insensitively(
    repo: RepositoryProtocol, clock: FakeClock
) -> None:
    limiter = RateLimiter(repo, max_ops=1, clock=clock)

    assert limiter.check_and_consume("U0ALPHA01")
    assert limiter.check_and_consume("U0BRAVO01")
    assert not limiter.check_and_consume("u0alpha01")


def test_limiter_logs_denial(repo: RepositoryProtocol, clock: FakeClock) -> None:
    limiter = RateLimiter(repo, max_ops=0, clock=clock)

    with capture_logs() as logs:
        assert not limiter.check_and_consume(ACTOR)

    denied = [entry for entry in logs if entry["event"] == "rate_limit_denied"]
    assert denied
    assert denied[0]["actor"] == ACTOR
    assert denied[0]["log_level"] == "info"


def test_concurrent_checks_never_exceed_quota(
    repo: RepositoryProtocol, clock: FakeClock
) -> None:
    limiter = RateLimiter(repo, max_ops=5, clock=clock)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: limiter.check_and_consume(ACTOR), range(20)))

    assert results.count(True) == 5
    record = repo.get_rate_limit(ACTOR)
    assert record is not None
    assert record.count == 5


def test_limiter_rejects_invalid_configuration(repo: RepositoryProtocol) -> None:
    with pytest.raises(ValueError):
        RateLimiter(repo, max_ops=-1)
    with pytest.raises(ValueError):
        RateLimiter(repo, max_ops=1, window_seconds=0)
