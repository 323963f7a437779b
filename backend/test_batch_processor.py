"""
Tests for the batch processor and the time-boxed backlog driver.

Async entry points are driven with asyncio.run.
"""

import asyncio
from dataclasses import replace

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from spamguard.models import Message, MessageStatus, RuleMode
from spamguard.services import batch_processor
from spamguard.services.batch_processor import flag_for_review, process_batch, run_backlog
from spamguard.services.errors import SpamValidationError
from spamguard.services.learning_store import learn_from_spam_decision
from spamguard.services.resilience import CircuitBreaker, StorePolicy
from spamguard.services.rules import create_rule


def _process(db, settings, skip=0, take=200, **kwargs):
    return asyncio.run(process_batch(db, skip=skip, take=take, settings=settings, **kwargs))


def _status(db, message_id):
    db.expire_all()
    return db.get(Message, message_id).status


def test_page_exhaustion(db, settings, add_message):
    for n in range(150):
        add_message(f"Hi, can you confirm my appointment for slot {n}")

    result = _process(db, settings, skip=0, take=200)

    assert result.success
    assert result.processed == 150
    assert result.complete is True
    assert result.remaining == 0
    assert result.matched == 0
    assert result.next_skip == 150


def test_flags_rule_pattern_and_learning_hits(db, settings, add_message):
    create_rule(db, "unsubscribe", RuleMode.CONTAINS)
    for _ in range(5):
        learn_from_spam_decision(db, "hello there friend", True)

    by_rule = add_message("Please UNSUBSCRIBE me now")
    by_pattern = add_message("STOP")
    by_learning = add_message("hello there friend")
    clean = add_message("where is my order")

    result = _process(db, settings, take=10)

    assert result.success
    assert result.processed == 4
    assert result.matched == 3
    assert result.actually_updated == 3
    assert (result.rule_matched, result.pattern_matched, result.learning_matched) == (1, 1, 1)
    assert result.complete is True
    assert result.next_skip == 1, "Flagged rows leave the pending set"
    assert result.remaining == 0

    db.expire_all()
    assert db.get(Message, by_rule.id).annotations == ["Rule: unsubscribe"]
    assert db.get(Message, by_pattern.id).annotations[0].startswith("Pattern: 70%")
    assert db.get(Message, by_learning.id).annotations[0].startswith("Learning: ")
    assert db.get(Message, clean.id).status == MessageStatus.PENDING
    assert db.get(Message, clean.id).match_annotations is None


def test_hits_are_ordered_rule_then_pattern(db, settings, add_message):
    create_rule(db, "stop", RuleMode.LONE)
    message = add_message("STOP")

    _process(db, settings)

    db.expire_all()
    annotations = db.get(Message, message.id).annotations
    assert annotations[0] == "Rule: stop"
    assert annotations[1].startswith("Pattern: ")


def test_pattern_threshold_boundary(db, settings, add_message):
    message = add_message("STOP")  # Pattern score 70

    result = _process(db, replace(settings, pattern_threshold=71))
    assert result.matched == 0
    assert _status(db, message.id) == MessageStatus.PENDING

    result = _process(db, replace(settings, pattern_threshold=70))
    assert result.matched == 1
    assert _status(db, message.id) == MessageStatus.REVIEW


def test_rescoring_is_idempotent(db, settings, add_message):
    add_message("STOP")
    add_message("where is my order")

    first = _process(db, settings)
    second = _process(db, settings)

    assert first.matched == 1
    assert second.matched == 0
    assert second.processed == 1


def test_concurrent_claim_is_reported_not_raised(db, settings, add_message, monkeypatch):
    stolen = add_message("STOP")
    add_message("QUIT")

    original_fetch = batch_processor.fetch_pending_page

    def fetch_then_race(session, skip, take):
        items = original_fetch(session, skip, take)
        # Another processor flags one message after we read the page
        session.execute(
            update(Message).where(Message.id == stolen.id).values(status=MessageStatus.REVIEW)
        )
        session.commit()
        return items

    monkeypatch.setattr(batch_processor, "fetch_pending_page", fetch_then_race)

    result = _process(db, settings)

    assert result.success
    assert result.matched == 2
    assert result.actually_updated == 1
    assert result.next_skip == 0, "Both matched rows left the pending set, even the one claimed elsewhere"
    assert result.remaining == 0


def test_conditional_write_touches_zero_rows(db, add_message):
    message = add_message("STOP", status=MessageStatus.REVIEW)
    assert flag_for_review(db, {message.id: ["Rule: stop"]}) == 0

    db.expire_all()
    assert db.get(Message, message.id).match_annotations is None, "Rows claimed elsewhere keep their labels"


def test_failed_flag_write_leaves_page_untouched(db, settings, add_message, monkeypatch):
    first = add_message("STOP")
    second = add_message("QUIT")

    original_chunk = batch_processor.write_flag_chunk
    calls = []

    def fail_on_second_chunk(session, params):
        calls.append(len(params))
        if len(calls) == 1:
            return original_chunk(session, params)
        raise OperationalError("UPDATE messages", {}, Exception("database is locked"))

    monkeypatch.setattr(batch_processor, "write_flag_chunk", fail_on_second_chunk)

    one_per_trip = replace(settings, annotation_concurrency=1)
    policy = StorePolicy(one_per_trip, breaker=CircuitBreaker("flag-write"), on_retry=lambda attempt, error: db.rollback())

    result = _process(db, one_per_trip, policy=policy)

    assert result.success is False
    assert result.next_skip == 0
    assert result.actually_updated == 0
    assert calls[0] == 1, "One row per round-trip at concurrency 1"
    for message_id in (first.id, second.id):
        db.expire_all()
        message = db.get(Message, message_id)
        assert message.status == MessageStatus.PENDING
        assert message.match_annotations is None


def test_item_errors_are_isolated(db, settings, add_message, monkeypatch):
    broken = add_message("STOP")
    fine = add_message("QUIT")

    original_score = batch_processor.score_item

    def flaky_score(item, rules, threshold):
        if item.id == broken.id:
            raise RuntimeError("boom")
        return original_score(item, rules, threshold)

    monkeypatch.setattr(batch_processor, "score_item", flaky_score)

    result = _process(db, settings)

    assert result.success
    assert result.errored == 1
    assert result.processed == 2
    assert _status(db, broken.id) == MessageStatus.PENDING
    assert _status(db, fine.id) == MessageStatus.REVIEW


def test_page_failure_returns_error_result(db, settings, add_message):
    add_message("STOP")
    breaker = CircuitBreaker("test-open", failure_threshold=1, reset_timeout=60.0)
    breaker.state = CircuitBreaker.OPEN
    breaker.opened_at = breaker._clock()

    result = _process(db, settings, skip=5, policy=StorePolicy(settings, breaker=breaker))

    assert result.success is False
    assert "circuit breaker" in result.error.lower()
    assert result.next_skip == 5
    assert result.complete is False


@pytest.mark.parametrize("skip,take", [(-1, 10), (0, 0)])
def test_invalid_cursor_is_rejected(db, settings, skip, take):
    with pytest.raises(SpamValidationError):
        _process(db, settings, skip=skip, take=take)


# ============================================================================
# BACKLOG DRIVER
# ============================================================================

class SteppingClock:
    """Advances by a fixed step on every read."""

    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def test_run_backlog_until_complete(db, settings, add_message):
    spam_ids = [add_message("STOP").id for _ in range(3)]
    clean_ids = [add_message(f"where is my order number {n}").id for n in range(4)]

    result = asyncio.run(run_backlog(db, settings=settings, take=2))

    assert result.success
    assert result.complete
    assert result.stopped_reason == "complete"
    assert result.actually_updated == 3
    assert result.processed == 7
    assert result.remaining == 0
    assert all(_status(db, i) == MessageStatus.REVIEW for i in spam_ids)
    assert all(_status(db, i) == MessageStatus.PENDING for i in clean_ids)


def test_run_backlog_stops_at_deadline_with_cursor(db, settings, add_message):
    for n in range(5):
        add_message(f"where is my order number {n}")

    budget = replace(settings, time_budget_seconds=20.0, deadline_margin_seconds=3.0)
    first = asyncio.run(run_backlog(db, settings=budget, take=2, clock=SteppingClock(10.0)))

    assert first.stopped_reason == "time_budget"
    assert first.complete is False
    assert first.pages == 2
    assert first.next_skip == 4

    rest = asyncio.run(run_backlog(db, settings=budget, skip=first.next_skip, take=2))
    assert rest.complete
    assert rest.processed == 1
