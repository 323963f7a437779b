"""
Tests for preview, restore and status counts.
"""

import asyncio
from datetime import datetime

import pytest

from spamguard.models import Message, MessageStatus, RuleMode, SpamRule
from spamguard.services.batch_processor import process_batch
from spamguard.services.errors import SpamValidationError
from spamguard.services.learning_store import learn_from_spam_decision
from spamguard.services.review import (
    count_restorable,
    preview_matches,
    restore_before,
    restore_messages,
    status_counts,
)
from spamguard.services.rules import create_rule


def _flag_everything(db, settings):
    return asyncio.run(process_batch(db, skip=0, take=100, settings=settings))


# ============================================================================
# PREVIEW
# ============================================================================

def test_preview_does_not_change_anything(db, settings, add_message):
    create_rule(db, "unsubscribe")
    stop = add_message("STOP")
    unsub = add_message("Please unsubscribe me")
    add_message("where is my order")

    report = asyncio.run(preview_matches(db, limit=10, settings=settings))

    assert report["total_pending"] == 3
    assert report["scanned"] == 3
    assert report["matched"] == 2
    assert report["errored"] == 0

    by_id = {row["id"]: row for row in report["results"]}
    assert by_id[stop.id]["pattern_score"] == 70
    assert by_id[stop.id]["would_flag"] is True
    assert by_id[unsub.id]["rule_matches"] == ["unsubscribe"]
    assert by_id[unsub.id]["historical_score"] is None

    assert status_counts(db)[MessageStatus.PENDING] == 3


def test_preview_reports_learning_history(db, settings, add_message):
    for _ in range(5):
        learn_from_spam_decision(db, "hello there friend", True)
    message = add_message("Hello there, friend")

    report = asyncio.run(preview_matches(db, settings=settings))

    row = report["results"][0]
    assert row["id"] == message.id
    assert row["historical_score"] == pytest.approx(62.5)
    assert row["matches"] == ["Learning: 62%"]


def test_preview_respects_limit(db, settings, add_message):
    for n in range(5):
        add_message(f"message {n} about my order")

    report = asyncio.run(preview_matches(db, limit=2, settings=settings))
    assert report["scanned"] == 2
    assert report["total_pending"] == 5


# ============================================================================
# RESTORE BY DATE
# ============================================================================

def test_restore_before_is_dry_run_by_default(db, settings, add_message):
    old = add_message("STOP", created_at=datetime(2025, 10, 1, 9, 0))
    new = add_message("QUIT", created_at=datetime(2025, 11, 5, 9, 0))
    _flag_everything(db, settings)

    preview = restore_before(db, "2025-10-29")
    assert preview["dry_run"] is True
    assert preview["count"] == 1
    assert preview["restored"] == 0
    assert preview["sample"][0]["id"] == old.id

    db.expire_all()
    assert db.get(Message, old.id).status == MessageStatus.REVIEW

    result = restore_before(db, "2025-10-29", dry_run=False)
    assert result["restored"] == 1

    db.expire_all()
    restored = db.get(Message, old.id)
    assert restored.status == MessageStatus.PENDING
    assert restored.match_annotations is None, "Leaving review always clears annotations"
    assert db.get(Message, new.id).status == MessageStatus.REVIEW


def test_count_restorable(db, settings, add_message):
    add_message("STOP", created_at=datetime(2025, 10, 1, 9, 0))
    _flag_everything(db, settings)

    summary = count_restorable(db, "2025-10-29")
    assert summary["count"] == 1
    assert summary["before_date"] == "2025-10-29"
    assert summary["sample"][0]["matches"][0].startswith("Pattern: ")


@pytest.mark.parametrize("bad_date", ["", None, "29/10/2025", "2025-13-01", "yesterday"])
def test_restore_rejects_bad_dates(db, bad_date):
    with pytest.raises(SpamValidationError):
        restore_before(db, bad_date, dry_run=False)


# ============================================================================
# RESTORE BY ID
# ============================================================================

def test_restore_messages_and_disable_rules(db, settings, add_message):
    global_rule = create_rule(db, "unsubscribe")
    brand_rule = create_rule(db, "refund", RuleMode.CONTAINS, brand="Acme")
    other_brand_rule = create_rule(db, "refund", RuleMode.CONTAINS, brand="Globex")

    unsub = add_message("please unsubscribe me", brand="Acme")
    refund = add_message("I want a refund", brand="ACME")
    pending = add_message("where is my order")
    _flag_everything(db, settings)

    result = restore_messages(db, [unsub.id, refund.id, pending.id, 9999], disable_phrases=True)

    assert result["requested"] == 4
    assert result["restored"] == 2
    assert result["skipped"] == 2
    assert result["disabled_rules"] == 2

    db.expire_all()
    for message_id in (unsub.id, refund.id):
        message = db.get(Message, message_id)
        assert message.status == MessageStatus.PENDING
        assert message.match_annotations is None

    assert db.get(SpamRule, global_rule.id).enabled is False
    assert db.get(SpamRule, brand_rule.id).enabled is False
    assert db.get(SpamRule, other_brand_rule.id).enabled is True, "Other brands keep their rules"


def test_restore_messages_without_disabling(db, settings, add_message):
    rule = create_rule(db, "unsubscribe")
    message = add_message("please unsubscribe me")
    _flag_everything(db, settings)

    result = restore_messages(db, [message.id])
    assert result["restored"] == 1
    assert result["disabled_rules"] == 0

    db.expire_all()
    assert db.get(SpamRule, rule.id).enabled is True


def test_promoted_messages_are_never_restored(db, add_message):
    message = add_message("STOP", status=MessageStatus.PROMOTED)

    result = restore_messages(db, [message.id])
    assert result["restored"] == 0
    assert result["skipped"] == 1


@pytest.mark.parametrize("ids", [[], ["1"], [True]])
def test_restore_messages_validates_ids(db, ids):
    with pytest.raises(SpamValidationError):
        restore_messages(db, ids)


def test_status_counts(db, add_message):
    add_message("a")
    add_message("b", status=MessageStatus.REVIEW)
    add_message("c", status=MessageStatus.PROMOTED)

    assert status_counts(db) == {"pending": 1, "review": 1, "promoted": 1, "total": 3}
