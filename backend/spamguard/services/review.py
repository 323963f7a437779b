"""
Review queue operations: preview, restore and status counts.

Preview runs the same scorers as the batch processor without writing
anything. Restores move messages review -> pending and always clear their
match annotations; every write is conditional on the message still being in
review.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..config import EngineSettings
from ..models import Message, MessageStatus, decode_annotations
from .batch_processor import ID_CHUNK_SIZE, apply_learning, count_pending, fetch_pending_page, score_page
from .errors import SpamValidationError
from .hits import rule_patterns_from_labels
from .learning_store import learning_key
from .rule_matcher import load_enabled_rules
from .rules import disable_rules_for_patterns
from .settings import get_engine_settings
from .status_validator import validate_transition

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10


def _historical_score(outcome):
    if outcome is None or not outcome.record_count:
        return None
    return outcome.score


async def preview_matches(db: Session, limit: Optional[int] = None, settings: Optional[EngineSettings] = None) -> Dict:
    """
    Dry-run classification of the newest pending messages.

    Returns per-message rule hits, pattern score and reasons, historical
    score and whether the message would be flagged, plus totals.
    """
    settings = settings or get_engine_settings(db)
    limit = settings.preview_limit if limit is None else limit
    if limit < 1:
        raise SpamValidationError("limit must be at least 1")

    rules = await asyncio.to_thread(load_enabled_rules, db)
    items = await asyncio.to_thread(fetch_pending_page, db, 0, limit)
    scores = await score_page(items, rules, settings.pattern_threshold)
    historical = await asyncio.to_thread(
        apply_learning, db, scores, settings.learning_threshold, include_hit_items=True
    )

    results = []
    for s in scores:
        results.append({
            "id": s.item.id,
            "brand": s.item.brand,
            "text": (s.item.text or "")[:200],
            "rule_matches": s.rule_patterns,
            "pattern_score": s.pattern_score,
            "pattern_reasons": s.pattern_reasons,
            "historical_score": _historical_score(historical.get(learning_key(s.item.text, s.item.brand))),
            "matches": [hit.label() for hit in s.hits],
            "would_flag": bool(s.hits),
            "error": s.error,
        })

    total_pending = await asyncio.to_thread(count_pending, db)
    matched = sum(1 for r in results if r["would_flag"])
    return {
        "total_pending": total_pending,
        "scanned": len(results),
        "matched": matched,
        "errored": sum(1 for s in scores if s.error),
        "results": results,
    }


def _parse_cutoff(before_date: Union[str, date, datetime, None]) -> datetime:
    if before_date is None or (isinstance(before_date, str) and not before_date.strip()):
        raise SpamValidationError("before_date is required (YYYY-MM-DD)")
    if isinstance(before_date, datetime):
        return before_date
    if isinstance(before_date, date):
        return datetime(before_date.year, before_date.month, before_date.day)
    try:
        return datetime.strptime(before_date.strip(), "%Y-%m-%d")
    except ValueError:
        raise SpamValidationError(f"Invalid date '{before_date}'. Use YYYY-MM-DD (e.g. 2025-10-29)")


def _review_before(db: Session, cutoff: datetime):
    return db.query(Message).filter(
        Message.status == MessageStatus.REVIEW,
        Message.created_at < cutoff,
    )


def count_restorable(db: Session, before_date) -> Dict:
    """Count review messages created before the cutoff, with a small sample."""
    cutoff = _parse_cutoff(before_date)
    query = _review_before(db, cutoff)
    count = query.count()
    sample = query.order_by(Message.created_at.asc(), Message.id.asc()).limit(SAMPLE_SIZE).all()
    return {
        "before_date": cutoff.date().isoformat(),
        "count": count,
        "sample": [
            {
                "id": m.id,
                "created_at": m.created_at.isoformat() if m.created_at else None,
                "text": (m.text or "")[:100],
                "brand": m.brand,
                "matches": m.annotations,
            }
            for m in sample
        ],
    }


def restore_before(db: Session, before_date, dry_run: bool = True) -> Dict:
    """
    Revert review messages created before a cutoff back to pending.

    Dry run by default: reports what would change without writing.

    Raises:
        SpamValidationError: Missing or malformed before_date
    """
    preview = count_restorable(db, before_date)
    result = {"success": True, "dry_run": dry_run, **preview, "restored": 0}
    if dry_run or preview["count"] == 0:
        return result

    transition = validate_transition(MessageStatus.REVIEW, MessageStatus.PENDING, context="bulk restore")
    if not transition.valid:
        result["success"] = False
        result["error"] = transition.error
        return result

    cutoff = _parse_cutoff(before_date)
    updated = db.execute(
        update(Message)
        .where(Message.status == MessageStatus.REVIEW, Message.created_at < cutoff)
        .values(status=MessageStatus.PENDING, match_annotations=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    result["restored"] = updated.rowcount or 0

    if result["restored"] < preview["count"]:
        logger.warning(
            f"Restore before {preview['before_date']}: {result['restored']}/{preview['count']} "
            f"messages were still in review"
        )
    logger.info(f"Restored {result['restored']} review message(s) created before {preview['before_date']}")
    return result


def restore_messages(db: Session, ids: List[int], disable_phrases: bool = False) -> Dict:
    """
    Move specific review messages back to pending.

    With disable_phrases, the rules whose patterns flagged these messages are
    disabled too: global rules always, brand-scoped rules for the message's
    brand.

    Raises:
        SpamValidationError: Empty or non-integer id list
    """
    if not ids or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        raise SpamValidationError("ids must be a non-empty list of message ids")
    ids = list(dict.fromkeys(ids))

    rows = db.query(Message.id, Message.brand, Message.status, Message.match_annotations).filter(
        Message.id.in_(ids)
    ).all()

    restorable = []
    patterns_by_brand: Dict[Optional[str], set] = {}
    skipped = len(ids) - len(rows)
    for row in rows:
        transition = validate_transition(row.status, MessageStatus.PENDING, context=f"message {row.id}")
        if not transition.valid or row.status != MessageStatus.REVIEW:
            skipped += 1
            continue
        restorable.append(row.id)
        if disable_phrases:
            labels = decode_annotations(row.match_annotations)
            patterns_by_brand.setdefault(row.brand, set()).update(rule_patterns_from_labels(labels))

    restored = 0
    for start in range(0, len(restorable), ID_CHUNK_SIZE):
        chunk = restorable[start:start + ID_CHUNK_SIZE]
        result = db.execute(
            update(Message)
            .where(Message.id.in_(chunk), Message.status == MessageStatus.REVIEW)
            .values(status=MessageStatus.PENDING, match_annotations=None)
            .execution_options(synchronize_session=False)
        )
        restored += result.rowcount or 0

    disabled = disable_rules_for_patterns(db, patterns_by_brand) if disable_phrases else 0
    db.commit()

    logger.info(f"Restored {restored}/{len(ids)} message(s); skipped {skipped}; disabled {disabled} rule(s)")
    return {
        "success": True,
        "requested": len(ids),
        "restored": restored,
        "skipped": skipped + (len(restorable) - restored),
        "disabled_rules": disabled,
    }


def status_counts(db: Session) -> Dict[str, int]:
    """Message counts per status."""
    counts = {status: 0 for status in MessageStatus.ALL}
    for status, count in db.query(Message.status, func.count(Message.id)).group_by(Message.status).all():
        counts[status] = count
    counts["total"] = sum(counts[status] for status in MessageStatus.ALL)
    return counts
