"""
Backlog classification.

One call to process_batch handles one page of pending messages:
1. Snapshot enabled rules (read-only for the whole invocation)
2. Fetch `take` pending messages at offset `skip`, newest first
3. Score every item in worker threads: rule matcher + pattern analyzer
4. One batched learning lookup for items with text and no hit yet
5. Validate pending -> review for every flagged item
6. Conditional status + annotation writes in one transaction, chunked

Store calls go through StorePolicy.arun, so blocking database work and
retry backoff happen off the event loop.

run_backlog repeats pages until the backlog is exhausted or the time budget
is nearly spent, and always hands back a cursor to resume from.
"""

import json
import time
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import bindparam, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import EngineSettings
from ..models import Message, MessageStatus
from .errors import SpamEngineError, SpamValidationError
from .hits import HitKind, MatchHit, history_hit, pattern_hit, rule_hit
from .learning_store import ImprovedScore, get_batch_improved_spam_scores, is_learning_match, learning_key
from .pattern_analyzer import analyze_patterns, is_pattern_match
from .resilience import StorePolicy
from .rule_matcher import CompiledRule, load_enabled_rules, match_rules
from .settings import get_engine_settings
from .status_validator import validate_transition

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; keep IN lists well below it
ID_CHUNK_SIZE = 500


@dataclass
class PageItem:
    """Detached copy of a pending message, safe to hand to worker threads."""

    id: int
    text: str
    brand: Optional[str]
    status: str


@dataclass
class ItemScore:
    item: PageItem
    rule_patterns: List[str] = field(default_factory=list)
    pattern_score: int = 0
    pattern_reasons: List[str] = field(default_factory=list)
    hits: List[MatchHit] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return bool(self.item.text and self.item.text.strip())


@dataclass
class BatchResult:
    success: bool = True
    matched: int = 0
    actually_updated: int = 0
    processed: int = 0
    remaining: int = 0
    complete: bool = False
    next_skip: int = 0
    rule_matched: int = 0
    pattern_matched: int = 0
    learning_matched: int = 0
    blocked: int = 0
    errored: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BacklogResult:
    success: bool = True
    pages: int = 0
    matched: int = 0
    actually_updated: int = 0
    processed: int = 0
    errored: int = 0
    blocked: int = 0
    complete: bool = False
    next_skip: int = 0
    remaining: int = 0
    stopped_reason: str = ""
    elapsed_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


# ============================================================================
# SCORING
# ============================================================================

def score_item(item: PageItem, rules: List[CompiledRule], pattern_threshold: int) -> ItemScore:
    """Rule and pattern scoring for one message. Pure; runs in a worker thread."""
    result = ItemScore(item=item)
    result.rule_patterns = match_rules(item.text, item.brand, rules)
    analysis = analyze_patterns(item.text)
    result.pattern_score = analysis.score
    result.pattern_reasons = analysis.reasons

    result.hits = [rule_hit(pattern) for pattern in result.rule_patterns]
    if is_pattern_match(analysis.score, pattern_threshold):
        result.hits.append(pattern_hit(analysis.score, analysis.reasons))
    return result


def _score_item_safely(item: PageItem, rules: List[CompiledRule], pattern_threshold: int) -> ItemScore:
    try:
        return score_item(item, rules, pattern_threshold)
    except Exception as e:
        # One bad message must not sink the page
        logger.error(f"Scoring failed for message {item.id}: {e}")
        return ItemScore(item=item, error=str(e))


async def score_page(items: List[PageItem], rules: List[CompiledRule], pattern_threshold: int) -> List[ItemScore]:
    """Score all items concurrently, preserving input order."""
    return list(await asyncio.gather(*[
        asyncio.to_thread(_score_item_safely, item, rules, pattern_threshold)
        for item in items
    ]))


def apply_learning(
    db: Session,
    scores: List[ItemScore],
    learning_threshold: int,
    include_hit_items: bool = False,
) -> Dict[str, ImprovedScore]:
    """
    One batched learning lookup for items that have text and no hit yet.

    Appends a learning hit to items whose blended score crosses the
    threshold and returns the lookup results per learning key. Only items
    with at least one matching decision can gain a learning hit; without
    history the blend is just the pattern score, which the pattern threshold
    already judged. With include_hit_items the lookup also covers items
    already flagged by a rule or pattern (for reporting), but those never
    gain a learning hit.
    """
    needs_decision = [s for s in scores if s.error is None and not s.hits and s.has_text]
    lookup = [s for s in scores if s.error is None and s.has_text] if include_hit_items else needs_decision
    if not lookup:
        return {}

    improved = get_batch_improved_spam_scores(
        db, [{"text": s.item.text, "brand": s.item.brand} for s in lookup]
    )
    for s in needs_decision:
        outcome = improved.get(learning_key(s.item.text, s.item.brand))
        if outcome is None or not outcome.record_count:
            continue
        if is_learning_match(outcome.score, learning_threshold):
            s.hits.append(history_hit(outcome.score))
    return improved


# ============================================================================
# STORE ACCESS
# ============================================================================

def _policy_for(db: Session, settings: EngineSettings, policy: Optional[StorePolicy]) -> StorePolicy:
    if policy is not None:
        return policy
    return StorePolicy(settings, on_retry=lambda attempt, error: db.rollback())


def fetch_pending_page(db: Session, skip: int, take: int) -> List[PageItem]:
    rows = db.query(Message.id, Message.text, Message.brand, Message.status).filter(
        Message.status == MessageStatus.PENDING
    ).order_by(Message.created_at.desc(), Message.id.desc()).offset(skip).limit(take).all()
    return [PageItem(id=row.id, text=row.text or "", brand=row.brand, status=row.status) for row in rows]


def count_pending(db: Session) -> int:
    return db.query(func.count(Message.id)).filter(Message.status == MessageStatus.PENDING).scalar() or 0


FLAG_STATEMENT = (
    update(Message.__table__)
    .where(
        Message.__table__.c.id == bindparam("b_id"),
        Message.__table__.c.status == MessageStatus.PENDING,
    )
    .values(status=MessageStatus.REVIEW, match_annotations=bindparam("b_annotations"))
)


def write_flag_chunk(db: Session, params: List[Dict]) -> int:
    """One executemany round-trip; returns rows actually moved to review."""
    result = db.execute(FLAG_STATEMENT, params)
    return result.rowcount if result.rowcount and result.rowcount > 0 else 0


def flag_for_review(db: Session, annotations: Dict[int, List[str]], chunk_size: int = 10) -> int:
    """
    Move messages pending -> review together with their match labels.

    Status and annotations are set by the same conditional statement, so a
    flagged message always says why it was flagged, and rows already claimed
    by another processor are left alone. All chunks commit as one
    transaction; a failure part way through rolls every chunk back.

    Returns the number of rows actually updated.
    """
    params = [
        {"b_id": message_id, "b_annotations": json.dumps(labels)}
        for message_id, labels in annotations.items()
    ]
    chunk_size = max(chunk_size, 1)

    updated = 0
    try:
        for start in range(0, len(params), chunk_size):
            updated += write_flag_chunk(db, params[start:start + chunk_size])
        db.commit()
    except Exception:
        db.rollback()
        raise
    return updated


# ============================================================================
# ORCHESTRATION
# ============================================================================

async def process_batch(
    db: Session,
    skip: int = 0,
    take: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
    policy: Optional[StorePolicy] = None,
) -> BatchResult:
    """
    Classify one page of the pending backlog.

    Args:
        db: Database session
        skip: Offset into the pending set (use next_skip from the previous page)
        take: Page size, defaults to settings.batch_size
        settings: Engine settings snapshot, read from the store when omitted
        policy: Retry/circuit policy for store calls

    Returns:
        BatchResult; page-level store failures come back as success=False

    Raises:
        SpamValidationError: Negative skip or non-positive take
    """
    started = time.monotonic()
    settings = settings or get_engine_settings(db)
    take = settings.batch_size if take is None else take
    if skip is None or skip < 0:
        raise SpamValidationError("skip must be zero or positive")
    if take < 1:
        raise SpamValidationError("take must be at least 1")

    policy = _policy_for(db, settings, policy)
    result = BatchResult(next_skip=skip)

    try:
        rules = await policy.arun(lambda: load_enabled_rules(db))
        items = await policy.arun(lambda: fetch_pending_page(db, skip, take))
        result.processed = len(items)

        scores = await score_page(items, rules, settings.pattern_threshold)
        result.errored = sum(1 for s in scores if s.error)

        await policy.arun(lambda: apply_learning(db, scores, settings.learning_threshold))

        to_flag: Dict[int, List[str]] = {}
        for s in scores:
            if not s.hits:
                continue
            transition = validate_transition(s.item.status, MessageStatus.REVIEW, context=f"message {s.item.id}")
            if not transition.valid:
                result.blocked += 1
                logger.warning(f"Skipping message {s.item.id}: {transition.error}")
                continue
            to_flag[s.item.id] = [hit.label() for hit in s.hits]
            kinds = {hit.kind for hit in s.hits}
            result.rule_matched += int(HitKind.RULE in kinds)
            result.pattern_matched += int(HitKind.PATTERN in kinds)
            result.learning_matched += int(HitKind.HISTORY in kinds)

        result.matched = len(to_flag)
        # Counted before the write so the commit is the page's last store call
        pending_before = await policy.arun(lambda: count_pending(db))

        if to_flag:
            result.actually_updated = await policy.arun(
                lambda: flag_for_review(db, to_flag, settings.annotation_concurrency)
            )
            if result.actually_updated < len(to_flag):
                logger.warning(
                    f"Conditional update touched {result.actually_updated}/{len(to_flag)} messages; "
                    f"the rest were no longer pending"
                )

        result.complete = result.processed < take
        # Every matched row has left the pending set, whether we flagged it or
        # another processor claimed it first, so the next page starts earlier
        result.next_skip = skip + result.processed - result.matched
        result.remaining = max(0, pending_before - result.actually_updated - result.next_skip)

    except (SpamEngineError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"Batch at skip={skip} take={take} failed: {e}")
        result.success = False
        result.error = f"Batch processing failed: {e}"
        result.complete = False
        result.next_skip = skip

    result.elapsed_ms = int((time.monotonic() - started) * 1000)

    if result.success:
        logger.info(
            f"Batch skip={skip} take={take}: processed={result.processed} matched={result.matched} "
            f"updated={result.actually_updated} (rule={result.rule_matched} pattern={result.pattern_matched} "
            f"learning={result.learning_matched}) blocked={result.blocked} errored={result.errored} "
            f"complete={result.complete} next_skip={result.next_skip} in {result.elapsed_ms}ms"
        )
    return result


async def run_backlog(
    db: Session,
    settings: Optional[EngineSettings] = None,
    skip: int = 0,
    take: Optional[int] = None,
    policy: Optional[StorePolicy] = None,
    clock=time.monotonic,
) -> BacklogResult:
    """
    Drive process_batch until the backlog is done or the time budget is close.

    The first page always runs; later pages only start before the soft
    deadline (time budget minus safety margin).
    """
    settings = settings or get_engine_settings(db)
    started = clock()
    deadline = started + settings.time_budget_seconds - settings.deadline_margin_seconds

    summary = BacklogResult(next_skip=skip)
    cursor = skip

    while True:
        if summary.pages and clock() >= deadline:
            summary.stopped_reason = "time_budget"
            logger.info(f"Stopping backlog run at skip={cursor}: time budget nearly spent")
            break

        page = await process_batch(db, skip=cursor, take=take, settings=settings, policy=policy)
        summary.pages += 1

        if not page.success:
            summary.success = False
            summary.error = page.error
            summary.stopped_reason = "error"
            break

        summary.matched += page.matched
        summary.actually_updated += page.actually_updated
        summary.processed += page.processed
        summary.errored += page.errored
        summary.blocked += page.blocked
        summary.remaining = page.remaining
        cursor = page.next_skip

        if page.complete:
            summary.complete = True
            summary.stopped_reason = "complete"
            break

    summary.next_skip = cursor
    summary.elapsed_ms = int((clock() - started) * 1000)
    logger.info(
        f"Backlog run: {summary.pages} page(s), processed={summary.processed} "
        f"updated={summary.actually_updated} complete={summary.complete} next_skip={summary.next_skip}"
    )
    return summary
