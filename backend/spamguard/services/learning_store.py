"""
Learning store and confidence blender.

Every agent disposition (spam vs legitimate) is appended as an immutable
LearningRecord. Scoring a new message looks up records with the same or a
near-duplicate normalized text, measures how strongly they agree, and blends
that history with a fresh pattern analysis. The more matching decisions
exist, the more the history outweighs the heuristics.

The single and batch read paths share one matcher (_score_against_history)
so a batch lookup always returns exactly what per-item lookups would.

Reads are bounded by text length: a near duplicate at NEAR_DUPLICATE_THRESHOLD
similarity can differ in length by at most that ratio, so only records inside
each looked-up text's length window are ever loaded.
"""

import json
import math
import bisect
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models import LearningRecord, LearningSource
from .errors import SpamValidationError
from .pattern_analyzer import analyze_patterns, derive_pattern_tag
from .text_normalize import normalize_brand, normalize_text

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

MAX_TEXT_LENGTH = 1000
TEXT_KEY_LENGTH = 50
NEAR_DUPLICATE_THRESHOLD = 0.85

# Blend weight for history is n / (n + PRIOR_WEIGHT), capped at MAX_HISTORY_WEIGHT
PRIOR_WEIGHT = 3.0
MAX_HISTORY_WEIGHT = 0.8

DEFAULT_LEARNING_THRESHOLD = 60


@dataclass
class ImprovedScore:
    score: float
    reasons: List[str] = field(default_factory=list)
    historical_confidence: float = 0.0
    record_count: int = 0
    pattern_score: int = 0

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "reasons": list(self.reasons),
            "historical_confidence": self.historical_confidence,
            "record_count": self.record_count,
            "pattern_score": self.pattern_score,
        }


class _History:
    """Learning records grouped by normalized text, texts sorted by length."""

    def __init__(self, rows: Iterable[Tuple[str, Optional[str], bool]]):
        self.by_text: Dict[str, List[Tuple[Optional[str], bool]]] = defaultdict(list)
        for normalized_text, brand_norm, is_spam in rows:
            self.by_text[normalized_text or ""].append((brand_norm, bool(is_spam)))
        self.texts = sorted((text for text in self.by_text if text), key=lambda text: (len(text), text))
        self.lengths = [len(text) for text in self.texts]

    def candidates(self, length: int) -> List[str]:
        """Texts long enough and short enough to be near duplicates."""
        low, high = length_window(length)
        return self.texts[bisect.bisect_left(self.lengths, low):bisect.bisect_right(self.lengths, high)]


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def learning_key(text: Optional[str], brand: Optional[str]) -> str:
    """Key used by the batch read path: full raw text plus brand."""
    return f"{text or ''}|{brand or ''}"


def length_window(length: int) -> Tuple[int, int]:
    """Inclusive range of normalized lengths that can reach the near-duplicate threshold."""
    return math.floor(length * NEAR_DUPLICATE_THRESHOLD), math.ceil(length / NEAR_DUPLICATE_THRESHOLD)


def merge_length_windows(lengths: Iterable[int]) -> List[Tuple[int, int]]:
    """Union of length windows for many texts as sorted, non-overlapping ranges."""
    merged: List[Tuple[int, int]] = []
    for low, high in sorted(length_window(length) for length in set(lengths) if length > 0):
        if merged and low <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], high))
        else:
            merged.append((low, high))
    return merged


def _in_scope(record_brand: Optional[str], query_brand: Optional[str]) -> bool:
    # Brand-scoped queries see their own brand plus global (brandless) decisions
    if query_brand is None:
        return True
    return record_brand is None or record_brand == query_brand


def _load_history(db: Session, brand_scopes: Optional[Set[str]], lengths: Iterable[int]) -> _History:
    """
    One bulk read of learning records.

    Only records whose normalized length falls in a window of one of
    `lengths` are read. brand_scopes=None reads every brand; otherwise only
    brandless records and records for the given normalized brands.
    """
    windows = merge_length_windows(lengths)
    if not windows:
        return _History([])

    query = db.query(
        LearningRecord.normalized_text,
        LearningRecord.brand_norm,
        LearningRecord.is_spam,
    )
    query = query.filter(or_(*[LearningRecord.text_length.between(low, high) for low, high in windows]))
    if brand_scopes is not None:
        if brand_scopes:
            query = query.filter(or_(
                LearningRecord.brand_norm.is_(None),
                LearningRecord.brand_norm.in_(sorted(brand_scopes)),
            ))
        else:
            query = query.filter(LearningRecord.brand_norm.is_(None))
    rows = query.order_by(LearningRecord.id).yield_per(1000)
    return _History(rows)


def _score_against_history(text: str, brand: Optional[str], history: _History) -> ImprovedScore:
    """Blend a fresh pattern analysis with agreeing historical decisions."""
    analysis = analyze_patterns(text)
    normalized = normalize_text(text)
    brand_norm = normalize_brand(brand)

    spam_weights: List[float] = []
    legit_weights: List[float] = []

    candidates = history.candidates(len(normalized)) if normalized else []
    if candidates:
        matches = process.extract(
            normalized,
            candidates,
            scorer=Levenshtein.normalized_similarity,
            score_cutoff=NEAR_DUPLICATE_THRESHOLD,
            limit=None,
        )
        for choice, similarity_score, _ in matches:
            weight = 1.0 if choice == normalized else float(similarity_score)
            for record_brand, is_spam in history.by_text[choice]:
                if not _in_scope(record_brand, brand_norm):
                    continue
                if is_spam:
                    spam_weights.append(weight)
                else:
                    legit_weights.append(weight)

    record_count = len(spam_weights) + len(legit_weights)
    if record_count == 0:
        return ImprovedScore(
            score=float(analysis.score),
            reasons=list(analysis.reasons),
            historical_confidence=0.0,
            record_count=0,
            pattern_score=analysis.score,
        )

    # fsum keeps the result independent of match ordering
    spam_total = math.fsum(spam_weights)
    legit_total = math.fsum(legit_weights)
    weighted_count = spam_total + legit_total

    spam_share = spam_total / weighted_count
    historical_confidence = round(max(spam_total, legit_total) / weighted_count * 100, 2)
    history_weight = min(weighted_count / (weighted_count + PRIOR_WEIGHT), MAX_HISTORY_WEIGHT)

    blended = (1 - history_weight) * analysis.score + history_weight * spam_share * 100
    blended = round(max(0.0, min(100.0, blended)), 2)

    reasons = list(analysis.reasons)
    reasons.append(
        f"History: {len(spam_weights)} spam / {len(legit_weights)} legitimate decision(s) on similar text"
    )

    return ImprovedScore(
        score=blended,
        reasons=reasons,
        historical_confidence=historical_confidence,
        record_count=record_count,
        pattern_score=analysis.score,
    )


def is_learning_match(score: float, threshold: int = DEFAULT_LEARNING_THRESHOLD) -> bool:
    """Learning decision path: inclusive threshold."""
    return score >= threshold


# ============================================================================
# WRITE PATH
# ============================================================================

def learn_from_spam_decision(
    db: Session,
    text: str,
    is_spam: bool,
    brand: Optional[str] = None,
    source: str = LearningSource.AGENT,
) -> LearningRecord:
    """
    Append one human verdict.

    Never updates or merges existing records; repeating a verdict adds
    evidence weight.

    Raises:
        SpamValidationError: Missing text, non-boolean verdict or unknown source
    """
    if text is None or not str(text).strip():
        raise SpamValidationError("Text is required")
    if not isinstance(is_spam, bool):
        raise SpamValidationError("is_spam must be true or false")
    if source not in LearningSource.ALL:
        raise SpamValidationError(f"Unknown source '{source}'; expected one of {', '.join(LearningSource.ALL)}")

    stored_text = str(text)[:MAX_TEXT_LENGTH]
    normalized = normalize_text(stored_text)
    analysis = analyze_patterns(stored_text)
    brand_value = brand.strip() if brand and brand.strip() else None

    record = LearningRecord(
        text=stored_text,
        normalized_text=normalized,
        text_key=normalized[:TEXT_KEY_LENGTH],
        text_length=len(normalized),
        brand=brand_value,
        brand_norm=normalize_brand(brand_value),
        is_spam=is_spam,
        score=float(analysis.score),
        reasons=json.dumps(analysis.reasons),
        pattern_tag=derive_pattern_tag(stored_text) or None,
        source=source,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    logger.info(
        f"Learned {'spam' if is_spam else 'legitimate'} decision ({source}) "
        f"for text: {normalized[:50]!r} brand={record.brand_norm}"
    )
    return record


# ============================================================================
# READ PATHS
# ============================================================================

def get_improved_spam_score(db: Session, text: str, brand: Optional[str] = None) -> ImprovedScore:
    """Score one text against its brand-scoped history."""
    brand_norm = normalize_brand(brand)
    scopes = None if brand_norm is None else {brand_norm}
    history = _load_history(db, scopes, [len(normalize_text(text))])
    return _score_against_history(text or "", brand, history)


def get_batch_improved_spam_scores(db: Session, items: Iterable[Dict]) -> Dict[str, ImprovedScore]:
    """
    Score many texts with a single history read.

    Args:
        items: Dicts with "text" and optional "brand"

    Returns:
        Map of learning_key(text, brand) -> ImprovedScore
    """
    distinct: Dict[str, Tuple[str, Optional[str]]] = {}
    for item in items:
        text = item.get("text") or ""
        brand = item.get("brand")
        distinct.setdefault(learning_key(text, brand), (text, brand))

    if not distinct:
        return {}

    brand_norms = [normalize_brand(brand) for _, brand in distinct.values()]
    scopes = None if any(b is None for b in brand_norms) else set(brand_norms)
    history = _load_history(db, scopes, [len(normalize_text(text)) for text, _ in distinct.values()])

    return {
        key: _score_against_history(text, brand, history)
        for key, (text, brand) in distinct.items()
    }


def get_learning_insights(db: Session, brand: Optional[str] = None) -> Dict:
    """Totals, verdict split, sources and the most common pattern tags."""
    brand_norm = normalize_brand(brand)
    base = db.query(LearningRecord)
    if brand_norm:
        base = base.filter(LearningRecord.brand_norm == brand_norm)

    total = base.count()
    spam = base.filter(LearningRecord.is_spam == True).count()

    source_query = db.query(LearningRecord.source, func.count(LearningRecord.id))
    if brand_norm:
        source_query = source_query.filter(LearningRecord.brand_norm == brand_norm)
    by_source = {source: count for source, count in source_query.group_by(LearningRecord.source).all()}

    tag_counts: Counter = Counter()
    tag_rows = base.filter(
        LearningRecord.is_spam == True,
        LearningRecord.pattern_tag.isnot(None),
    ).with_entities(LearningRecord.pattern_tag).all()
    for (tag_string,) in tag_rows:
        for tag in tag_string.split(","):
            if tag:
                tag_counts[tag] += 1

    recent = base.order_by(LearningRecord.created_at.desc(), LearningRecord.id.desc()).limit(20).all()

    return {
        "total_decisions": total,
        "spam_decisions": spam,
        "legitimate_decisions": total - spam,
        "spam_rate": round(spam / total * 100, 1) if total else 0.0,
        "by_source": by_source,
        "top_patterns": [{"tag": tag, "count": count} for tag, count in tag_counts.most_common(10)],
        "recent": [
            {
                "id": record.id,
                "text": record.text[:100],
                "brand": record.brand,
                "is_spam": record.is_spam,
                "score": record.score,
                "source": record.source,
                "created_at": record.created_at.isoformat() if record.created_at else None,
            }
            for record in recent
        ],
    }
