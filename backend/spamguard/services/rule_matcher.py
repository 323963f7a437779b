"""
Phrase rule matching.

Rules are snapshotted once per invocation into CompiledRule objects so the
per-message loop never touches the database and can run in worker threads.

Matching order for a rule:
1. Brand scope (a scoped rule never matches another brand or a blank brand)
2. lone: whole normalized message equals the pattern
3. contains, single word: whole-word match, then fuzzy for allow-listed keywords
4. contains, multi-word: word-boundary phrase match, then fuzzy phrase match
"""

import re
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern

from sqlalchemy.orm import Session

from ..models import SpamRule, RuleMode
from .fuzzy import MULTI_WORD_THRESHOLD, SINGLE_TOKEN_THRESHOLD, fuzzy_contains, is_fuzzy_eligible
from .text_normalize import normalize_brand, normalize_text, tokenize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledRule:
    """Detached, read-only view of a SpamRule."""

    id: Optional[int]
    pattern: str
    pattern_norm: str
    mode: str
    brand_norm: Optional[str]
    phrase_regex: Optional[Pattern] = None

    @property
    def is_multi_word(self) -> bool:
        return " " in self.pattern_norm


def compile_rule(
    pattern: str,
    mode: str = RuleMode.CONTAINS,
    brand: Optional[str] = None,
    pattern_norm: Optional[str] = None,
    rule_id: Optional[int] = None,
) -> CompiledRule:
    """Build a CompiledRule from raw rule fields."""
    norm = normalize_text(pattern_norm if pattern_norm else pattern)
    phrase_regex = None
    if norm and " " in norm:
        phrase_regex = re.compile(rf"\b{re.escape(norm)}\b")
    return CompiledRule(
        id=rule_id,
        pattern=pattern,
        pattern_norm=norm,
        mode=mode,
        brand_norm=normalize_brand(brand),
        phrase_regex=phrase_regex,
    )


def load_enabled_rules(db: Session) -> List[CompiledRule]:
    """Snapshot all enabled rules, newest edits first."""
    rows = db.query(SpamRule).filter(SpamRule.enabled == True).order_by(
        SpamRule.updated_at.desc(), SpamRule.id.desc()
    ).all()
    return [
        compile_rule(
            row.pattern,
            mode=row.mode,
            brand=row.brand,
            pattern_norm=row.pattern_norm,
            rule_id=row.id,
        )
        for row in rows
    ]


def _raw_contains(rule: CompiledRule, raw_text: str) -> bool:
    """Fallback for patterns that normalize to nothing (emoji, symbols)."""
    pattern = (rule.pattern or "").strip().lower()
    if not pattern:
        return False
    text = (raw_text or "").strip().lower()
    if rule.mode == RuleMode.LONE:
        return text == pattern
    return pattern in text


def match_rule(
    rule: CompiledRule,
    normalized_text: str,
    tokens: List[str],
    brand_norm: Optional[str],
    raw_text: str = "",
) -> bool:
    """Check a single compiled rule against an already-normalized message."""
    if rule.brand_norm and rule.brand_norm != brand_norm:
        return False

    if not rule.pattern_norm:
        return _raw_contains(rule, raw_text)

    if not normalized_text:
        return False

    if rule.mode == RuleMode.LONE:
        return normalized_text == rule.pattern_norm

    if rule.mode != RuleMode.CONTAINS:
        logger.warning(f"Unknown rule mode '{rule.mode}' for pattern '{rule.pattern}'")
        return False

    if not rule.is_multi_word:
        if rule.pattern_norm in tokens:
            return True
        if is_fuzzy_eligible(rule.pattern_norm):
            return fuzzy_contains(normalized_text, rule.pattern_norm, SINGLE_TOKEN_THRESHOLD)
        return False

    if rule.phrase_regex.search(normalized_text):
        return True
    return fuzzy_contains(normalized_text, rule.pattern_norm, MULTI_WORD_THRESHOLD)


def match_rules(text: Optional[str], brand: Optional[str], rules: Iterable[CompiledRule]) -> List[str]:
    """
    Return the literal patterns of every rule that matches the message.

    Args:
        text: Raw message text
        brand: Message brand (may be None)
        rules: Compiled rule snapshot

    Returns:
        Matched patterns in rule order, without duplicates
    """
    raw_text = text or ""
    normalized = normalize_text(raw_text)
    tokens = tokenize(normalized)
    brand_norm = normalize_brand(brand)

    matched: List[str] = []
    for rule in rules:
        if rule.pattern in matched:
            continue
        if match_rule(rule, normalized, tokens, brand_norm, raw_text):
            matched.append(rule.pattern)
    return matched
