"""Rule administration helpers and the default rule set seeded on first startup."""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models import RuleMode, SpamRule
from .errors import SpamValidationError
from .text_normalize import normalize_brand, normalize_text

logger = logging.getLogger(__name__)


DEFAULT_RULES = [
    # Opt-out commands
    ("unsubscribe", RuleMode.CONTAINS, "Common unsubscribe text"),
    ("opt out", RuleMode.CONTAINS, "Opt out requests"),
    ("stop", RuleMode.LONE, "Single word 'stop' command"),
    ("quit", RuleMode.LONE, "Single word 'quit' command"),
    ("end", RuleMode.LONE, "Single word 'end' command"),
    ("cancel", RuleMode.LONE, "Single word 'cancel' command"),
    ("reply stop", RuleMode.CONTAINS, "Reply stop instructions"),

    # Marketing
    ("promo", RuleMode.CONTAINS, "Promotional content"),
    ("discount", RuleMode.CONTAINS, "Discount offers"),
    ("limited time", RuleMode.CONTAINS, "Limited time offers"),
    ("act now", RuleMode.CONTAINS, "Urgent marketing language"),
    ("click here", RuleMode.CONTAINS, "Spam link language"),
    ("call now", RuleMode.CONTAINS, "Call now spam"),
    ("no obligation", RuleMode.CONTAINS, "Sales pressure language"),

    # Scams
    ("free money", RuleMode.CONTAINS, "Financial spam"),
    ("make money", RuleMode.CONTAINS, "Money-making schemes"),
    ("work from home", RuleMode.CONTAINS, "Work from home scams"),
    ("get rich", RuleMode.CONTAINS, "Get rich quick schemes"),
    ("viagra", RuleMode.CONTAINS, "Pharmaceutical spam"),
    ("casino", RuleMode.CONTAINS, "Gambling spam"),
    ("lottery", RuleMode.CONTAINS, "Lottery scams"),
    ("you have won", RuleMode.CONTAINS, "Prize winner notifications"),
    ("claim your prize", RuleMode.CONTAINS, "Prize claim scams"),
    ("verify your account", RuleMode.CONTAINS, "Account verification scams"),
    ("suspended account", RuleMode.CONTAINS, "Account suspension scams"),

    # Test and filler messages
    ("test", RuleMode.LONE, "Test messages"),
    ("testing", RuleMode.LONE, "Testing messages"),

    # Link shorteners and emoji
    ("bit.ly", RuleMode.CONTAINS, "Shortened URL spam"),
    ("tinyurl", RuleMode.CONTAINS, "Shortened URL spam"),
    ("goo.gl", RuleMode.CONTAINS, "Shortened URL spam"),
    ("💰", RuleMode.CONTAINS, "Money emoji spam"),
]


def create_rule(
    db: Session,
    pattern: str,
    mode: str = RuleMode.CONTAINS,
    brand: Optional[str] = None,
    note: Optional[str] = None,
    enabled: bool = True,
    commit: bool = True,
) -> SpamRule:
    """
    Add a phrase rule with its normalized pattern precomputed.

    Raises:
        SpamValidationError: Blank pattern or unknown mode
    """
    if not pattern or not pattern.strip():
        raise SpamValidationError("Rule pattern is required")
    mode = (mode or "").strip().lower()
    if mode not in RuleMode.ALL:
        raise SpamValidationError(f"Unknown rule mode '{mode}'; expected one of {', '.join(RuleMode.ALL)}")

    rule = SpamRule(
        pattern=pattern.strip(),
        pattern_norm=normalize_text(pattern),
        mode=mode,
        brand=brand.strip() if brand and brand.strip() else None,
        enabled=enabled,
        note=note,
    )
    db.add(rule)
    if commit:
        db.commit()
        db.refresh(rule)
    return rule


def seed_default_rules(db: Session) -> int:
    """Insert DEFAULT_RULES when the rules table is empty. Returns rules added."""
    if db.query(SpamRule).count() > 0:
        return 0

    for pattern, mode, note in DEFAULT_RULES:
        create_rule(db, pattern, mode=mode, note=note, commit=False)
    db.commit()

    logger.info(f"Seeded {len(DEFAULT_RULES)} default spam rules")
    return len(DEFAULT_RULES)


def disable_rules_for_patterns(db: Session, patterns_by_brand: Dict[Optional[str], Iterable[str]]) -> int:
    """
    Disable enabled rules whose pattern flagged restored messages.

    Global rules are disabled for every pattern seen; brand-scoped rules only
    for patterns seen on messages of that brand. Does not commit.
    """
    all_patterns = {p for patterns in patterns_by_brand.values() for p in patterns if p}
    if not all_patterns:
        return 0

    def _pattern_filter(patterns: List[str]):
        norms = [n for n in {normalize_text(p) for p in patterns} if n]
        conditions = [SpamRule.pattern.in_(patterns)]
        if norms:
            conditions.append(SpamRule.pattern_norm.in_(norms))
        return or_(*conditions)

    disabled = db.query(SpamRule).filter(
        SpamRule.enabled == True,
        SpamRule.brand.is_(None),
        _pattern_filter(sorted(all_patterns)),
    ).update({SpamRule.enabled: False}, synchronize_session=False)

    for brand, patterns in patterns_by_brand.items():
        brand_norm = normalize_brand(brand)
        patterns = sorted({p for p in patterns if p})
        if brand_norm is None or not patterns:
            continue
        scoped = db.query(SpamRule).filter(
            SpamRule.enabled == True,
            SpamRule.brand.isnot(None),
            _pattern_filter(patterns),
        ).all()
        for rule in scoped:
            if normalize_brand(rule.brand) == brand_norm:
                rule.enabled = False
                disabled += 1

    if disabled:
        logger.info(f"Disabled {disabled} rule(s) after restore")
    return disabled
