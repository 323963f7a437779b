from .text_normalize import normalize_text, normalize_brand, compute_fingerprint
from .rule_matcher import compile_rule, load_enabled_rules, match_rules
from .pattern_analyzer import analyze_patterns, derive_pattern_tag
from .learning_store import (
    learn_from_spam_decision,
    get_improved_spam_score,
    get_batch_improved_spam_scores,
    get_learning_insights,
)
from .status_validator import validate_transition, ALLOWED_TRANSITIONS
from .batch_processor import process_batch, run_backlog
from .review import preview_matches, restore_before, restore_messages, status_counts
from .rules import create_rule, seed_default_rules
from .messages import register_message
from .errors import (
    SpamEngineError,
    SpamValidationError,
    StoreUnavailableError,
    CircuitOpenError,
    DuplicateMessageError,
)

__all__ = [
    "normalize_text",
    "normalize_brand",
    "compute_fingerprint",
    "compile_rule",
    "load_enabled_rules",
    "match_rules",
    "analyze_patterns",
    "derive_pattern_tag",
    "learn_from_spam_decision",
    "get_improved_spam_score",
    "get_batch_improved_spam_scores",
    "get_learning_insights",
    "validate_transition",
    "ALLOWED_TRANSITIONS",
    "process_batch",
    "run_backlog",
    "preview_matches",
    "restore_before",
    "restore_messages",
    "status_counts",
    "register_message",
    "create_rule",
    "seed_default_rules",
    "SpamEngineError",
    "SpamValidationError",
    "StoreUnavailableError",
    "CircuitOpenError",
    "DuplicateMessageError",
]
