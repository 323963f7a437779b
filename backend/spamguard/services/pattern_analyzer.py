"""
Rule-free heuristic spam scorer.

Analyzes raw message text with structural signals and returns a 0-100 score.
Every point of the score comes from a signal that also appends a reason, so
agents can see exactly why a message was flagged.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .text_normalize import normalize_text, tokenize

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_PATTERN_THRESHOLD = 50

SIGNAL_WEIGHTS = {
    "single_command_word": 55,
    "very_short": 15,
    "link_shortener": 35,
    "url": 10,
    "emoji_cluster": 20,
    "all_caps": 15,
    "repeated_chars": 15,
    "excessive_exclamations": 10,
    "spam_word": 8,
    "special_chars": 20,
    "digit_heavy": 15,
    "no_spaces": 20,
}

MAX_URL_POINTS = 20
MAX_SPAM_WORD_POINTS = 24

# Replies that carry no customer-service content on their own
COMMAND_WORDS = {
    "stop",
    "stopall",
    "unsubscribe",
    "quit",
    "end",
    "cancel",
    "optout",
    "ok",
    "okay",
    "k",
    "yes",
    "no",
    "y",
    "n",
    "test",
    "testing",
    "thanks",
    "thx",
}

COMMAND_PHRASES = {
    "stop all",
    "opt out",
    "thank you",
}

LINK_SHORTENERS = [
    "bit.ly",
    "tinyurl.com",
    "tinyurl",
    "goo.gl",
    "t.co",
    "ow.ly",
    "is.gd",
    "buff.ly",
    "rb.gy",
    "cutt.ly",
    "shorturl.at",
    "tiny.cc",
]

SPAM_WORDS = {
    "free",
    "win",
    "winner",
    "won",
    "congratulations",
    "prize",
    "cash",
    "money",
    "urgent",
    "guaranteed",
    "discount",
    "deal",
    "offer",
    "promo",
    "lottery",
    "casino",
    "viagra",
    "claim",
    "unlock",
    "selected",
}

SPAM_PHRASES = [
    "click here",
    "act now",
    "limited time",
    "call now",
    "risk free",
    "no obligation",
    "special offer",
    "text stop",
]


# ============================================================================
# PATTERN MATCHERS
# ============================================================================

SHORTENER_PATTERN = re.compile(
    r"(?<![\w.])(" + "|".join(re.escape(domain) for domain in LINK_SHORTENERS) + r")(?![\w])",
    re.IGNORECASE,
)
URL_PATTERN = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
EMOJI_PATTERN = re.compile(
    "["
    "\U0001F300-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U0001F1E6-\U0001F1FF"
    "]"
)
REPEATED_CHAR_PATTERN = re.compile(r"(.)\1{3,}")
SPECIAL_CHAR_PATTERN = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass
class PatternAnalysis:
    """Result of analyze_patterns."""

    score: int
    reasons: List[str] = field(default_factory=list)
    signals: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {"score": self.score, "reasons": list(self.reasons), "signals": list(self.signals)}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def find_command_word(normalized: str) -> Optional[str]:
    """Return the command word if the whole message is one, else None."""
    if not normalized:
        return None
    if normalized in COMMAND_PHRASES:
        return normalized
    tokens = tokenize(normalized)
    if len(tokens) == 1 and tokens[0] in COMMAND_WORDS:
        return tokens[0]
    return None


def find_link_shorteners(text: str) -> List[str]:
    """Distinct shortener domains in the raw text, in order of appearance."""
    found: List[str] = []
    for match in SHORTENER_PATTERN.finditer(text or ""):
        domain = match.group(1).lower()
        if domain not in found:
            found.append(domain)
    return found


def find_spam_words(normalized: str) -> List[str]:
    """Distinct spam vocabulary (words and phrases) in normalized text."""
    found: List[str] = []
    tokens = tokenize(normalized)
    for token in tokens:
        if token in SPAM_WORDS and token not in found:
            found.append(token)
    padded = f" {normalized} "
    for phrase in SPAM_PHRASES:
        if f" {phrase} " in padded and phrase not in found:
            found.append(phrase)
    return found


def is_pattern_match(score: float, threshold: int = DEFAULT_PATTERN_THRESHOLD) -> bool:
    """Pattern-only decision: inclusive threshold."""
    return score >= threshold


# ============================================================================
# MAIN ANALYZER
# ============================================================================

def analyze_patterns(text: Optional[str]) -> PatternAnalysis:
    """
    Score raw text for spam structure.

    Signals (each adds its weight and a reason):
    1. Whole message is a single command word (stop, quit, ok, test, ...)
    2. Extremely short message
    3. Link shortener domains
    4. Other URLs
    5. Emoji clusters
    6. All caps
    7. Repeated character runs
    8. Excessive exclamation marks
    9. Spam vocabulary
    10. High special-character or digit ratio
    11. Long text with no spaces

    Returns:
        PatternAnalysis with score capped at 100
    """
    raw = text or ""
    stripped = raw.strip()
    if not stripped:
        return PatternAnalysis(score=0)

    normalized = normalize_text(raw)
    score = 0
    reasons: List[str] = []
    signals: List[str] = []

    def add(signal: str, points: int, reason: str):
        nonlocal score
        score += points
        reasons.append(reason)
        signals.append(signal)

    # 1. Single command word
    command = find_command_word(normalized)
    if command:
        add("single_command_word", SIGNAL_WEIGHTS["single_command_word"],
            f"Message is a single command word: '{command}'")

    # 2. Extremely short
    if len(stripped) < 5:
        add("very_short", SIGNAL_WEIGHTS["very_short"], "Very short message")

    # 3. Link shorteners
    shorteners = find_link_shorteners(stripped)
    if shorteners:
        add("link_shortener", SIGNAL_WEIGHTS["link_shortener"],
            f"Contains link shortener: {', '.join(shorteners)}")

    # 4. URLs
    url_count = len(URL_PATTERN.findall(stripped))
    if url_count and not shorteners:
        add("url", min(url_count * SIGNAL_WEIGHTS["url"], MAX_URL_POINTS),
            f"Contains {url_count} URL(s)")

    # 5. Emoji clusters
    emoji_count = len(EMOJI_PATTERN.findall(stripped))
    visible_chars = len(re.sub(r"\s", "", stripped))
    if emoji_count >= 3 or (emoji_count and visible_chars and emoji_count / visible_chars >= 0.2):
        add("emoji_cluster", SIGNAL_WEIGHTS["emoji_cluster"], f"Emoji cluster: {emoji_count} emoji")

    # 6. All caps
    letters = [ch for ch in stripped if ch.isalpha()]
    if len(letters) >= 6:
        upper_ratio = sum(1 for ch in letters if ch.isupper()) / len(letters)
        if upper_ratio >= 0.9:
            add("all_caps", SIGNAL_WEIGHTS["all_caps"], "All caps text")

    # 7. Repeated characters
    runs = [match.group(0) for match in REPEATED_CHAR_PATTERN.finditer(stripped) if not match.group(0).isspace()]
    if runs:
        add("repeated_chars", SIGNAL_WEIGHTS["repeated_chars"], f"Repeated characters: {', '.join(runs[:3])}")

    # 8. Exclamation marks
    exclamations = stripped.count("!")
    if exclamations > 3:
        add("excessive_exclamations", SIGNAL_WEIGHTS["excessive_exclamations"],
            f"Excessive exclamation marks: {exclamations}")

    # 9. Spam vocabulary
    spam_words = find_spam_words(normalized)
    if spam_words:
        add("spam_word", min(len(spam_words) * SIGNAL_WEIGHTS["spam_word"], MAX_SPAM_WORD_POINTS),
            f"Spam words detected: {', '.join(spam_words)}")

    # 10. Character ratios
    if len(stripped) >= 4:
        special_ratio = len(SPECIAL_CHAR_PATTERN.findall(stripped)) / len(stripped)
        if special_ratio > 0.3:
            add("special_chars", SIGNAL_WEIGHTS["special_chars"],
                f"High special character ratio: {special_ratio * 100:.1f}%")
    if len(stripped) >= 6:
        digit_ratio = sum(1 for ch in stripped if ch.isdigit()) / len(stripped)
        if digit_ratio > 0.4:
            add("digit_heavy", SIGNAL_WEIGHTS["digit_heavy"], f"High number ratio: {digit_ratio * 100:.1f}%")

    # 11. Gibberish
    if " " not in stripped and len(stripped) > 20 and not url_count and not shorteners:
        add("no_spaces", SIGNAL_WEIGHTS["no_spaces"], "No spaces in long text")

    return PatternAnalysis(score=min(score, 100), reasons=reasons, signals=signals)


def derive_pattern_tag(text: Optional[str]) -> str:
    """
    Compact summary of what made a text spam-like.

    Examples: "LONE:stop", "CONTAINS:bit.ly", "CONTAINS:free,CONTAINS:click here"
    """
    normalized = normalize_text(text)
    parts: List[str] = []

    command = find_command_word(normalized)
    if command:
        parts.append(f"LONE:{command}")

    for domain in find_link_shorteners(text or ""):
        parts.append(f"CONTAINS:{domain}")

    for word in find_spam_words(normalized):
        parts.append(f"CONTAINS:{word}")

    return ",".join(parts)[:255]
