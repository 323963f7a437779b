"""
Bounded edit-distance matching for known spam keyword variants.

Only used as a fallback after an exact match fails, and only for keywords on
FUZZY_KEYWORDS. Short consonant-heavy patterns look like typos of ordinary
words and are never matched fuzzily.
"""

from rapidfuzz.distance import Levenshtein

SINGLE_TOKEN_THRESHOLD = 0.70
MULTI_WORD_THRESHOLD = 0.75

# Keywords that spammers routinely misspell to dodge filters ("cl4im", "unl0ck", "wiin")
FUZZY_KEYWORDS = {
    "unlock",
    "claim",
    "win",
    "winner",
    "won",
    "prize",
    "free",
    "reward",
    "bonus",
    "cash",
    "money",
    "congratulations",
    "unsubscribe",
    "click",
    "offer",
    "discount",
    "promo",
    "lottery",
    "casino",
    "viagra",
    "verify",
    "urgent",
    "guaranteed",
}

VOWELS = set("aeiouy")


def similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity: 1.0 identical, 0.0 when either side is empty."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def looks_like_typo(pattern: str) -> bool:
    """True for short, consonant-heavy single tokens such as "txt" or "pls"."""
    if not pattern or " " in pattern:
        return False
    letters = [ch for ch in pattern if ch.isalpha()]
    if not letters:
        return True
    vowel_ratio = sum(1 for ch in letters if ch in VOWELS) / len(letters)
    return len(pattern) <= 5 and vowel_ratio < 0.25


def is_fuzzy_eligible(pattern: str) -> bool:
    """Whether a single-word pattern may fall back to fuzzy matching."""
    return pattern in FUZZY_KEYWORDS and not looks_like_typo(pattern)


def fuzzy_contains(haystack: str, needle: str, threshold: float = None) -> bool:
    """
    Check if normalized haystack contains needle allowing small edits.

    Single-token needles match any haystack word at >= threshold similarity.
    Multi-word needles must find every needle word, in order, each at
    >= threshold similarity.
    """
    if not haystack or not needle:
        return False

    if needle in haystack:
        return True

    needle_words = needle.split()
    haystack_words = haystack.split()

    if len(needle_words) == 1:
        limit = SINGLE_TOKEN_THRESHOLD if threshold is None else threshold
        return any(similarity(word, needle) >= limit for word in haystack_words)

    limit = MULTI_WORD_THRESHOLD if threshold is None else threshold
    position = 0
    for word in haystack_words:
        if position == len(needle_words):
            break
        if similarity(word, needle_words[position]) >= limit:
            position += 1
    return position == len(needle_words)

