"""
Text canonicalization shared by every matching stage.

Rules, pattern analysis, learning lookups and the ingestion fingerprint all
go through normalize_text so that "STOP!!", "stop" and " Stop. " compare equal.
"""

import re
import hashlib
import unicodedata
from datetime import datetime, timedelta, timezone
from typing import List, Optional

ZERO_WIDTH_CHARS = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
NON_WORD = re.compile(r"[^\w\s]|_")
WHITESPACE = re.compile(r"\s+")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def normalize_text(raw: Optional[str]) -> str:
    """
    Lower-case, strip accents, punctuation and zero-width characters, collapse whitespace.

    Unicode letters and digits survive; everything else becomes a space.
    Empty or None input returns "".
    """
    if not raw:
        return ""
    text = ZERO_WIDTH_CHARS.sub("", str(raw))
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if unicodedata.category(ch) != "Mn")
    text = text.lower()
    text = NON_WORD.sub(" ", text)
    return WHITESPACE.sub(" ", text).strip()


def tokenize(normalized: str) -> List[str]:
    """Split already-normalized text into words."""
    if not normalized:
        return []
    return normalized.split(" ")


def normalize_brand(brand: Optional[str]) -> Optional[str]:
    """Canonical brand for case-insensitive scoping; blank brands become None."""
    value = normalize_text(brand)
    return value or None


def strip_us_country_code(phone: Optional[str]) -> str:
    """Reduce +1XXXXXXXXXX / 1XXXXXXXXXX to the 10-digit national number."""
    raw = str(phone or "").strip()
    cleaned = re.sub(r"[^\d+]", "", raw)
    if re.fullmatch(r"\+1\d{10}", cleaned):
        return cleaned[2:]
    if re.fullmatch(r"1\d{10}", cleaned):
        return cleaned[1:]
    digits = re.sub(r"\D", "", cleaned)
    if re.fullmatch(r"\d{10}", digits):
        return digits
    return raw


def _epoch_millis(when: datetime) -> int:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return (when - EPOCH) // timedelta(milliseconds=1)


def compute_fingerprint(
    phone: Optional[str],
    received_at: Optional[datetime],
    text: Optional[str],
    brand: Optional[str],
) -> Optional[str]:
    """
    Dedupe fingerprint for an inbound message.

    SHA-1 of phone || epoch-millis || normalized text || normalized brand.
    Returns None when phone, timestamp or text is missing; ingestion treats
    that as an invalid row rather than hashing partial data.
    """
    phone_part = strip_us_country_code(phone)
    if not phone_part or received_at is None or not text:
        return None

    key = "||".join([
        phone_part,
        str(_epoch_millis(received_at)),
        normalize_text(text),
        normalize_text(brand),
    ])
    return hashlib.sha1(key.encode("utf-8")).hexdigest()
