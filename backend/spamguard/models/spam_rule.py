from sqlalchemy import Column, Integer, String, DateTime, Boolean
from datetime import datetime
from ..database import Base


class RuleMode:
    CONTAINS = "contains"  # Word/phrase anywhere in the message, fuzzy fallback allowed
    LONE = "lone"  # Whole normalized message must equal the pattern

    ALL = (CONTAINS, LONE)


class SpamRule(Base):
    """
    Administrator-authored phrase rule.

    Read-only to the classification engine. pattern_norm is precomputed with
    the same normalizer used on message text so matching never re-derives it.
    """
    __tablename__ = "spam_rules"

    id = Column(Integer, primary_key=True, index=True)
    pattern = Column(String, nullable=False)
    pattern_norm = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False, default=RuleMode.CONTAINS)
    brand = Column(String, nullable=True, index=True)  # None = applies to every brand
    enabled = Column(Boolean, default=True, nullable=False)
    note = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SpamRule(pattern='{self.pattern}', mode='{self.mode}', brand='{self.brand}')>"
