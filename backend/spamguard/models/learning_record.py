from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text
from datetime import datetime
from ..database import Base


class LearningSource:
    AGENT = "agent"
    MANUAL = "manual"
    LEARNING = "learning"

    ALL = (AGENT, MANUAL, LEARNING)


class LearningRecord(Base):
    """
    One human verdict about one message text.

    Append-only: corrections are written as new rows, so repeated verdicts on
    the same text act as evidence strength for the confidence blender.
    """
    __tablename__ = "spam_learning"

    id = Column(Integer, primary_key=True, index=True)
    text = Column(Text, nullable=False)  # Raw text, truncated to 1000 chars
    normalized_text = Column(Text, nullable=False)
    text_key = Column(String, nullable=False, index=True)  # First 50 chars of normalized_text
    text_length = Column(Integer, nullable=False, default=0, index=True)  # len(normalized_text), bounds fuzzy lookups
    brand = Column(String, nullable=True)
    brand_norm = Column(String, nullable=True, index=True)
    is_spam = Column(Boolean, nullable=False)
    score = Column(Float, nullable=False, default=0.0)  # Pattern score at decision time
    reasons = Column(Text, nullable=True)  # JSON list of strings
    pattern_tag = Column(String, nullable=True)  # e.g. "LONE:stop" or "CONTAINS:bit.ly"
    source = Column(String, nullable=False, default=LearningSource.AGENT)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<LearningRecord(id={self.id}, is_spam={self.is_spam}, tag='{self.pattern_tag}')>"
