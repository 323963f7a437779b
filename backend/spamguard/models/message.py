from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime
import json
from ..database import Base


class MessageStatus:
    PENDING = "pending"
    REVIEW = "review"  # Flagged as likely spam, awaiting human confirmation
    PROMOTED = "promoted"  # Turned into an agent task (downstream, not this engine)

    ALL = (PENDING, REVIEW, PROMOTED)


def decode_annotations(raw):
    """Decode a JSON annotation list, tolerating empty or corrupt values."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    return value if isinstance(value, list) else []


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    brand = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    text = Column(Text)
    received_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Dedupe key computed at ingestion, never rewritten
    fingerprint = Column(String, unique=True, index=True, nullable=False)

    # Classification fields
    status = Column(String, default=MessageStatus.PENDING, nullable=False, index=True)
    match_annotations = Column(Text, nullable=True)  # JSON list of strings, only while in review

    @property
    def annotations(self):
        """Decoded match annotations (empty list when unset)."""
        return decode_annotations(self.match_annotations)

    def __repr__(self):
        return f"<Message(id={self.id}, brand='{self.brand}', status='{self.status}')>"
