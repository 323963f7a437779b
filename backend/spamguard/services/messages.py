"""Message ingestion: fingerprint, dedupe and store as pending."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Message, MessageStatus
from .errors import DuplicateMessageError, SpamValidationError
from .text_normalize import compute_fingerprint

logger = logging.getLogger(__name__)


def register_message(
    db: Session,
    phone: str,
    text: str,
    received_at: datetime,
    brand: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Message:
    """
    Store an inbound message as pending.

    Raises:
        SpamValidationError: Phone, timestamp or text missing
        DuplicateMessageError: Same phone, time, text and brand already stored
    """
    fingerprint = compute_fingerprint(phone, received_at, text, brand)
    if fingerprint is None:
        raise SpamValidationError("phone, received_at and text are required")

    if db.query(Message.id).filter(Message.fingerprint == fingerprint).first():
        raise DuplicateMessageError(f"Duplicate message (fingerprint {fingerprint[:12]})")

    message = Message(
        phone=phone,
        text=text,
        brand=brand,
        received_at=received_at,
        fingerprint=fingerprint,
        status=MessageStatus.PENDING,
    )
    if created_at is not None:
        message.created_at = created_at

    db.add(message)
    try:
        db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent ingest of the same message
        db.rollback()
        raise DuplicateMessageError(f"Duplicate message (fingerprint {fingerprint[:12]})") from e

    db.refresh(message)
    logger.debug(f"Registered message {message.id} for brand={brand}")
    return message
