"""
Message status state machine.

ALLOWED_TRANSITIONS is the single source of truth for which status writes
are legal. A new status must be added here deliberately; call sites never
infer legality on their own.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..models import MessageStatus

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    MessageStatus.PENDING: (MessageStatus.REVIEW, MessageStatus.PROMOTED),
    MessageStatus.REVIEW: (MessageStatus.PENDING, MessageStatus.PROMOTED),
    MessageStatus.PROMOTED: (),  # Terminal
}


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    error: Optional[str] = None


def can_transition(current: str, proposed: str) -> bool:
    """Check the allow-list without logging."""
    return proposed in ALLOWED_TRANSITIONS.get(current, ())


def validate_transition(current: str, proposed: str, context: Optional[str] = None) -> TransitionResult:
    """
    Validate a proposed status change.

    Same-status writes are no-ops and always valid. Unknown statuses and
    transitions missing from ALLOWED_TRANSITIONS are rejected with a
    descriptive error.
    """
    suffix = f" ({context})" if context else ""

    if proposed not in ALLOWED_TRANSITIONS:
        error = f"Unknown target status '{proposed}'{suffix}"
        logger.error(error)
        return TransitionResult(valid=False, error=error)

    if current not in ALLOWED_TRANSITIONS:
        error = f"Unknown current status '{current}'{suffix}"
        logger.error(error)
        return TransitionResult(valid=False, error=error)

    if current == proposed:
        return TransitionResult(valid=True)

    if not can_transition(current, proposed):
        error = f"Invalid status transition: {current} -> {proposed}{suffix}"
        logger.error(error)
        return TransitionResult(valid=False, error=error)

    return TransitionResult(valid=True)
