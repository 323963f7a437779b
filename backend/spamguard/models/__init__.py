from .message import Message, MessageStatus, decode_annotations
from .spam_rule import SpamRule, RuleMode
from .learning_record import LearningRecord, LearningSource
from .settings import SpamSettings

__all__ = [
    "Message",
    "MessageStatus",
    "decode_annotations",
    "SpamRule",
    "RuleMode",
    "LearningRecord",
    "LearningSource",
    "SpamSettings",
]
