"""Tagged match results shared by preview, batch processing and annotations."""

from dataclasses import dataclass
from typing import Dict, List


class HitKind:
    RULE = "rule"
    PATTERN = "pattern"
    HISTORY = "history"


@dataclass(frozen=True)
class MatchHit:
    """One reason a message was flagged."""

    kind: str
    detail: str

    def label(self) -> str:
        """Short human-readable annotation stored on the message."""
        if self.kind == HitKind.RULE:
            return f"Rule: {self.detail}"
        if self.kind == HitKind.PATTERN:
            return f"Pattern: {self.detail}"
        if self.kind == HitKind.HISTORY:
            return f"Learning: {self.detail}"
        return self.detail

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "detail": self.detail}


def rule_hit(pattern: str) -> MatchHit:
    return MatchHit(kind=HitKind.RULE, detail=pattern)


def pattern_hit(score: float, reasons) -> MatchHit:
    summary = ", ".join(list(reasons)[:2])
    detail = f"{round(score)}%"
    if summary:
        detail = f"{detail} ({summary})"
    return MatchHit(kind=HitKind.PATTERN, detail=detail)


def history_hit(score: float) -> MatchHit:
    return MatchHit(kind=HitKind.HISTORY, detail=f"{round(score)}%")


def rule_patterns_from_labels(labels) -> List[str]:
    """Recover rule patterns from stored annotation labels ("Rule: x")."""
    prefix = "Rule: "
    return [label[len(prefix):] for label in labels or [] if isinstance(label, str) and label.startswith(prefix)]
