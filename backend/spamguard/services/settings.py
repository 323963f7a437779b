"""Engine settings: environment defaults overlaid with the persisted spam_settings row."""

from typing import Dict, Optional
from sqlalchemy.orm import Session

from ..config import EngineSettings, load_settings
from ..models import SpamSettings
from .errors import SpamValidationError

EDITABLE_FIELDS = (
    "pattern_threshold",
    "learning_threshold",
    "batch_size",
    "time_budget_seconds",
    "annotation_concurrency",
)


def get_engine_settings(db: Session, base: Optional[EngineSettings] = None) -> EngineSettings:
    """Snapshot settings for one invocation."""
    settings = base or load_settings()
    row = db.query(SpamSettings).first()
    if not row:
        return settings
    return settings.with_overrides(**{name: getattr(row, name) for name in EDITABLE_FIELDS})


def _validate(values: Dict):
    for name in ("pattern_threshold", "learning_threshold"):
        value = values.get(name)
        if value is not None and not 0 <= value <= 100:
            raise SpamValidationError(f"{name} must be between 0 and 100")
    for name in ("batch_size", "annotation_concurrency"):
        value = values.get(name)
        if value is not None and value < 1:
            raise SpamValidationError(f"{name} must be at least 1")
    budget = values.get("time_budget_seconds")
    if budget is not None and budget <= 0:
        raise SpamValidationError("time_budget_seconds must be positive")


def update_engine_settings(db: Session, **values) -> EngineSettings:
    """Persist overrides; None leaves a field unchanged."""
    unknown = set(values) - set(EDITABLE_FIELDS)
    if unknown:
        raise SpamValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
    _validate(values)

    row = db.query(SpamSettings).first()
    if not row:
        row = SpamSettings()
        db.add(row)

    for name, value in values.items():
        if value is not None:
            setattr(row, name, value)

    db.commit()
    db.refresh(row)
    return get_engine_settings(db)
