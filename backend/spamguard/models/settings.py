from sqlalchemy import Column, Integer, Float
from ..database import Base


class SpamSettings(Base):
    """Persisted overrides for the engine; NULL columns fall back to the environment."""
    __tablename__ = "spam_settings"

    id = Column(Integer, primary_key=True, index=True)
    pattern_threshold = Column(Integer, nullable=True)  # Pattern-only decision path (0-100)
    learning_threshold = Column(Integer, nullable=True)  # Blended learning decision path (0-100)
    batch_size = Column(Integer, nullable=True)
    time_budget_seconds = Column(Float, nullable=True)
    annotation_concurrency = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<SpamSettings(id={self.id}, pattern={self.pattern_threshold}, learning={self.learning_threshold})>"
