"""
Environment-driven defaults for the spam engine.

Values here are the fallbacks used when no row exists in spam_settings.
Edit .env (or the process environment) to change them per deployment.
"""

import os
from dataclasses import dataclass, replace
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spamguard.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class EngineSettings:
    """Immutable settings snapshot taken once per invocation."""

    pattern_threshold: int = 50
    learning_threshold: int = 60
    batch_size: int = 200
    time_budget_seconds: float = 20.0
    deadline_margin_seconds: float = 3.0
    annotation_concurrency: int = 10
    preview_limit: int = 500
    retry_max_attempts: int = 3
    retry_initial_delay: float = 0.5
    retry_max_delay: float = 4.0
    circuit_failure_threshold: int = 5
    circuit_reset_seconds: float = 30.0

    def with_overrides(self, **overrides) -> "EngineSettings":
        """Return a copy with the non-None overrides applied."""
        clean = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **clean)


def load_settings() -> EngineSettings:
    """Build EngineSettings from the environment."""
    return EngineSettings(
        pattern_threshold=_env_int("SPAM_PATTERN_THRESHOLD", 50),
        learning_threshold=_env_int("SPAM_LEARNING_THRESHOLD", 60),
        batch_size=_env_int("SPAM_BATCH_SIZE", 200),
        time_budget_seconds=_env_float("SPAM_TIME_BUDGET_SECONDS", 20.0),
        deadline_margin_seconds=_env_float("SPAM_DEADLINE_MARGIN_SECONDS", 3.0),
        annotation_concurrency=_env_int("SPAM_ANNOTATION_CONCURRENCY", 10),
        preview_limit=_env_int("SPAM_PREVIEW_LIMIT", 500),
        retry_max_attempts=_env_int("SPAM_RETRY_MAX_ATTEMPTS", 3),
        retry_initial_delay=_env_float("SPAM_RETRY_INITIAL_DELAY", 0.5),
        retry_max_delay=_env_float("SPAM_RETRY_MAX_DELAY", 4.0),
        circuit_failure_threshold=_env_int("SPAM_CIRCUIT_FAILURE_THRESHOLD", 5),
        circuit_reset_seconds=_env_float("SPAM_CIRCUIT_RESET_SECONDS", 30.0),
    )
