"""
Tests for engine settings: environment defaults and persisted overrides.
"""

import pytest

from spamguard.config import EngineSettings, load_settings
from spamguard.services.errors import SpamValidationError
from spamguard.services.settings import get_engine_settings, update_engine_settings


def test_defaults():
    settings = EngineSettings()
    assert settings.pattern_threshold == 50
    assert settings.learning_threshold == 60
    assert settings.batch_size == 200
    assert settings.time_budget_seconds == 20.0
    assert settings.annotation_concurrency == 10


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("SPAM_PATTERN_THRESHOLD", "55")
    monkeypatch.setenv("SPAM_TIME_BUDGET_SECONDS", "12.5")
    monkeypatch.setenv("SPAM_BATCH_SIZE", "")

    settings = load_settings()
    assert settings.pattern_threshold == 55
    assert settings.time_budget_seconds == 12.5
    assert settings.batch_size == 200, "Blank values fall back to the default"


def test_with_overrides_ignores_none():
    settings = EngineSettings().with_overrides(pattern_threshold=65, batch_size=None)
    assert settings.pattern_threshold == 65
    assert settings.batch_size == 200


def test_persisted_overrides_apply(db):
    base = EngineSettings()
    assert get_engine_settings(db, base) == base

    update_engine_settings(db, learning_threshold=75, batch_size=50)
    settings = get_engine_settings(db, base)
    assert settings.learning_threshold == 75
    assert settings.batch_size == 50
    assert settings.pattern_threshold == 50


@pytest.mark.parametrize("values", [
    {"pattern_threshold": 101},
    {"learning_threshold": -1},
    {"batch_size": 0},
    {"annotation_concurrency": 0},
    {"time_budget_seconds": 0},
    {"retry_max_attempts": 5},
])
def test_invalid_updates_are_rejected(db, values):
    with pytest.raises(SpamValidationError):
        update_engine_settings(db, **values)
