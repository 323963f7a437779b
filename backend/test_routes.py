"""
Tests for the HTTP surface.

Uses the FastAPI TestClient with get_db pointed at the in-memory database.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from spamguard.models import MessageStatus
from spamguard.routes import spam as spam_routes
from spamguard.services.learning_store import learn_from_spam_decision
from spamguard.services.rules import create_rule


def test_process_endpoint(client, db, add_message):
    create_rule(db, "unsubscribe")
    add_message("Please UNSUBSCRIBE me now")
    add_message("where is my order")

    response = client.post("/api/spam/process", json={"skip": 0, "take": 200})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["processed"] == 2
    assert body["matched"] == 1
    assert body["complete"] is True
    assert body["next_skip"] == 1


def test_process_rejects_negative_skip(client):
    response = client.post("/api/spam/process", json={"skip": -5, "take": 10})
    assert response.status_code == 400


def test_run_endpoint(client, add_message):
    for _ in range(3):
        add_message("STOP")

    response = client.post("/api/spam/run", json={"take": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["complete"] is True
    assert body["actually_updated"] == 3


def test_preview_endpoint(client, add_message):
    add_message("STOP")

    response = client.get("/api/spam/preview", params={"limit": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["matched"] == 1
    assert body["results"][0]["would_flag"] is True


def test_counts_endpoint(client, add_message):
    add_message("hello")
    add_message("STOP", status=MessageStatus.REVIEW)

    response = client.get("/api/spam/counts")
    assert response.json() == {"pending": 1, "review": 1, "promoted": 0, "total": 2}


def test_restore_endpoints(client, add_message):
    add_message("STOP", created_at=datetime(2025, 10, 1), status=MessageStatus.REVIEW)

    check = client.get("/api/spam/restore", params={"before_date": "2025-10-29"})
    assert check.status_code == 200
    assert check.json()["count"] == 1

    dry = client.post("/api/spam/restore", json={"before_date": "2025-10-29"})
    assert dry.json()["dry_run"] is True
    assert dry.json()["restored"] == 0

    real = client.post("/api/spam/restore", json={"before_date": "2025-10-29", "dry_run": False})
    assert real.json()["restored"] == 1


def test_restore_rejects_bad_date(client):
    response = client.post("/api/spam/restore", json={"before_date": "not-a-date"})
    assert response.status_code == 400


def test_restore_ids_endpoint(client, add_message):
    message = add_message("STOP", status=MessageStatus.REVIEW)

    response = client.post("/api/spam/restore-ids", json={"ids": [message.id]})
    assert response.status_code == 200
    assert response.json()["restored"] == 1

    empty = client.post("/api/spam/restore-ids", json={"ids": []})
    assert empty.status_code == 400


def test_learn_and_insights_endpoints(client):
    response = client.post("/api/spam/learn", json={"text": "STOP", "is_spam": True, "brand": "Acme"})
    assert response.status_code == 200
    assert response.json()["pattern_tag"] == "LONE:stop"

    bad = client.post("/api/spam/learn", json={"text": "STOP", "is_spam": True, "source": "robot"})
    assert bad.status_code == 400

    insights = client.get("/api/spam/insights", params={"brand": "acme"}).json()
    assert insights["total_decisions"] == 1
    assert insights["spam_decisions"] == 1


def test_settings_endpoints(client):
    current = client.get("/api/settings/")
    assert current.status_code == 200
    assert current.json()["pattern_threshold"] == 50

    updated = client.put("/api/settings/", params={"pattern_threshold": 65})
    assert updated.status_code == 200
    assert updated.json()["pattern_threshold"] == 65

    invalid = client.put("/api/settings/", params={"learning_threshold": 150})
    assert invalid.status_code == 400


def test_analyze_endpoints(client, db):
    for _ in range(5):
        learn_from_spam_decision(db, "hello there friend", True)

    response = client.get("/api/spam/analyze", params={"text": "Hello there, friend"})
    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["score"] == pytest.approx(62.5)
    assert analysis["record_count"] == 5
    assert analysis["historical_confidence"] == 100.0
    assert analysis["recommendation"] == "suspicious"

    clean = client.post("/api/spam/analyze", json={"text": "where is my order", "brand": "Acme"})
    assert clean.status_code == 200
    assert clean.json()["analysis"]["recommendation"] == "likely_legitimate"

    assert client.get("/api/spam/analyze").status_code == 400
    assert client.post("/api/spam/analyze", json={"text": "   "}).status_code == 400


def _locked(*args, **kwargs):
    raise OperationalError("SELECT messages", {}, Exception("database is locked"))


def test_preview_store_failure_is_structured(client, monkeypatch):
    async def locked_preview(*args, **kwargs):
        _locked()

    monkeypatch.setattr(spam_routes, "preview_matches", locked_preview)

    response = client.get("/api/spam/preview")

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "database is locked" in response.json()["error"]


@pytest.mark.parametrize("method,path,target,payload", [
    ("get", "/api/spam/restore", "count_restorable", {"params": {"before_date": "2025-10-29"}}),
    ("post", "/api/spam/restore", "restore_before", {"json": {"before_date": "2025-10-29", "dry_run": False}}),
    ("post", "/api/spam/restore-ids", "restore_messages", {"json": {"ids": [1]}}),
])
def test_restore_store_failures_are_structured(client, monkeypatch, method, path, target, payload):
    monkeypatch.setattr(spam_routes, target, _locked)

    response = getattr(client, method)(path, **payload)

    assert response.status_code == 500
    assert set(response.json()) == {"success", "error"}
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Restore")
