"""
Insights Engine API tests (FastAPI TestClient).

The pipeline and rate limiter are swapped through dependency overrides;
no Claude or database calls are made.
"""

import json

import pytest
from fastapi.testclient import TestClient

from gateway.insights_engine import app, get_pipeline, get_rate_limiter
from insights import config
from insights.extractor import ExtractionFailed
from insights.models import ActionItem, ConversationTurn, MemoryRecord
from insights.pipeline import InsightPipeline
from insights.rate_limit import InMemoryCounterStore, RateLimiter

MESSAGES = [
    {"sender": "person_a", "content": "Sam never helps with the chores."},
    {"sender": "mediator", "content": "It sounds like you want more shared effort."},
]

SIGNALS_JSON = json.dumps({"signals": [
    {"signal_type": "values", "signal_value": {"core": ["fairness"]}, "confidence": 0.6},
]})


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryCounterStore(), limit=3, window_seconds=60)


@pytest.fixture
def pipeline(invoker, make_invoker, store):
    return InsightPipeline(invoker, store, signal_invoker=make_invoker(SIGNALS_JSON))


@pytest.fixture
def client(pipeline, limiter):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "version": "0.1.0"}


# =============================================================================
# POST /insights
# =============================================================================


class TestInsights:
    def test_returns_camel_case_memory(self, client):
        r = client.post("/insights", json={"messages": MESSAGES})
        assert r.status_code == 200
        insights = r.json()["insights"]
        assert insights["identity"]["name"] == "Maya"
        assert insights["actionItems"][0]["id"] == "talk-to-sam"
        assert insights["currentSituation"] == "Arguing with Sam about chores"

    def test_single_message_returns_null_without_model_call(self, client, invoker):
        r = client.post("/insights", json={"messages": MESSAGES[:1]})
        assert r.json() == {"insights": None}
        assert invoker.calls == []

    def test_existing_memory_is_merged(self, client):
        existing = {"themes": ["money"], "actionItems": [{"id": "talk-to-sam", "text": "Old", "status": "done"}]}
        r = client.post("/insights", json={"messages": MESSAGES, "existing_memory": existing})
        insights = r.json()["insights"]
        assert insights["themes"] == ["money", "work stress", "family"]
        assert insights["actionItems"][0]["status"] == "done"

    def test_persists_for_user(self, client, store):
        client.post("/insights", json={"messages": MESSAGES, "user_id": "user-1"})
        assert store.memories["user-1"].identity.name == "Maya"

    def test_model_failure_is_null_not_error(self, client, invoker):
        invoker.error = ExtractionFailed("Claude returned 500")
        r = client.post("/insights", json={"messages": MESSAGES})
        assert r.status_code == 200
        assert r.json() == {"insights": None}

    def test_bad_sender_is_null_not_error(self, client):
        r = client.post("/insights", json={"messages": [{"sender": "robot", "content": "x"}] * 2})
        assert r.status_code == 200
        assert r.json() == {"insights": None}

    def test_rate_limited(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7"}
        codes = [client.post("/insights", json={"messages": []}, headers=headers).status_code for _ in range(4)]
        assert codes == [200, 200, 200, 429]
        r = client.post("/insights", json={"messages": []}, headers=headers)
        assert r.json() == {"error": "Rate limit exceeded"}


# =============================================================================
# POST /solo/backfill
# =============================================================================


class TestBackfill:
    @pytest.fixture(autouse=True)
    def service_key(self, monkeypatch):
        monkeypatch.setattr(config, "SUPABASE_SERVICE_ROLE_KEY", "secret")

    def auth(self, key="secret"):
        return {"Authorization": f"Bearer {key}"}

    def test_requires_service_key(self, client):
        r = client.post("/solo/backfill", json={"session_id": "s", "user_id": "u"}, headers=self.auth("wrong"))
        assert r.status_code == 401

    def test_missing_ids(self, client):
        r = client.post("/solo/backfill", json={"session_id": "s"}, headers=self.auth())
        assert r.status_code == 400

    def test_unknown_session(self, client):
        r = client.post("/solo/backfill", json={"session_id": "none", "user_id": "u"}, headers=self.auth())
        assert r.status_code == 404

    def test_read_failure(self, client, store):
        store.fail_reads = True
        r = client.post("/solo/backfill", json={"session_id": "s", "user_id": "u"}, headers=self.auth())
        assert r.status_code == 500

    def test_extraction_failure(self, client, store, invoker):
        store.messages["s"] = [ConversationTurn.model_validate(m) for m in MESSAGES]
        invoker.response = "not json at all"
        r = client.post("/solo/backfill", json={"session_id": "s", "user_id": "u"}, headers=self.auth())
        assert r.status_code == 502

    def test_success(self, client, store):
        store.messages["s"] = [ConversationTurn.model_validate(m) for m in MESSAGES]
        r = client.post("/solo/backfill", json={"session_id": "s", "user_id": "u"}, headers=self.auth())
        assert r.status_code == 200
        assert r.json()["success"] is True
        assert r.json()["insights"]["themes"] == ["work stress", "family"]
        assert store.memories["u"].themes == ["work stress", "family"]


# =============================================================================
# Signals and profile endpoints
# =============================================================================


class TestSignals:
    def test_queues_extraction(self, client, store):
        r = client.post("/signals", json={"user_id": "user-1", "messages": ["I value fairness."]})
        assert r.status_code == 202
        assert r.json()["data"] == {"queued": True}
        # TestClient runs background tasks before returning.
        assert ("user-1", "values") in store.signals

    def test_nothing_to_queue(self, client):
        r = client.post("/signals", json={"user_id": "user-1", "messages": []})
        assert r.json()["data"] == {"queued": False}

    def test_list_signals(self, client):
        client.post("/signals", json={"user_id": "user-1", "messages": ["I value fairness."]})
        r = client.get("/profiles/user-1/signals")
        body = r.json()
        assert body["success"] is True
        assert body["data"]["signals"][0]["signalType"] == "values"
        assert body["data"]["signals"][0]["signalValue"]["core"] == ["fairness"]

    def test_list_signals_read_failure(self, client, store):
        store.fail_reads = True
        body = client.get("/profiles/user-1/signals").json()
        assert body["success"] is False


class TestProfileUpdates:
    def test_action_item_status(self, client, store):
        store.memories["user-1"] = MemoryRecord(action_items=[ActionItem(id="walk", text="Take a walk")])
        r = client.patch("/profiles/user-1/action-items/walk", json={"status": "accepted"})
        assert r.json()["success"] is True
        assert r.json()["data"]["memory"]["actionItems"][0]["status"] == "accepted"

    def test_unknown_action_item(self, client, store):
        store.memories["user-1"] = MemoryRecord()
        r = client.patch("/profiles/user-1/action-items/nope", json={"status": "done"})
        assert r.status_code == 404

    def test_invalid_status(self, client):
        r = client.patch("/profiles/user-1/action-items/walk", json={"status": "finished"})
        assert r.status_code == 422

    def test_record_session(self, client, store):
        r = client.post("/profiles/user-1/sessions", json={"summary": "Calmer talk", "topics": ["chores"]})
        assert r.json()["success"] is True
        assert store.memories["user-1"].session_count == 1
        assert store.memories["user-1"].recent_sessions[0].topics == ["chores"]
