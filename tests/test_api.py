"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from outreach_agent.agent import TurnOrchestrator
from outreach_agent.retrieval.index import IndexManager
from outreach_agent.server import app
from outreach_agent.services.notifier import AppointmentNotifier
from outreach_agent.services.session_store import SessionKind, SessionStore
from outreach_agent.services.telephony import TelephonyClient, TelephonyError

LINK = "https://calendly.com/example/30min"


@pytest.fixture
def telephony():
    return MagicMock(spec=TelephonyClient)


@pytest.fixture
def wired_app(corpus_dir, telephony, mock_llm):
    """Attach real components with a mocked model to app state (mirrors the lifespan)."""
    store = SessionStore()
    index_manager = IndexManager(corpus_dir)
    asyncio.run(index_manager.rebuild())
    notifier = AppointmentNotifier(store, telephony, scheduling_link=LINK)
    llm = mock_llm("We help manufacturers automate their workflows.")

    app.state.store = store
    app.state.index_manager = index_manager
    app.state.telephony = telephony
    app.state.orchestrator = TurnOrchestrator(store, index_manager, notifier, llm=llm)
    yield app
    # Clean up
    app.state.store = None
    app.state.index_manager = None
    app.state.telephony = None
    app.state.orchestrator = None


@pytest.fixture
def client(wired_app):
    """FastAPI test client with the components wired up."""
    return TestClient(wired_app)


def _swap_model_reply(content: str) -> None:
    """Rebuild the wired orchestrator around a model that always says *content*."""
    current = app.state.orchestrator
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=AIMessage(content=content))
    app.state.orchestrator = TurnOrchestrator(
        current.store, current.index_manager, current.notifier, llm=llm,
    )


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "outreach-agent"
        assert data["documents"] == 2

    def test_health_before_startup(self):
        response = TestClient(app).get("/api/health")
        assert response.status_code == 200
        assert response.json()["documents"] == 0


class TestChatEndpoint:
    def test_chat_returns_response(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "What do you do?", "sessionId": "test-session-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "We help manufacturers automate their workflows."
        assert data["sessionId"] == "test-session-1"
        assert data["suggestedAppointment"] is False
        assert data["ended"] is False

    def test_chat_generates_session_id(self, client):
        data = client.post("/api/chat", json={"message": "Hello there"}).json()
        assert data["sessionId"]
        assert app.state.store.has(data["sessionId"], SessionKind.WEB)

    def test_chat_keeps_history_per_session(self, client):
        client.post("/api/chat", json={"message": "first question", "sessionId": "s1"})
        client.post("/api/chat", json={"message": "second question", "sessionId": "s1"})
        client.post("/api/chat", json={"message": "other question", "sessionId": "s2"})

        assert [t.user for t in app.state.store.get_history("s1", SessionKind.WEB)] == [
            "first question", "second question",
        ]
        assert len(app.state.store.get_history("s2", SessionKind.WEB)) == 1

    def test_empty_message_gets_greeting(self, client):
        response = client.post("/api/chat", json={"message": ""})
        assert response.status_code == 200
        assert response.json()["response"] == "Hi there! How can I help you today?"

    def test_chat_validates_long_message(self, client):
        response = client.post("/api/chat", json={"message": "x" * 2001})
        assert response.status_code == 422

    def test_goodbye_ends_chat(self, client):
        data = client.post("/api/chat", json={"message": "bye", "sessionId": "s1"}).json()
        assert data["ended"] is True
        assert data["response"] == "Thank you for your time. Have a great day!"

    def test_suggestion_includes_clickable_link(self, client):
        _swap_model_reply("Let's meet! [Appointment Suggested]")

        data = client.post("/api/chat", json={"message": "Sounds good", "sessionId": "s1"}).json()

        assert data["suggestedAppointment"] is True
        assert f'<a href="{LINK}" target="_blank">' in data["response"]
        assert "[Appointment Suggested]" not in data["response"]

    def test_chat_with_phone_number_texts_link(self, client, telephony):
        _swap_model_reply("Let's meet! [Appointment Suggested]")

        data = client.post(
            "/api/chat",
            json={"message": "Sounds good", "sessionId": "s1", "phoneNumber": "+15550001111"},
        ).json()

        telephony.send_sms.assert_called_once()
        assert "sent you an SMS" in data["response"]

    def test_chat_handles_agent_error(self, client):
        app.state.orchestrator.handle = AsyncMock(side_effect=RuntimeError("graph exploded"))
        response = client.post("/api/chat", json={"message": "Hello", "sessionId": "s1"})
        assert response.status_code == 500
        assert "internal error" in response.json()["detail"].lower()
        # Internal error details must not leak to the client
        assert "graph exploded" not in response.text

    def test_chat_before_startup_returns_503(self):
        app.state.orchestrator = None
        response = TestClient(app).post("/api/chat", json={"message": "Hello"})
        assert response.status_code == 503


class TestCallEndpoint:
    def test_missing_phone_number(self, client):
        response = client.post("/api/call", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "No phone number provided"

    def test_places_call_and_opens_session(self, client, telephony):
        telephony.create_call.return_value = "CA123"

        response = client.post("/api/call", json={"phone_number": "+15550001111"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "call_sid": "CA123"}
        args, kwargs = telephony.create_call.call_args
        assert args == ("+15550001111",)
        assert kwargs["answer_url"].endswith("/api/voice/answer")
        assert kwargs["status_url"].endswith("/api/voice/status")
        assert app.state.store.has("CA123", SessionKind.CALL)
        assert app.state.store.contact_for("CA123", SessionKind.CALL) == "+15550001111"

    def test_twilio_failure_returns_502(self, client, telephony):
        telephony.create_call.side_effect = TelephonyError("Twilio create_call failed: nope")
        response = client.post("/api/call", json={"phone_number": "+15550001111"})
        assert response.status_code == 502

    def test_chat_reusing_a_call_sid_does_not_text_the_callee(self, client, telephony):
        telephony.create_call.return_value = "CA123"
        client.post("/api/call", json={"phone_number": "+15550001111"})
        _swap_model_reply("Let's meet! [Appointment Suggested]")

        data = client.post("/api/chat", json={"message": "Sounds good", "sessionId": "CA123"}).json()

        telephony.send_sms.assert_not_called()
        assert data["suggestedAppointment"] is True
        assert app.state.store.get_history("CA123", SessionKind.CALL) == []


class TestDocumentEndpoints:
    def test_list_documents(self, client):
        data = client.get("/api/documents").json()
        assert data["document_count"] == 2
        assert [d["name"] for d in data["documents"]] == ["faq.txt", "pricing.txt"]
        assert data["last_built"] is not None

    def test_upload_rebuilds_index(self, client, corpus_dir):
        response = client.post(
            "/api/documents",
            files={"file": ("robots.txt", b"Robotics integration for warehouses.", "text/plain")},
        )
        assert response.status_code == 201
        assert response.json()["document_count"] == 3
        assert (corpus_dir / "robots.txt").exists()
        assert "robotics" in app.state.index_manager.current.postings

    def test_upload_rejects_hidden_file(self, client):
        response = client.post(
            "/api/documents", files={"file": (".env", b"SECRET=1", "text/plain")},
        )
        assert response.status_code == 400

    def test_search(self, client):
        data = client.get("/api/search", params={"q": "manufacturing automation"}).json()
        assert data["query"] == "manufacturing automation"
        [result] = data["results"]
        assert result["name"] == "faq.txt"
        assert result["match_count"] == 2
        assert result["contexts"]


class TestMetricsEndpoint:
    def test_metrics_lists_stages(self, client):
        client.get("/api/health")
        stages = client.get("/api/metrics").json()["stages"]
        assert {"index_build", "search", "generation", "request"} <= set(stages)
        assert stages["request"]["count"] >= 1


class TestRequestId:
    def test_response_has_request_id(self, client):
        response = client.get("/api/health")
        assert "X-Request-ID" in response.headers

    def test_client_request_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"
