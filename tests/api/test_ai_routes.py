"""Tests for the chat endpoints under /api/ai."""

import json

import anthropic
import httpx
from fastapi.testclient import TestClient

from src.api.routes.ai import AUTH_REQUIRED_REPLY, SUGGESTIONS
from tests.helpers.fake_llm import llm_response, text_block, tool_use

DETAIL_REPLY = "Invoice #1037 for Acme Corp is unpaid. Total amount: $500.00."


def _script_detail(llm) -> None:
    llm.responses.extend([
        llm_response(tool_use("getInvoiceByNumber", {"invoiceNumber": "1037"})),
        llm_response(text_block(DETAIL_REPLY)),
    ])


def _sse_events(body: str) -> list[tuple[str, dict]]:
    """Parse ``event:``/``data:`` pairs from an SSE body."""
    events = []
    event_name = None
    for line in body.splitlines():
        if line.startswith("event:"):
            event_name = line.split(":", 1)[1].strip()
        elif line.startswith("data:") and event_name:
            events.append((event_name, json.loads(line.split(":", 1)[1].strip())))
            event_name = None
    return events


class TestChatValidation:

    def test_missing_message(self, client: TestClient):
        response = client.post("/api/ai/chat", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Message is required"}

    def test_empty_message(self, client: TestClient):
        response = client.post("/api/ai/chat", json={"message": ""})
        assert response.status_code == 400

    def test_auth_required_when_disconnected(self, client: TestClient, token_manager, llm):
        token_manager.disconnect()

        response = client.post("/api/ai/chat", json={"message": "show invoices"})

        assert response.status_code == 200
        assert response.json() == {
            "sessionId": "default",
            "message": "show invoices",
            "response": AUTH_REQUIRED_REPLY,
            "authRequired": True,
            "authUrl": "/auth/quickbooks",
        }
        assert llm.requests == []

    def test_stream_also_requires_auth(self, client: TestClient, token_manager):
        token_manager.disconnect()
        response = client.post("/api/ai/chat/stream", json={"message": "hi"})
        assert response.json()["authRequired"] is True


class TestChat:

    def test_show_invoice_opens_detail(self, client: TestClient, llm, conversation_store):
        _script_detail(llm)

        response = client.post("/api/ai/chat", json={"message": "show invoice 1037"})

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == DETAIL_REPLY
        assert body["display"]["kind"] == "detail"
        assert body["display"]["invoice"]["DocNumber"] == "1037"
        assert [c["toolName"] for c in body["toolCalls"]] == ["getInvoiceByNumber"]
        assert body["suggestions"] == SUGGESTIONS

        session = conversation_store.get_session(body["sessionId"])
        assert [m["role"] for m in session["messages"]] == ["user", "assistant"]
        assert session["messages"][1]["metadata"]["successful"] is True

    def test_show_unpaid_opens_slider(self, client: TestClient, llm):
        llm.responses.extend([
            llm_response(tool_use("openInvoiceSlider", {"filter": "unpaid"})),
            llm_response(text_block("You have 3 unpaid invoices.")),
        ])

        body = client.post("/api/ai/chat", json={"message": "show all unpaid invoices"}).json()

        assert body["display"]["kind"] == "slider"
        assert body["display"]["filter"] == "unpaid"
        assert len(body["display"]["invoices"]) == 3
        assert body["display"]["invoice"] is None

    def test_history_is_injected_into_next_turn(self, client: TestClient, llm):
        _script_detail(llm)
        first = client.post("/api/ai/chat", json={"message": "show invoice 1037"}).json()

        llm.responses.append(llm_response(text_block("It is due on July 31.")))
        client.post(
            "/api/ai/chat",
            json={"message": "when is it due?", "sessionId": first["sessionId"]},
        )

        system = llm.requests[-1]["system"]
        assert "User: show invoice 1037" in system
        assert f"Assistant: {DETAIL_REPLY}" in system

    def test_provider_failure(self, client: TestClient, llm, conversation_store):
        llm.error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )

        response = client.post("/api/ai/chat", json={"message": "hi"})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to process chat message"
        # Failed turns are not recorded
        assert all(s["messageCount"] == 0 for s in conversation_store.list_sessions())


class TestChatStreaming:

    def test_plain_text_stream(self, client: TestClient, llm, conversation_store):
        _script_detail(llm)

        response = client.post("/api/ai/chat/stream", json={"message": "show invoice 1037"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == DETAIL_REPLY
        sessions = conversation_store.list_sessions()
        assert sessions[0]["messageCount"] == 2

    def test_stream_reports_provider_failure_inline(self, client: TestClient, llm):
        llm.error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        response = client.post("/api/ai/chat/stream", json={"message": "hi"})
        assert response.text == "Error: Failed to process chat message"

    def test_sse_events(self, client: TestClient, llm):
        _script_detail(llm)

        with client.stream(
            "POST", "/api/ai/chat/events", json={"message": "show invoice 1037"}
        ) as response:
            assert response.status_code == 200
            assert "text/event-stream" in response.headers.get("content-type", "")
            body = response.read().decode()

        events = _sse_events(body)
        names = [name for name, _ in events]
        assert names[0] == "tool"
        assert names[-1] == "done"
        assert events[0][1] == {
            "toolName": "getInvoiceByNumber",
            "args": {"invoiceNumber": "1037"},
            "success": True,
        }
        assert "".join(data["text"] for name, data in events if name == "text") == DETAIL_REPLY
        assert events[-1][1]["display"]["kind"] == "detail"
