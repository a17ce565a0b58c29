from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from qagen.config import Settings
from qagen.errors import GenerationServiceError
from qagen.generation import ClientStatus, GenerationClient, OpenAIChatClient, StubGenerationClient
from qagen.main import app
from qagen.models import GenerationReply, ResponseShape
from qagen.pipeline import QAGenerationService, get_qa_service

EXPECTED_CSV = '"Question","Answer"\r\n"Q1","A1"\r\n"Q2","A2"\r\n'


class TwoPairClient(GenerationClient):
    """Always answers with the same two pairs in the requested shape."""

    provider = "fake"

    def __init__(self) -> None:
        self.calls = 0

    @property
    def ready(self) -> bool:
        return True

    def complete(self, system_prompt, conversation, shape=None, *, function_name="", pairs_key="qa_pairs"):
        self.calls += 1
        if shape is ResponseShape.PAIRS:
            return GenerationReply(content=json.dumps([["Q1", "A1"], ["Q2", "A2"]]))
        if shape is None:
            return GenerationReply(content=f"answer {self.calls}")
        payload = {pairs_key: [{"question": "Q1", "answer": "A1"}, {"question": "Q2", "answer": "A2"}]}
        return GenerationReply(content=json.dumps(payload))


class FailingClient(GenerationClient):
    @property
    def ready(self) -> bool:
        return True

    def complete(self, *args, **kwargs):
        raise GenerationServiceError("upstream unavailable")


@pytest.fixture
def fake_client():
    return TwoPairClient()


@pytest.fixture
def client(fake_client):
    service = QAGenerationService(client=fake_client, settings=Settings(), persistence=None)
    app.dependency_overrides[get_qa_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_read_root_returns_ok(client) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "ok"


def test_webhook_returns_exact_csv(client) -> None:
    response = client.post("/webhook", content="A short body of text.".encode("utf-8"))

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; charset=UTF-8"
    assert response.content == EXPECTED_CSV.encode("utf-8")
    assert response.headers["x-qagen-chunks"] == "1"


def test_webhook_accepts_get_and_subpaths(client) -> None:
    response = client.request("GET", "/webhook/hooks/incoming", content=b"Some text")

    assert response.status_code == 200
    assert response.text == EXPECTED_CSV


def test_webhook_variant_selects_profile(client) -> None:
    response = client.post("/webhook?variant=pair_array", content=b"Some text")

    assert response.status_code == 200
    assert response.text == EXPECTED_CSV
    assert response.headers["x-qagen-profile"] == "pair_array"


def test_webhook_rejects_unknown_variant(client, fake_client) -> None:
    response = client.post("/webhook?variant=bogus", content=b"Some text")

    assert response.status_code == 400
    assert "bogus" in response.json()["detail"]
    assert fake_client.calls == 0


def test_webhook_rejects_invalid_utf8_without_generating(client, fake_client) -> None:
    response = client.post("/webhook", content=b"\xc3\x28 broken")

    assert response.status_code == 400
    assert "UTF-8" in response.json()["detail"]
    assert fake_client.calls == 0


def test_webhook_with_empty_body_returns_header_only(client, fake_client) -> None:
    response = client.post("/webhook", content=b"")

    assert response.status_code == 200
    assert response.text == '"Question","Answer"\r\n'
    assert fake_client.calls == 0


def test_webhook_degrades_when_generation_fails() -> None:
    service = QAGenerationService(client=FailingClient(), settings=Settings(), persistence=None)
    app.dependency_overrides[get_qa_service] = lambda: service
    try:
        response = TestClient(app).post("/webhook", content=b"Some text")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.text == '"Question","Answer"\r\n'
    assert response.headers["x-qagen-failed-chunks"] == "1"


def test_webhook_with_stub_client_echoes_input() -> None:
    service = QAGenerationService(client=StubGenerationClient(), settings=Settings(), persistence=None)
    app.dependency_overrides[get_qa_service] = lambda: service
    try:
        response = TestClient(app).post("/webhook", content=b"Tell me about tea.")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    lines = response.text.split("\r\n")
    assert lines[1].startswith('"MOCK_QUESTION","MOCK_ANSWER: ')


def test_chat_returns_plain_text_and_session_header(client) -> None:
    first = client.post("/chat", json={"question": "Hi?", "session_id": "abc"})
    second = client.post("/chat", json={"question": "Again?", "session_id": "abc"})

    assert first.status_code == 200
    assert first.text == "answer 1"
    assert first.headers["content-type"] == "text/plain; charset=utf-8"
    assert first.headers["x-session-id"] == "abc"
    assert second.text == "answer 2"


@pytest.mark.parametrize("payload", [{}, {"question": ""}, {"session_id": "abc"}])
def test_chat_rejects_missing_question(client, payload) -> None:
    response = client.post("/chat", json=payload)

    assert response.status_code == 422


def test_chat_rejects_blank_question(client) -> None:
    response = client.post("/chat", json={"question": "   "})

    assert response.status_code == 422


def test_chat_rejects_non_json_body(client) -> None:
    response = client.post(
        "/chat", content=b"not json", headers={"content-type": "application/json"}
    )

    assert response.status_code == 422


def test_chat_surfaces_generation_failure_as_502() -> None:
    service = QAGenerationService(client=FailingClient(), settings=Settings(), persistence=None)
    app.dependency_overrides[get_qa_service] = lambda: service
    try:
        response = TestClient(app).post("/chat", json={"question": "Hello?"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502
    assert response.json()["detail"] == "upstream unavailable"


def test_profiles_lists_registry(client) -> None:
    response = client.get("/profiles")

    assert response.status_code == 200
    names = [profile["name"] for profile in response.json()]
    assert names == ["qa_pairs", "pair_array", "function_call", "paragraph"]


def test_healthz_returns_ok(monkeypatch) -> None:
    status = ClientStatus(ready=True, provider="openai", model_name="gpt-test")
    monkeypatch.setattr("qagen.main.get_generation_status", lambda: status)

    response = TestClient(app).get("/healthz")

    assert response.status_code == 200
    assert response.text == "ok"


def test_healthz_returns_503_when_client_unavailable(monkeypatch) -> None:
    status = ClientStatus(ready=False, provider="openai", model_name="gpt-test", error="no key")
    monkeypatch.setattr("qagen.main.get_generation_status", lambda: status)

    response = TestClient(app).get("/healthz")

    assert response.status_code == 503
    assert response.json()["detail"] == "no key"


def test_generation_health_reports_provider(monkeypatch) -> None:
    status = ClientStatus(ready=False, provider="openai", model_name="gpt-test", error="no key")
    monkeypatch.setattr("qagen.main.get_generation_status", lambda: status)

    payload = TestClient(app).get("/healthz/generation").json()

    assert payload == {"ready": False, "provider": "openai", "model": "gpt-test", "reason": "no key"}


def test_healthz_reports_missing_api_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    generation_client = OpenAIChatClient(model="gpt-test")
    monkeypatch.setattr("qagen.main.get_generation_status", generation_client.status)

    response = TestClient(app).get("/healthz")

    assert response.status_code == 503
    assert response.json()["detail"]
