"""Tests for the HTTP surface — storyforge.app / storyforge.routes."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from storyforge.app import create_app
from storyforge.config import Settings
from storyforge.errors import ProviderError
from storyforge.llm.providers import OpenAIProvider
from storyforge.llm.stream import sse_line
from storyforge.models import AIModel


class StubProvider:
    name = "local"

    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens

    async def generate(self, messages, model, params, cancel=None):
        return self._stream()

    async def _stream(self):
        for token in self.tokens:
            yield sse_line(token)
        yield "data: [DONE]\n\n"

    async def list_models(self):
        return [AIModel(id="local/tiny", name="tiny", provider="local")]


@pytest.fixture
def client() -> TestClient:
    failing = MagicMock()
    failing.list_models = AsyncMock(side_effect=ProviderError("Cannot connect"))
    providers = {
        "local": StubProvider(["Once ", "upon"]),
        "openai": OpenAIProvider(""),
        "openrouter": failing,
    }
    return TestClient(create_app(Settings(), providers))


def _frames(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


BODY = {
    "provider": "local",
    "model": "local/tiny",
    "prompt": {"messages": [
        {"role": "system", "content": "Write prose."},
        {"role": "user", "content": "{{scenebeat}}"},
    ]},
    "context": {"scene_beat_command": "Alice enters."},
}


def test_health(client) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestModels:
    def test_list(self, client) -> None:
        resp = client.get("/api/models/local")
        assert resp.status_code == 200
        assert resp.json() == [{"id": "local/tiny", "name": "tiny", "provider": "local", "context_length": 16384}]

    def test_unknown_provider_is_400(self, client) -> None:
        assert client.get("/api/models/mystery").status_code == 400

    def test_missing_key_is_400(self, client) -> None:
        resp = client.get("/api/models/openai")
        assert resp.status_code == 400
        assert "API key" in resp.json()["detail"]

    def test_provider_failure_is_502(self, client) -> None:
        assert client.get("/api/models/openrouter").status_code == 502


def test_preview(client) -> None:
    resp = client.post("/api/prompts/preview", json={k: BODY[k] for k in ("prompt", "context")})
    assert resp.status_code == 200
    assert resp.json() == [
        {"role": "system", "content": "Write prose."},
        {"role": "user", "content": "Alice enters."},
    ]


class TestGenerate:
    def test_streams_tokens_then_done(self, client) -> None:
        resp = client.post("/api/generate", json=BODY)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert _frames(resp.text) == [
            {"token": "Once "},
            {"token": "upon"},
            {"done": True, "text": "Once upon", "state": "completed"},
        ]

    def test_error_frame(self, client) -> None:
        resp = client.post("/api/generate", json={**BODY, "provider": "openai", "model": "gpt-4o"})
        assert _frames(resp.text) == [{"error": "openai API key not set"}]

    def test_invalid_provider_rejected(self, client) -> None:
        assert client.post("/api/generate", json={**BODY, "provider": "bogus"}).status_code == 422

    def test_stop_when_idle(self, client) -> None:
        resp = client.post("/api/generate/editor/stop")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
