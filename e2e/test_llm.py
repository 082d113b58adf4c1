"""LLM client tests.

Tests for the LLMClient abstraction and the gateway implementations.

TestLLMClientAbstract  — no API key needed, runs in CI
TestMockGatewayClient  — canned responses, no network
TestGatewayClient      — the real API call test is skipped if GATEWAY_API_KEY
                         is not set in the environment or .env file
"""

import os
import pathlib

import pytest

from llm import GatewayClient, GatewayError, LLMClient, MockGatewayClient
from llm.gateway import DEFAULT_BASE_URL, DEFAULT_MODEL
from llm.mock import MOCK_RESULT
from utils.parse import parse_llm_json


# ── LLMClient (abstract) ──────────────────────────────────────────────────────

class TestLLMClientAbstract:
    def test_cannot_instantiate_directly(self):
        """LLMClient is abstract — instantiating it directly must raise."""
        with pytest.raises(TypeError, match="abstract"):
            LLMClient()

    def test_subclass_without_complete_raises(self):
        """A subclass that skips implementing complete() must also raise."""
        class IncompleteClient(LLMClient):
            pass

        with pytest.raises(TypeError, match="abstract"):
            IncompleteClient()

    def test_subclass_with_complete_is_instantiable(self):
        """A subclass that implements complete() should instantiate fine."""
        class ConcreteClient(LLMClient):
            async def complete(self, system: str, user: str) -> str:
                return "ok"

        client = ConcreteClient()
        assert isinstance(client, LLMClient)


class TestGatewayError:
    def test_carries_status(self):
        exc = GatewayError("rate limited", status_code=429)
        assert exc.status_code == 429
        assert str(exc) == "rate limited"

    def test_status_defaults_to_none(self):
        assert GatewayError("unreachable").status_code is None


# ── MockGatewayClient ─────────────────────────────────────────────────────────

class TestMockGatewayClient:
    async def test_returns_fenced_json(self):
        response = await MockGatewayClient(delay=0).complete(system="s", user="u")
        assert response.startswith("```json")
        assert parse_llm_json(response) == MOCK_RESULT

    def test_is_subclass_of_llm_client(self):
        assert issubclass(MockGatewayClient, LLMClient)


# ── GatewayClient ─────────────────────────────────────────────────────────────

class TestGatewayClient:
    def test_raises_immediately_if_api_key_missing(self, monkeypatch):
        """Missing key must raise KeyError at construction, not at first call."""
        monkeypatch.delenv("GATEWAY_API_KEY", raising=False)
        with pytest.raises(KeyError):
            GatewayClient()

    def test_is_subclass_of_llm_client(self):
        """GatewayClient must satisfy the LLMClient interface."""
        assert issubclass(GatewayClient, LLMClient)

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEY", "test-key")
        monkeypatch.delenv("GATEWAY_MODEL", raising=False)
        monkeypatch.delenv("GATEWAY_BASE_URL", raising=False)
        client = GatewayClient()
        assert client.model == DEFAULT_MODEL
        assert str(client.client.base_url).rstrip("/") == DEFAULT_BASE_URL
        assert client.client.max_retries == 0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEY", "test-key")
        monkeypatch.setenv("GATEWAY_MODEL", "openai/gpt-4o-mini")
        monkeypatch.setenv("GATEWAY_BASE_URL", "http://localhost:9999/v1")
        client = GatewayClient()
        assert client.model == "openai/gpt-4o-mini"
        assert str(client.client.base_url).rstrip("/") == "http://localhost:9999/v1"

    async def test_unreachable_gateway_raises_gateway_error(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEY", "test-key")
        client = GatewayClient(base_url="http://127.0.0.1:9/v1")
        with pytest.raises(GatewayError) as exc_info:
            await client.complete(system="s", user="u")
        assert exc_info.value.status_code is None

    @pytest.mark.skipif(
        not os.getenv("GATEWAY_API_KEY"),
        reason="GATEWAY_API_KEY not set — skipping live API call",
    )
    @pytest.mark.live
    async def test_real_api_call_returns_string(self):
        """Make a real call through the gateway and verify we get a non-empty string back."""
        client = GatewayClient()
        response = await client.complete(
            system="You are a test assistant. Reply with one word only, no punctuation.",
            user="Say the word pong.",
        )
        assert isinstance(response, str)
        assert len(response.strip()) > 0

    @pytest.mark.skipif(
        not os.getenv("GATEWAY_API_KEY"),
        reason="GATEWAY_API_KEY not set — skipping live API call",
    )
    @pytest.mark.live
    async def test_real_workflow_response_is_json(self):
        """The orchestrator's system prompt should yield parseable JSON from a real model."""
        client = GatewayClient()
        system = (pathlib.Path(__file__).parent.parent / "prompts" / "orchestrator.txt").read_text()
        response = await client.complete(system=system, user="Calculate 5+3 and convert to words")
        parsed = parse_llm_json(response)
        assert parsed["numeric_result"] == 8
