"""Tests for the LLM client implementations."""

import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from groq import APIConnectionError, APIStatusError, APITimeoutError

from mimir.errors import (
    GeneratorHTTPError,
    GeneratorPayloadError,
    GeneratorTimeoutError,
    GeneratorUnreachableError,
    UserError,
)
from mimir.memory.llm_client import GroqLLMClient, OllamaLLMClient, create_llm_client

GROQ_REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def ollama_client(handler) -> OllamaLLMClient:
    """Create an OllamaLLMClient whose HTTP traffic goes to ``handler``."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaLLMClient(base_url="http://ollama.test/", model="qwen3:8b", client=http)


def make_response(content: str | None) -> Mock:
    """Create a mock chat completion response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestOllamaLLMClient:
    """Tests for OllamaLLMClient."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """The Ollama request carries model, prompt, stream and temperature."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": '{"facts": []}'})

        text = await ollama_client(handler).complete("PROMPT")

        assert text == '{"facts": []}'
        assert seen["url"] == "http://ollama.test/api/generate"
        assert seen["body"] == {
            "model": "qwen3:8b",
            "prompt": "PROMPT",
            "stream": False,
            "options": {"temperature": 0},
        }

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Non-2xx answers raise GeneratorHTTPError with status and body."""
        client = ollama_client(lambda request: httpx.Response(500, text="model not loaded"))
        with pytest.raises(GeneratorHTTPError) as exc_info:
            await client.complete("p")
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "model not loaded"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """A non-JSON body is a payload error."""
        client = ollama_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GeneratorPayloadError, match="non-JSON"):
            await client.complete("p")

    @pytest.mark.asyncio
    async def test_empty_response_field(self):
        """An empty response field is a payload error."""
        client = ollama_client(lambda request: httpx.Response(200, json={"response": "  "}))
        with pytest.raises(GeneratorPayloadError, match="empty"):
            await client.complete("p")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Connection failures raise GeneratorUnreachableError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GeneratorUnreachableError, match="Is Ollama running"):
            await ollama_client(handler).complete("p")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GeneratorTimeoutError):
            await ollama_client(handler).complete("p")


class TestGroqLLMClient:
    """Tests for GroqLLMClient."""

    @pytest.fixture
    def groq(self) -> AsyncMock:
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_complete(self, groq: AsyncMock):
        """complete returns the first choice's content."""
        groq.chat.completions.create = AsyncMock(return_value=make_response("hello"))
        client = GroqLLMClient(groq, model="llama-test")

        assert await client.complete("prompt") == "hello"
        groq.chat.completions.create.assert_awaited_once_with(
            model="llama-test",
            messages=[{"role": "user", "content": "prompt"}],
            temperature=0,
        )

    @pytest.mark.asyncio
    async def test_empty_content(self, groq: AsyncMock):
        """Empty completion content is a payload error."""
        groq.chat.completions.create = AsyncMock(return_value=make_response(None))
        with pytest.raises(GeneratorPayloadError):
            await GroqLLMClient(groq).complete("prompt")

    @pytest.mark.asyncio
    async def test_connection_error(self, groq: AsyncMock):
        """Groq connection errors map to GeneratorUnreachableError."""
        groq.chat.completions.create = AsyncMock(
            side_effect=APIConnectionError(request=GROQ_REQUEST)
        )
        with pytest.raises(GeneratorUnreachableError):
            await GroqLLMClient(groq).complete("prompt")

    @pytest.mark.asyncio
    async def test_timeout(self, groq: AsyncMock):
        groq.chat.completions.create = AsyncMock(side_effect=APITimeoutError(request=GROQ_REQUEST))
        with pytest.raises(GeneratorTimeoutError):
            await GroqLLMClient(groq).complete("prompt")

    @pytest.mark.asyncio
    async def test_status_error(self, groq: AsyncMock):
        """Groq status errors map to GeneratorHTTPError."""
        response = httpx.Response(429, request=GROQ_REQUEST)
        groq.chat.completions.create = AsyncMock(
            side_effect=APIStatusError("rate limited", response=response, body=None)
        )
        with pytest.raises(GeneratorHTTPError) as exc_info:
            await GroqLLMClient(groq).complete("prompt")
        assert exc_info.value.status_code == 429


class TestCreateLLMClient:
    def test_auto_without_key_uses_ollama(self, monkeypatch):
        """auto picks Ollama when no Groq key is set."""
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        client = create_llm_client("auto", ollama_model="llama3")
        assert isinstance(client, OllamaLLMClient)
        assert client.model == "llama3"

    def test_auto_with_key_uses_groq(self, monkeypatch):
        """auto picks Groq when GROQ_API_KEY is set."""
        monkeypatch.setenv("GROQ_API_KEY", "test-key")
        client = create_llm_client("auto")
        assert isinstance(client, GroqLLMClient)
        assert client.engine == "groq"

    def test_explicit_model_wins(self, monkeypatch):
        """An explicit model overrides the engine default."""
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        assert create_llm_client("ollama", model="custom").model == "custom"

    def test_groq_without_key(self, monkeypatch):
        """Forcing groq without a key is a UserError."""
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        with pytest.raises(UserError, match="GROQ_API_KEY"):
            create_llm_client("groq")

    def test_unknown_engine(self):
        """Unknown engine names are rejected."""
        with pytest.raises(UserError, match="Engine must be one of"):
            create_llm_client("anthropic")
