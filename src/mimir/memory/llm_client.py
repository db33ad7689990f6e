"""LLM client implementations for fact extraction.

The extractor only needs ``complete(prompt) -> str``. Each client maps its
transport failures onto the same error types so callers can tell an
unreachable service from a bad status or an unusable payload.
"""

import logging
import os
from typing import Any, Protocol

import httpx
from groq import APIConnectionError, APIStatusError, APITimeoutError, AsyncGroq

from ..errors import (
    GeneratorHTTPError,
    GeneratorPayloadError,
    GeneratorTimeoutError,
    GeneratorUnreachableError,
    UserError,
)

logger = logging.getLogger(__name__)

ENGINES = ("auto", "ollama", "groq")

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "qwen3:8b"
DEFAULT_GROQ_MODEL = "llama-3.1-70b-versatile"
DEFAULT_TIMEOUT = 120.0


class LLMClient(Protocol):
    """What the extractor needs from a text-generation service."""

    engine: str
    model: str

    async def complete(self, prompt: str) -> str: ...


class OllamaLLMClient:
    """Calls a local or remote Ollama server's ``/api/generate`` endpoint."""

    engine = "ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Ollama client.

        Args:
            base_url: Server URL, without the API path.
            model: Model name passed in each request.
            timeout: Seconds before the request is abandoned.
            client: Optional pre-built httpx client (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    async def complete(self, prompt: str) -> str:
        """Generate a completion and return its ``response`` text."""
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0},
        }

        if self._client is not None:
            response = await self._post(self._client, payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._post(client, payload)

        if not response.is_success:
            raise GeneratorHTTPError(response.status_code, response.text, engine=self.engine)

        try:
            data = response.json()
        except ValueError:
            raise GeneratorPayloadError("Ollama returned a non-JSON response") from None

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise GeneratorPayloadError("Ollama returned an empty response")
        return text

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/api/generate"
        try:
            return await client.post(url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException:
            raise GeneratorTimeoutError(
                f"Ollama at {self.base_url} did not respond within {self.timeout:g}s"
            ) from None
        except httpx.RequestError as e:
            raise GeneratorUnreachableError(
                f"Failed to reach Ollama at {self.base_url}. Is Ollama running? ({e})"
            ) from None


class GroqLLMClient:
    """LLMClient implementation that wraps AsyncGroq."""

    engine = "groq"

    def __init__(
        self,
        client: AsyncGroq,
        model: str = DEFAULT_GROQ_MODEL,
    ) -> None:
        """Initialize the Groq LLM client wrapper.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
        """
        self._client = client
        self.model = model

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
            )
        except APITimeoutError:
            raise GeneratorTimeoutError("Groq request timed out") from None
        except APIConnectionError as e:
            raise GeneratorUnreachableError(f"Failed to reach Groq: {e}") from None
        except APIStatusError as e:
            raise GeneratorHTTPError(e.status_code, e.message, engine=self.engine) from None

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise GeneratorPayloadError("Groq returned an empty response")
        return text


def create_llm_client(
    engine: str = "auto",
    model: str | None = None,
    ollama_url: str = DEFAULT_OLLAMA_URL,
    ollama_model: str = DEFAULT_OLLAMA_MODEL,
    groq_model: str = DEFAULT_GROQ_MODEL,
    timeout: float = DEFAULT_TIMEOUT,
) -> LLMClient:
    """Build the client for an engine name.

    ``auto`` uses Groq when ``GROQ_API_KEY`` is set and Ollama otherwise.

    Raises:
        UserError: For unknown engines, or groq without an API key.
    """
    if engine not in ENGINES:
        raise UserError(f"Engine must be one of: {', '.join(ENGINES)}")

    api_key = os.getenv("GROQ_API_KEY")
    if engine == "auto":
        engine = "groq" if api_key else "ollama"
        logger.debug("Engine auto-selected: %s", engine)

    if engine == "groq":
        if not api_key:
            raise UserError("GROQ_API_KEY environment variable not set")
        return GroqLLMClient(
            AsyncGroq(api_key=api_key, timeout=timeout),
            model=model or groq_model,
        )

    return OllamaLLMClient(base_url=ollama_url, model=model or ollama_model, timeout=timeout)
