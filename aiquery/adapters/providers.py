"""Provider adapters for OpenAI-compatible chat completion services."""
import json
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from core.config import get_settings
from core.errors import ConfigurationError, ProviderError
from core.logging import logger

from ..types import ProviderRequest, ProviderResult, StreamDelta


class MessageRole(str, Enum):
    """Message roles for chat completion."""
    SYSTEM = "system"
    USER = "user"


class BaseProvider(ABC):
    """Base class for provider adapters.

    ``execute`` returns raw output (text or an already-structured object);
    normalization and validation happen in the engines.
    """

    name: str = "base"
    supports_streaming: bool = False

    @abstractmethod
    async def execute(self, request: ProviderRequest) -> ProviderResult:
        """Run one attempt for ``request``."""

    def _convert_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        """Compiled instructions in chat-message format."""
        return [
            {"role": MessageRole.SYSTEM.value, "content": request.system},
            {"role": MessageRole.USER.value, "content": request.user},
        ]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class StreamingProvider(BaseProvider):
    """A provider that can also yield incremental text deltas."""

    supports_streaming = True

    @abstractmethod
    def execute_stream(self, request: ProviderRequest) -> AsyncIterator[StreamDelta]:
        """Yield text deltas; usage, when known, arrives in a final delta."""


class ChatCompletionsProvider(StreamingProvider):
    """OpenAI-compatible ``/chat/completions`` provider (OpenAI, Groq, Ollama, ...)."""

    def __init__(
        self,
        name: str = "openai",
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 60.0,
        require_api_key: bool = True,
    ):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.extra_headers = dict(headers or {})
        self.timeout = timeout
        self.require_api_key = require_api_key

    @property
    def label(self) -> str:
        return self.name.capitalize()

    def _headers(self) -> Dict[str, str]:
        if self.require_api_key and not self.api_key:
            raise ConfigurationError(f"{self.label} provider requires an API key")
        headers = {"Content-Type": "application/json", **self.extra_headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, request: ProviderRequest, stream: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(request),
            "temperature": request.temperature,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        # Primitives come back as raw text, so JSON mode only for structured targets
        if not request.is_primitive:
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        payload.update(request.provider_options or {})
        return payload

    @staticmethod
    def _message_text(content: Any) -> str:
        if isinstance(content, list):
            return "".join(part if isinstance(part, str) else part.get("text") or "" for part in content)
        return content or ""

    async def execute(self, request: ProviderRequest) -> ProviderResult:
        headers = self._headers()
        payload = self._payload(request)
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"{self.label} API error: {e.response.status_code}")
                raise ProviderError(
                    f"{self.label} request failed with status {e.response.status_code}", cause=e
                ) from e
            except httpx.HTTPError as e:
                logger.error(f"{self.label} transport error: {e}")
                raise ProviderError(f"{self.label} request failed: {e}", cause=e) from e
            except ValueError as e:
                raise ProviderError(f"{self.label} returned a non-JSON body", cause=e) from e

        choices = data.get("choices") or [{}]
        content = self._message_text((choices[0].get("message") or {}).get("content"))
        usage = data.get("usage") or {}
        return ProviderResult(data=content, tokens=usage.get("total_tokens"))

    async def execute_stream(self, request: ProviderRequest) -> AsyncIterator[StreamDelta]:
        headers = self._headers()
        payload = self._payload(request, stream=True)
        async with httpx.AsyncClient() as client:
            try:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise ProviderError(
                            f"{self.label} stream failed with status {response.status_code}",
                            cause=response.text,
                        )
                    async for line in response.aiter_lines():
                        event = parse_sse_line(line)
                        if event is None:
                            continue
                        if event is DONE:
                            break
                        delta = stream_delta(event)
                        if delta is not None:
                            yield delta
            except httpx.HTTPError as e:
                logger.error(f"{self.label} stream transport error: {e}")
                raise ProviderError(f"{self.label} stream failed: {e}", cause=e) from e


# --- Server-sent events ---

DONE = object()


def parse_sse_line(line: str) -> Any:
    """Decode one SSE line: a JSON event, ``DONE``, or ``None`` to skip."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    body = line[len("data:"):].strip()
    if not body:
        return None
    if body == "[DONE]":
        return DONE
    try:
        return json.loads(body)
    except ValueError:
        logger.debug(f"Skipping malformed stream event: {body[:80]}")
        return None


def stream_delta(event: Dict[str, Any]) -> Optional[StreamDelta]:
    """Text delta and/or usage carried by a chat-completion chunk."""
    text = ""
    for choice in event.get("choices") or []:
        text += ChatCompletionsProvider._message_text((choice.get("delta") or {}).get("content"))
    usage = event.get("usage") or {}
    tokens = usage.get("total_tokens")
    if not text and tokens is None:
        return None
    return StreamDelta(text=text, tokens=tokens)


# --- Factory ---

_DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "groq": "llama-3.1-8b-instant",
    "local": "llama3",
}


def _builtin_options(name: str) -> Optional[Dict[str, Any]]:
    app = get_settings().app
    if name == "openai":
        return {"api_key": app.OPENAI_API_KEY, "base_url": app.OPENAI_BASE_URL}
    if name == "groq":
        return {"api_key": app.GROQ_API_KEY, "base_url": app.GROQ_BASE_URL}
    if name == "local":
        return {"api_key": None, "base_url": app.LOCAL_BASE_URL, "require_api_key": False}
    return None


def create_provider(name: Optional[str] = None, **kwargs) -> BaseProvider:
    """Factory function to create providers.

    ``mock``, ``openai``, ``groq`` and ``local`` are built in; any other
    name must be declared as a preset in the YAML config file.  Keyword
    arguments override settings and presets.
    """
    settings = get_settings()
    name = (name or settings.app.DEFAULT_PROVIDER).lower()

    if name == "mock":
        from .mock import MockProvider
        return MockProvider(**kwargs)

    options = _builtin_options(name)
    preset = settings.preset(name)
    if options is None and preset is None:
        raise ConfigurationError(f"Unknown provider: {name}")
    options = dict(options or {"require_api_key": False})
    options.setdefault("model", _DEFAULT_MODELS.get(name, "default"))

    if preset is not None:
        for field in ("base_url", "model"):
            value = getattr(preset, field)
            if value:
                options[field] = value
        options["headers"] = preset.headers
        options["timeout"] = preset.timeout
        if preset.api_key_env:
            options["api_key"] = os.environ.get(preset.api_key_env)
            options["require_api_key"] = True

    options.update(kwargs)
    if not options.get("base_url"):
        raise ConfigurationError(f"Provider '{name}' has no base_url")
    logger.debug(f"Created provider {name} (model={options['model']})")
    return ChatCompletionsProvider(name=name, **options)
