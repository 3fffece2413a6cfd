"""Tests for provider adapters and the provider factory."""
import textwrap
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from aiquery import schema as s
from aiquery.adapters import MockProvider, create_provider
from aiquery.adapters.mock import build_mock_data
from aiquery.adapters.providers import DONE, ChatCompletionsProvider, parse_sse_line, stream_delta
from aiquery.cancellation import CancellationToken
from aiquery.execution import ExecutionEngine
from aiquery.introspect import validate
from aiquery.prompts import compile_request
from aiquery.types import ProviderRequest, RequestSpec
from core.errors import ConfigurationError, ProviderError


def make_request(shape=None, **overrides):
    shape = shape or s.obj(score=s.number())
    instructions = compile_request("Rate it", None, shape)
    params = dict(
        task="Rate it",
        schema=shape,
        system=instructions.system,
        user=instructions.user,
        is_primitive=shape.kind in ("string", "number", "boolean"),
        cancel=CancellationToken(),
    )
    params.update(overrides)
    return ProviderRequest(**params)


# Fixtures
@pytest.fixture
def mock_httpx_client():
    """Mock httpx.AsyncClient for API calls."""
    with patch("httpx.AsyncClient") as mock_client:
        mock_response = Mock()
        mock_response.json.return_value = {
            "choices": [{"message": {"content": '{"score": 4}'}}],
            "usage": {"total_tokens": 33},
        }
        mock_response.raise_for_status = Mock()

        mock_instance = AsyncMock()
        mock_instance.post.return_value = mock_response
        mock_instance.__aenter__.return_value = mock_instance
        mock_instance.__aexit__.return_value = None
        mock_client.return_value = mock_instance

        yield mock_instance


class FakeStream:
    """Stands in for the ``client.stream(...)`` context manager."""

    def __init__(self, lines, status_code=200):
        self.lines = lines
        self.status_code = status_code
        self.text = "upstream error"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def aread(self):
        return self.text.encode()

    async def aiter_lines(self):
        for line in self.lines:
            yield line


# --- Chat completions: single shot ---

@pytest.mark.asyncio
async def test_chat_completion_payload_and_usage(mock_httpx_client):
    provider = ChatCompletionsProvider(api_key="sk-test", model="gpt-test")
    request = make_request(max_tokens=64, provider_options={"seed": 3})

    result = await provider.execute(request)

    assert result.data == '{"score": 4}'
    assert result.tokens == 33
    url = mock_httpx_client.post.call_args.args[0]
    kwargs = mock_httpx_client.post.call_args.kwargs
    assert url == "https://api.openai.com/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    payload = kwargs["json"]
    assert payload["model"] == "gpt-test"
    assert payload["max_tokens"] == 64
    assert payload["seed"] == 3
    assert payload["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_primitive_requests_skip_json_mode(mock_httpx_client):
    provider = ChatCompletionsProvider(api_key="sk-test")
    await provider.execute(make_request(shape=s.string()))

    payload = mock_httpx_client.post.call_args.kwargs["json"]
    assert "response_format" not in payload
    assert "max_tokens" not in payload


@pytest.mark.asyncio
async def test_http_status_error_becomes_provider_error(mock_httpx_client):
    response = Mock(status_code=503)
    error = httpx.HTTPStatusError("unavailable", request=Mock(), response=response)
    mock_httpx_client.post.return_value.raise_for_status.side_effect = error
    provider = ChatCompletionsProvider(api_key="sk-test")

    with pytest.raises(ProviderError) as exc_info:
        await provider.execute(make_request())

    assert "503" in exc_info.value.message
    assert exc_info.value.cause is error


@pytest.mark.asyncio
async def test_transport_error_becomes_provider_error(mock_httpx_client):
    mock_httpx_client.post.side_effect = httpx.ConnectError("refused")
    provider = ChatCompletionsProvider(api_key="sk-test")

    with pytest.raises(ProviderError):
        await provider.execute(make_request())


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error(mock_httpx_client):
    provider = ChatCompletionsProvider(api_key=None)

    with pytest.raises(ConfigurationError):
        await provider.execute(make_request())
    mock_httpx_client.post.assert_not_called()


@pytest.mark.asyncio
async def test_engine_validates_chat_completion_output(mock_httpx_client):
    engine = ExecutionEngine(ChatCompletionsProvider(api_key="sk-test"))
    result = await engine.execute(RequestSpec(task="Rate it", schema=s.obj(score=s.number())))

    assert result.data == {"score": 4}
    assert result.tokens == 33


# --- Chat completions: streaming ---

def test_parse_sse_line():
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("data: [DONE]") is DONE
    assert parse_sse_line('data: {"a": 1}') == {"a": 1}
    assert parse_sse_line("data: {broken") is None


def test_stream_delta_extracts_text_and_usage():
    assert stream_delta({"choices": [{"delta": {"content": "Hi"}}]}).text == "Hi"
    assert stream_delta({"choices": [], "usage": {"total_tokens": 9}}).tokens == 9
    assert stream_delta({"choices": [{"delta": {"role": "assistant"}}]}) is None


@pytest.mark.asyncio
async def test_stream_yields_deltas_until_done(mock_httpx_client):
    lines = textwrap.dedent("""\
        data: {"choices":[{"delta":{"role":"assistant"}}]}

        data: {"choices":[{"delta":{"content":"Hel"}}]}

        data: {"choices":[{"delta":{"content":"lo"}}]}

        data: {"choices":[],"usage":{"total_tokens":12}}

        data: [DONE]

        data: {"choices":[{"delta":{"content":"ignored"}}]}
    """).splitlines()
    mock_httpx_client.stream = Mock(return_value=FakeStream(lines))
    provider = ChatCompletionsProvider(name="groq", api_key="gsk", base_url="https://api.groq.com/openai/v1")

    deltas = [d async for d in provider.execute_stream(make_request(shape=s.string()))]

    assert [d.text for d in deltas] == ["Hel", "lo", ""]
    assert deltas[-1].tokens == 12
    method, url = mock_httpx_client.stream.call_args.args
    payload = mock_httpx_client.stream.call_args.kwargs["json"]
    assert method == "POST"
    assert url == "https://api.groq.com/openai/v1/chat/completions"
    assert payload["stream"] is True
    assert payload["stream_options"] == {"include_usage": True}


@pytest.mark.asyncio
async def test_stream_error_status(mock_httpx_client):
    mock_httpx_client.stream = Mock(return_value=FakeStream([], status_code=429))
    provider = ChatCompletionsProvider(api_key="sk-test")

    with pytest.raises(ProviderError) as exc_info:
        [d async for d in provider.execute_stream(make_request())]

    assert "429" in exc_info.value.message


# --- Mock provider ---

def test_mock_data_reacts_to_context():
    shape = s.obj(
        severity=s.enum(["info", "warning", "error", "critical"]),
        retryable=s.boolean(),
        method=s.enum(["GET", "POST", "PUT", "DELETE"]),
    )
    data = build_mock_data(shape, "Explain this error", {"code": "RATE_LIMIT_EXCEEDED", "action": "create order"})
    assert data == {"severity": "warning", "retryable": True, "method": "POST"}


def test_mock_data_respects_constraints():
    shape = s.obj(
        confidence=s.integer(ge=0, le=100),
        ratio=s.number(ge=0, le=1),
        tags=s.array(s.string(max_length=5), min_items=3),
    )
    data = build_mock_data(shape, "t")
    assert data["confidence"] == 85
    assert data["ratio"] == 0.5
    assert len(data["tags"]) == 3
    assert all(len(tag) <= 5 for tag in data["tags"])


def test_mock_integers_stay_inside_exclusive_bounds():
    shape = s.obj(
        level=s.integer(gt=5, le=6),
        step=s.integer(ge=1, lt=2),
        urgency=s.integer(ge=4, le=5),
    )
    data = build_mock_data(shape, "t")
    assert data == {"level": 6, "step": 1, "urgency": 4}
    assert validate(shape, data) == data


@pytest.mark.asyncio
async def test_mock_provider_reports_heuristic_tokens():
    result = await MockProvider().execute(make_request(shape=s.string()))
    assert result.tokens == 2 + 8


# --- Factory ---

def test_create_provider_defaults_to_mock():
    assert isinstance(create_provider(), MockProvider)


def test_create_builtin_providers(monkeypatch):
    monkeypatch.setenv("AIQUERY_GROQ_API_KEY", "gsk-env")

    groq = create_provider("groq")
    local = create_provider("local", model="mistral")

    assert groq.api_key == "gsk-env"
    assert groq.model == "llama-3.1-8b-instant"
    assert groq.base_url == "https://api.groq.com/openai/v1"
    assert local.require_api_key is False
    assert local.model == "mistral"
    assert local.base_url == "http://localhost:11434/v1"


def test_create_provider_from_yaml_preset(tmp_path, monkeypatch):
    config = tmp_path / "providers.yml"
    config.write_text(textwrap.dedent("""
        providers:
          together:
            base_url: https://api.together.xyz/v1
            model: meta-llama/Llama-3-8b-chat-hf
            api_key_env: TOGETHER_KEY
            headers:
              X-Team: research
            timeout: 20
    """), encoding="utf-8")
    monkeypatch.setenv("AIQUERY_CONFIG_PATH", str(config))
    monkeypatch.setenv("TOGETHER_KEY", "tk-1")

    provider = create_provider("together")

    assert provider.name == "together"
    assert provider.api_key == "tk-1"
    assert provider.model == "meta-llama/Llama-3-8b-chat-hf"
    assert provider.extra_headers == {"X-Team": "research"}
    assert provider.timeout == 20


def test_unknown_provider_is_configuration_error():
    with pytest.raises(ConfigurationError):
        create_provider("nope")
