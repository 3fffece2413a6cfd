"""Streaming execution engine.

Consumes a provider's stream of text deltas, reports the accumulated text to
``on_chunk`` as it grows and validates the final text with the same
normalizer as the single-shot path.  Streaming calls never read or write the
session cache.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Awaitable, Callable, Optional, Union

from core.config import QuerySettings, get_settings
from core.errors import AIError, ConfigurationError
from core.logging import logger
from core.monitoring import ATTEMPT_DURATION_MS, ATTEMPT_FAILURES_TOTAL, REQUESTS_TOTAL, TOKENS_TOTAL

from .adapters.providers import BaseProvider, StreamingProvider, create_provider
from .cancellation import CancellationToken
from .cost import resolve_tokens
from .execution import PreparedRequest, classify_failure, prepare, settle
from .normalize import parse_and_validate
from .types import ExecutionResult, RequestSpec, StreamChunk, StreamPhase, StreamState

__all__ = ["ChunkCallback", "StreamingExecutionEngine", "execute_stream"]

ChunkCallback = Callable[[StreamChunk], Union[None, Awaitable[None]]]


async def _emit(on_chunk: ChunkCallback, chunk: StreamChunk) -> None:
    outcome = on_chunk(chunk)
    if inspect.isawaitable(outcome):
        await outcome


class StreamingExecutionEngine:
    """Runs streaming requests against one streaming-capable provider."""

    def __init__(self, provider: BaseProvider, settings: Optional[QuerySettings] = None):
        if provider is None:
            raise ConfigurationError("Streaming provider is required")
        self.provider = provider
        self.streaming: Optional[StreamingProvider] = (
            provider if isinstance(provider, StreamingProvider) and provider.supports_streaming else None
        )
        self.settings = settings or get_settings().app

    async def execute_stream(
        self,
        spec: RequestSpec,
        on_chunk: ChunkCallback,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        if self.streaming is None:
            raise ConfigurationError(f'Provider "{self.provider.name}" does not support streaming')

        prepared = prepare(spec, self.settings)
        timeout = spec.timeout if spec.timeout is not None else self.settings.STREAM_TIMEOUT
        retry = max(0, spec.retry if spec.retry is not None else self.settings.DEFAULT_RETRY)

        last_error: Optional[AIError] = None
        attempts = 0
        for attempt in range(retry + 1):
            attempts = attempt + 1
            try:
                result = await self._attempt(prepared, on_chunk, timeout, cancel)
            except AIError as e:
                last_error = e
                ATTEMPT_FAILURES_TOTAL.labels(mode="stream", kind=e.kind.value).inc()
                logger.warning(f"Stream attempt {attempts}/{retry + 1} failed ({e.kind.value}): {e.message}")
                # Caller aborts are final.
                if not e.retryable or (cancel is not None and cancel.cancelled):
                    break
                if attempt < retry:
                    await asyncio.sleep(self.settings.STREAM_RETRY_DELAY)
                continue

            REQUESTS_TOTAL.labels(mode="stream", outcome="success").inc()
            TOKENS_TOTAL.labels(mode="stream").inc(result.tokens)
            return result

        return settle(spec, last_error, attempts, mode="stream")

    async def _attempt(
        self,
        prepared: PreparedRequest,
        on_chunk: ChunkCallback,
        timeout: float,
        cancel: Optional[CancellationToken],
    ) -> ExecutionResult:
        deadline = CancellationToken()
        combined = CancellationToken.any_of(cancel, deadline)
        handle = deadline.cancel_after(timeout, "timeout")
        state = StreamState(cancel=combined)
        started = time.monotonic()
        try:
            reported = await combined.guard(self._consume(prepared, state, on_chunk))
            data = parse_and_validate(state.text, prepared.shape, prepared.is_primitive, source="Stream")
            tokens = resolve_tokens(reported, prepared.task, prepared.context)
            return ExecutionResult(data=data, tokens=tokens)
        except Exception as e:
            state.phase = StreamPhase.ABORTED if combined.cancelled else StreamPhase.ERRORED
            error = classify_failure(e, deadline, cancel, "Stream", "Stream execution failed")
            if error is e:
                raise
            raise error from e
        finally:
            ATTEMPT_DURATION_MS.labels(mode="stream").observe((time.monotonic() - started) * 1000)
            handle.cancel()
            combined.detach()

    async def _consume(self, prepared: PreparedRequest, state: StreamState, on_chunk: ChunkCallback) -> Optional[int]:
        """Drain the provider stream; returns the usage it reported, if any."""
        tokens: Optional[int] = None
        request = prepared.provider_request(state.cancel)
        async for delta in self.streaming.execute_stream(request):
            if delta.tokens is not None:
                tokens = delta.tokens
            if delta.text:
                await _emit(on_chunk, state.append(delta.text))
        await _emit(on_chunk, state.finish())
        return tokens


async def execute_stream(
    spec: RequestSpec,
    on_chunk: ChunkCallback,
    provider: Optional[BaseProvider] = None,
    cancel: Optional[CancellationToken] = None,
) -> ExecutionResult:
    """One-off streaming execution; the configured default provider when none is given."""
    engine = StreamingExecutionEngine(provider or create_provider())
    return await engine.execute_stream(spec, on_chunk, cancel=cancel)
