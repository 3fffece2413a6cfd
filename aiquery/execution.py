"""Execution engine: cache probe, bounded retries, deadlines and fallback.

One :meth:`ExecutionEngine.execute` call runs at most ``retry + 1`` provider
attempts.  Each attempt gets its own deadline token, composed with the
caller's token when one is supplied; whichever fires first aborts the
attempt.  Fresh successes are written to the session cache; fallbacks are
not.
"""
from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Optional

from core.config import QuerySettings, get_settings
from core.errors import AIError, AITimeoutError, ConfigurationError, ProviderError
from core.logging import logger
from core.monitoring import (
    ATTEMPT_DURATION_MS,
    ATTEMPT_FAILURES_TOTAL,
    CACHE_HITS_TOTAL,
    REQUESTS_TOTAL,
    TOKENS_TOTAL,
)

from .adapters.cache import SessionCache, build_fingerprint, get_session_cache
from .adapters.providers import BaseProvider, create_provider
from .cancellation import CancellationToken
from .cost import resolve_tokens
from .introspect import Classification, as_shape, classify, example
from .normalize import parse_and_validate
from .prompts import Instructions, build_instructions
from .sanitize import sanitize_context, sanitize_task
from .schema import Shape
from .types import ExecutionResult, ProviderRequest, RequestSpec

__all__ = ["PreparedRequest", "prepare", "ExecutionEngine", "execute", "query"]


@dataclass(frozen=True)
class PreparedRequest:
    """Sanitized inputs plus everything derived from the shape, computed once per call."""
    spec: RequestSpec
    task: str
    context: Any
    shape: Shape
    classification: Classification
    instructions: Instructions
    temperature: float

    @property
    def is_primitive(self) -> bool:
        return self.classification.is_primitive

    def fingerprint(self) -> str:
        return build_fingerprint(
            self.task,
            self.context,
            self.shape,
            self.temperature,
            self.spec.max_tokens,
            self.spec.provider_options,
        )

    def provider_request(self, cancel: CancellationToken) -> ProviderRequest:
        return ProviderRequest(
            task=self.task,
            schema=self.shape,
            system=self.instructions.system,
            user=self.instructions.user,
            is_primitive=self.is_primitive,
            cancel=cancel,
            context=self.context,
            temperature=self.temperature,
            max_tokens=self.spec.max_tokens,
            provider_options=dict(self.spec.provider_options or {}),
            primitive_kind=self.classification.primitive_kind,
        )


def prepare(spec: RequestSpec, settings: QuerySettings) -> PreparedRequest:
    try:
        shape = as_shape(spec.schema)
    except TypeError as e:
        raise ConfigurationError(str(e), cause=e) from e
    task = sanitize_task(spec.task)
    context = sanitize_context(spec.context)
    kind = classify(shape)
    instructions = build_instructions(task, context, example(shape), kind.is_primitive, kind.primitive_kind)
    temperature = spec.temperature if spec.temperature is not None else settings.DEFAULT_TEMPERATURE
    return PreparedRequest(
        spec=spec,
        task=task,
        context=context,
        shape=shape,
        classification=kind,
        instructions=instructions,
        temperature=float(temperature),
    )


def classify_failure(
    error: BaseException,
    deadline: CancellationToken,
    caller: Optional[CancellationToken],
    label: str,
    failure: str,
) -> AIError:
    """Map whatever ended an attempt onto the error taxonomy."""
    if caller is not None and caller.cancelled:
        return ProviderError(f"{label} cancelled", cause=caller.reason)
    if deadline.cancelled:
        return AITimeoutError(f"{label} timed out", cause=error)
    if isinstance(error, AIError):
        return error
    return ProviderError(failure, cause=error)


def settle(spec: RequestSpec, last_error: AIError, attempts: int, mode: str = "single") -> ExecutionResult:
    """Exhaustion: fallback when the caller declared one, else the last error."""
    if spec.has_fallback:
        REQUESTS_TOTAL.labels(mode=mode, outcome="fallback").inc()
        logger.warning(f"Using fallback after {attempts} attempt(s): {last_error.message}")
        return ExecutionResult(
            data=spec.resolve_fallback(),
            tokens=0,
            used_fallback=True,
            fallback_reason=last_error.message or last_error.kind.value,
        )
    REQUESTS_TOTAL.labels(mode=mode, outcome="error").inc()
    logger.error(f"Execution failed after {attempts} attempt(s): {last_error!r}")
    raise last_error


class ExecutionEngine:
    """Runs single-shot requests against one provider."""

    def __init__(
        self,
        provider: BaseProvider,
        cache: Optional[SessionCache] = None,
        settings: Optional[QuerySettings] = None,
    ):
        if provider is None:
            raise ConfigurationError("Provider is required")
        self.provider = provider
        self.cache = cache if cache is not None else get_session_cache()
        self.settings = settings or get_settings().app

    async def execute(self, spec: RequestSpec, cancel: Optional[CancellationToken] = None) -> ExecutionResult:
        prepared = prepare(spec, self.settings)

        fingerprint = None
        if spec.cache_enabled:
            fingerprint = prepared.fingerprint()
            entry = self.cache.get(fingerprint)
            if entry is not None:
                logger.debug(f"Session cache hit {fingerprint[:12]}")
                CACHE_HITS_TOTAL.inc()
                return entry.result

        timeout = spec.timeout if spec.timeout is not None else self.settings.DEFAULT_TIMEOUT
        retry = max(0, spec.retry if spec.retry is not None else self.settings.DEFAULT_RETRY)

        last_error: Optional[AIError] = None
        attempts = 0
        for attempt in range(retry + 1):
            attempts = attempt + 1
            try:
                result = await self._attempt(prepared, timeout, cancel)
            except AIError as e:
                last_error = e
                ATTEMPT_FAILURES_TOTAL.labels(mode="single", kind=e.kind.value).inc()
                logger.warning(f"Attempt {attempts}/{retry + 1} failed ({e.kind.value}): {e.message}")
                if not e.retryable or (cancel is not None and cancel.cancelled):
                    break
                continue

            REQUESTS_TOTAL.labels(mode="single", outcome="success").inc()
            TOKENS_TOTAL.labels(mode="single").inc(result.tokens)
            if fingerprint is not None:
                self.cache.set(fingerprint, result)
            return result

        return settle(spec, last_error, attempts)

    async def _attempt(
        self,
        prepared: PreparedRequest,
        timeout: float,
        cancel: Optional[CancellationToken],
    ) -> ExecutionResult:
        deadline = CancellationToken()
        combined = CancellationToken.any_of(cancel, deadline)
        handle = deadline.cancel_after(timeout, "timeout")
        started = time.monotonic()
        try:
            raw = await combined.guard(self.provider.execute(prepared.provider_request(combined)))
            data = parse_and_validate(raw.data, prepared.shape, prepared.is_primitive)
            tokens = resolve_tokens(raw.tokens, prepared.task, prepared.context)
            return ExecutionResult(data=data, tokens=tokens)
        except Exception as e:
            error = classify_failure(e, deadline, cancel, "AI call", "Provider execution failed")
            if error is e:
                raise
            raise error from e
        finally:
            ATTEMPT_DURATION_MS.labels(mode="single").observe((time.monotonic() - started) * 1000)
            handle.cancel()
            combined.detach()


async def execute(
    spec: RequestSpec,
    provider: Optional[BaseProvider] = None,
    cancel: Optional[CancellationToken] = None,
    cache: Optional[SessionCache] = None,
) -> ExecutionResult:
    """One-off execution; the configured default provider (mock) when none is given."""
    engine = ExecutionEngine(provider or create_provider(), cache=cache)
    return await engine.execute(spec, cancel=cancel)


async def query(
    task: str,
    schema: Any,
    *,
    provider: Optional[BaseProvider] = None,
    cancel: Optional[CancellationToken] = None,
    **options: Any,
) -> ExecutionResult:
    """Keyword form of :func:`execute`: ``await query("Summarize", s.string(), context=doc)``."""
    return await execute(RequestSpec(task=task, schema=schema, **options), provider=provider, cancel=cancel)
