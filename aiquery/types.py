"""Data model shared by the engines and provider adapters."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Literal, Mapping, Optional, TypeVar, Union

from .cancellation import CancellationToken
from .schema import Shape

__all__ = [
    "NO_FALLBACK",
    "CachePolicy",
    "RequestSpec",
    "ExecutionResult",
    "StreamChunk",
    "StreamPhase",
    "StreamState",
    "ProviderRequest",
    "ProviderResult",
    "StreamDelta",
]

T = TypeVar("T")

CachePolicy = Union[Literal["session"], None, bool]


class _NoFallback:
    def __repr__(self) -> str:
        return "NO_FALLBACK"

    def __bool__(self) -> bool:
        return False


NO_FALLBACK: Any = _NoFallback()


@dataclass(frozen=True)
class RequestSpec:
    """One logical call.

    ``schema`` may be a shape, a pydantic model class or a JSON Schema mapping;
    ``fallback`` may be a value or a zero-argument callable.  ``timeout``,
    ``retry`` and ``temperature`` left as ``None`` take the configured defaults.
    """
    task: str
    schema: Any
    context: Any = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    cache: CachePolicy = "session"
    timeout: Optional[float] = None
    retry: Optional[int] = None
    fallback: Any = NO_FALLBACK
    provider_options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def cache_enabled(self) -> bool:
        return self.cache == "session" or self.cache is True

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not NO_FALLBACK

    def resolve_fallback(self) -> Any:
        return self.fallback() if callable(self.fallback) else self.fallback


@dataclass(frozen=True)
class ExecutionResult(Generic[T]):
    data: T
    tokens: int
    from_cache: bool = False
    used_fallback: bool = False
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class StreamChunk:
    text: str
    delta: str
    done: bool


class StreamPhase(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"
    ABORTED = "aborted"


@dataclass
class StreamState:
    """Transient per-stream state owned by the streaming engine."""
    cancel: CancellationToken
    text: str = ""
    delta: str = ""
    done: bool = False
    phase: StreamPhase = StreamPhase.IDLE

    def append(self, delta: str) -> StreamChunk:
        self.phase = StreamPhase.STREAMING
        self.delta = delta
        self.text += delta
        return StreamChunk(text=self.text, delta=delta, done=False)

    def finish(self) -> StreamChunk:
        self.phase = StreamPhase.DONE
        self.delta = ""
        self.done = True
        return StreamChunk(text=self.text, delta="", done=True)


@dataclass(frozen=True)
class ProviderRequest:
    """Everything an adapter needs for one attempt."""
    task: str
    schema: Shape
    system: str
    user: str
    is_primitive: bool
    cancel: CancellationToken
    context: Any = None
    temperature: float = 0.0
    max_tokens: Optional[int] = None
    provider_options: Mapping[str, Any] = field(default_factory=dict)
    primitive_kind: Optional[str] = None


@dataclass(frozen=True)
class ProviderResult:
    """Raw adapter output: text or an already-structured object."""
    data: Any
    tokens: Optional[int] = None


@dataclass(frozen=True)
class StreamDelta:
    """One streaming event: a text delta, and/or usage once the stream ends."""
    text: str = ""
    tokens: Optional[int] = None


