"""Structured, validated output from generative text models.

Declare a task, optional context and a result shape; get back validated data
(or a typed error / fallback) with token accounting and session caching.
"""

from __future__ import annotations

from core.errors import (
    AIError,
    AITimeoutError,
    AIValidationError,
    ConfigurationError,
    ErrorKind,
    ProviderError,
)
from core.monitoring import start_metrics_server

from . import schema
from .adapters import (
    BaseProvider,
    ChatCompletionsProvider,
    MockProvider,
    SessionCache,
    StreamingProvider,
    clear_session_cache,
    create_provider,
    get_session_cache,
)
from .cancellation import CancellationToken
from .execution import ExecutionEngine, execute, query
from .streaming import StreamingExecutionEngine, execute_stream
from .types import NO_FALLBACK, ExecutionResult, RequestSpec, StreamChunk

__version__ = "0.1.0"

__all__ = [
    "schema",
    "RequestSpec",
    "ExecutionResult",
    "StreamChunk",
    "NO_FALLBACK",
    "CancellationToken",
    "ExecutionEngine",
    "StreamingExecutionEngine",
    "execute",
    "execute_stream",
    "query",
    "start_metrics_server",
    "BaseProvider",
    "StreamingProvider",
    "ChatCompletionsProvider",
    "MockProvider",
    "create_provider",
    "SessionCache",
    "get_session_cache",
    "clear_session_cache",
    "AIError",
    "AIValidationError",
    "ProviderError",
    "AITimeoutError",
    "ConfigurationError",
    "ErrorKind",
]
