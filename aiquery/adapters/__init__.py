"""Adapters layer: session cache and provider abstraction.

Engines only see :class:`BaseProvider` / :class:`StreamingProvider`; concrete
adapters are built with :func:`create_provider`.
"""

from __future__ import annotations

from .cache import SessionCache, build_fingerprint, clear_session_cache, get_session_cache
from .mock import MockProvider
from .providers import BaseProvider, ChatCompletionsProvider, StreamingProvider, create_provider

__all__ = [
    "SessionCache",
    "build_fingerprint",
    "clear_session_cache",
    "get_session_cache",
    "BaseProvider",
    "StreamingProvider",
    "ChatCompletionsProvider",
    "MockProvider",
    "create_provider",
]
