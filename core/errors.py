from enum import Enum
from typing import Any, Dict, Optional


class AIQueryError(Exception):
    """Base exception class for the aiquery project."""
    pass

class ConfigError(AIQueryError):
    """Raised when there is an error in a configuration file."""
    pass

class OperationCancelled(AIQueryError):
    """Raised when a cancellation token fires before a guarded call settles."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced by the execution engines."""
    VALIDATION_ERROR = "validation_error"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"


class AIError(AIQueryError):
    """A normalized, inspectable failure.

    ``kind`` is one of :class:`ErrorKind`; ``cause`` keeps the original
    exception (or validator diagnostic) for debugging.
    """

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, cause: Any = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = ErrorKind(kind)
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind is not ErrorKind.CONFIGURATION

    def envelope(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "cause": self.cause}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"

class AIValidationError(AIError):
    """Provider output failed schema validation."""
    kind = ErrorKind.VALIDATION_ERROR

class ProviderError(AIError):
    """The adapter raised, returned no usable data, or returned a non-success status."""
    kind = ErrorKind.PROVIDER_ERROR

class AITimeoutError(AIError):
    """The deadline elapsed before the adapter settled."""
    kind = ErrorKind.TIMEOUT

class ConfigurationError(AIError):
    """Missing adapter setup, or a non-streaming adapter used for a streaming call."""
    kind = ErrorKind.CONFIGURATION


_KIND_TO_CLASS = {
    ErrorKind.VALIDATION_ERROR: AIValidationError,
    ErrorKind.PROVIDER_ERROR: ProviderError,
    ErrorKind.TIMEOUT: AITimeoutError,
    ErrorKind.CONFIGURATION: ConfigurationError,
}


def error_for(kind: ErrorKind, message: str, cause: Any = None) -> AIError:
    """Build the AIError subclass matching ``kind``."""
    return _KIND_TO_CLASS[ErrorKind(kind)](message, cause=cause)
