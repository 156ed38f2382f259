"""Tagged error types shared by every layer of the pipeline.

A single exception class carries an ``ErrorKind`` tag so that callers can
classify failures with ``match`` instead of long ``isinstance`` chains.
"""

import enum
import time
from typing import Any, Dict, Optional


class ErrorKind(enum.Enum):
    """Classification of pipeline failures."""
    VALIDATION = "validation"   # Bad input to a core API
    OPERATIONAL = "operational" # Transient: network, rate limit, timeout
    FATAL = "fatal"             # Auth errors, programming errors
    NAVIGATION = "navigation"   # Chain traversal gave up
    NOT_FOUND = "not_found"     # End of a chapter chain (HTTP 404)
    PROCESSING = "processing"   # Summary raised once retries are exhausted


class PipelineError(Exception):
    """Exception carrying an error kind and structured context."""

    def __init__(self, kind: ErrorKind, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = time.time()

    @property
    def is_recoverable(self) -> bool:
        """Whether retrying the failed operation may succeed."""
        match self.kind:
            case ErrorKind.OPERATIONAL:
                return True
            case _:
                return False

    @property
    def url(self) -> Optional[str]:
        return self.context.get("url")

    @property
    def step(self) -> Optional[str]:
        return self.context.get("step")

    def to_dict(self) -> Dict[str, Any]:
        """Returns a log-safe representation of the error."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"PipelineError(kind={self.kind.value!r}, message={self.message!r})"


# --- Factory helpers ---

def validation_error(message: str, field: Optional[str] = None, value: Any = None) -> PipelineError:
    context: Dict[str, Any] = {}
    if field is not None:
        context["field"] = field
        context["value"] = value
    return PipelineError(ErrorKind.VALIDATION, message, context)


def operational_error(message: str, **context: Any) -> PipelineError:
    return PipelineError(ErrorKind.OPERATIONAL, message, context)


def fatal_error(message: str, **context: Any) -> PipelineError:
    return PipelineError(ErrorKind.FATAL, message, context)


def not_found_error(message: str, url: Optional[str] = None) -> PipelineError:
    return PipelineError(ErrorKind.NOT_FOUND, message, {"url": url} if url else {})


def processing_error(message: str, **context: Any) -> PipelineError:
    return PipelineError(ErrorKind.PROCESSING, message, context)


def navigation_error(message: str, url: Optional[str], step: str) -> PipelineError:
    return PipelineError(ErrorKind.NAVIGATION, message, {"url": url, "step": step})


def is_kind(error: BaseException, kind: ErrorKind) -> bool:
    """True if ``error`` is a PipelineError of the given kind."""
    return isinstance(error, PipelineError) and error.kind is kind
