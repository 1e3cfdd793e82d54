"""Error taxonomy and classification."""

from chatstream.errors.classifier import classify, error_response
from chatstream.errors.patterns import ERROR_PATTERNS, FALLBACK_MESSAGE
from chatstream.errors.types import (
    AlreadyStreaming,
    ClassifiedError,
    ErrorCategory,
    UnknownSession,
)

__all__ = [
    "classify",
    "error_response",
    "ERROR_PATTERNS",
    "FALLBACK_MESSAGE",
    "AlreadyStreaming",
    "ClassifiedError",
    "ErrorCategory",
    "UnknownSession",
]
