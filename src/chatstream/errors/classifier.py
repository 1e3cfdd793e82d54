"""Classify arbitrary failures into the error taxonomy.

Accepts exceptions (including litellm and httpx-style errors that carry a
status code or a response), plain strings, and dict payloads received from
the network layer.
"""

from __future__ import annotations

import json
from typing import Any

from chatstream.errors.patterns import ERROR_PATTERNS, FALLBACK_MESSAGE
from chatstream.errors.types import ClassifiedError, ErrorCategory
from chatstream.logging import get_logger

log = get_logger("errors")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseException):
        return str(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, dict):
        return raw.get(name)
    return getattr(raw, name, None)


def _message(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, BaseException):
        return str(raw) or type(raw).__name__
    message = _field(raw, "message") or _field(raw, "error")
    if message is not None:
        return _text(message)
    return _text(raw)


def _search_text(raw: Any, message: str) -> str:
    parts = [message]

    if isinstance(raw, BaseException):
        parts.append(type(raw).__name__)
        cause = raw.__cause__ or raw.__context__
        if cause is not None:
            parts.append(_message(cause))
            parts.append(type(cause).__name__)

    if not isinstance(raw, str):
        cause = _field(raw, "cause")
        if cause is not None:
            parts.append(_message(cause))
            parts.append(_text(_field(cause, "data")))
        parts.append(_text(_field(raw, "data")))
        parts.append(_text(_field(raw, "code")))
        parts.append(_text(_field(raw, "errno")))

    return " ".join(p for p in parts if p)


def _status_code(raw: Any) -> int | None:
    if isinstance(raw, str):
        return None
    for name in ("status", "status_code", "statusCode"):
        value = _field(raw, name)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = _field(raw, "response")
    if response is not None:
        for name in ("status", "status_code"):
            value = _field(response, name)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def classify(raw: Any) -> ClassifiedError:
    """Map a raw error onto a ClassifiedError.

    Patterns are tried in order against the message, exception type name,
    cause, ``data`` and ``code``. When none match, the status code decides
    (401/403 auth, 429 quota, 5xx provider). Anything else is ``internal``
    with a generic user message; the raw text is kept only as technical
    detail.
    """
    if isinstance(raw, ClassifiedError):
        return raw

    message = _message(raw)
    search = _search_text(raw, message)
    status = _status_code(raw)

    for entry in ERROR_PATTERNS:
        if entry.pattern.search(search):
            log.debug("Classified error as %s: %s", entry.category.value, message)
            return ClassifiedError(
                category=entry.category,
                user_message=entry.message,
                technical_detail=message,
                retryable=entry.retryable,
                status_code=status,
            )

    if status is not None:
        if status in (401, 403):
            return ClassifiedError(
                ErrorCategory.AUTH,
                "Authentication failed. Check your API key.",
                message,
                retryable=False,
                status_code=status,
            )
        if status == 429:
            return ClassifiedError(
                ErrorCategory.QUOTA,
                "Too many requests. Please wait a moment and try again.",
                message,
                retryable=True,
                status_code=status,
            )
        if status >= 500:
            return ClassifiedError(
                ErrorCategory.PROVIDER,
                "The service returned an error. Please try again later.",
                message,
                retryable=True,
                status_code=status,
            )

    return ClassifiedError(
        ErrorCategory.INTERNAL,
        FALLBACK_MESSAGE,
        message,
        retryable=False,
        status_code=status,
    )


def error_response(raw: Any) -> dict[str, Any]:
    """Render a failure as the result shape returned by collaborator APIs."""
    classified = classify(raw)
    return {
        "success": False,
        "error": classified.user_message,
        "errorDetails": classified,
        "errorCategory": classified.category.value,
        "retryable": classified.retryable,
    }
