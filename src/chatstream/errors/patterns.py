"""Ordered pattern table for error classification.

Patterns are matched case-insensitively against the combined error text.
First match wins, so more specific patterns come before broader ones.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from chatstream.errors.types import ErrorCategory


@dataclass(frozen=True, slots=True)
class ErrorPattern:
    pattern: re.Pattern[str]
    category: ErrorCategory
    message: str
    retryable: bool


def _p(regex: str, category: ErrorCategory, message: str, retryable: bool) -> ErrorPattern:
    return ErrorPattern(re.compile(regex, re.IGNORECASE), category, message, retryable)


FALLBACK_MESSAGE = "Something went wrong. Please try again."

ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    # Network
    _p(
        r"ECONNREFUSED.*11434|(connection\s*refused|connect call failed).*11434",
        ErrorCategory.NETWORK,
        "Cannot reach Ollama. Make sure it is running.",
        True,
    ),
    _p(
        r"ECONNREFUSED|connection\s*refused|connect call failed",
        ErrorCategory.NETWORK,
        "Cannot connect to the model service. Check that it is running and reachable.",
        True,
    ),
    _p(
        r"ETIMEDOUT|ESOCKETTIMEDOUT|request.*timed?\s*out|timeout|timed out",
        ErrorCategory.NETWORK,
        "The request timed out. Check your connection and try again.",
        True,
    ),
    _p(
        r"ENOTFOUND|name or service not known|nodename nor servname|getaddrinfo failed",
        ErrorCategory.NETWORK,
        "Cannot resolve the service address. Check your network and the API endpoint.",
        True,
    ),
    _p(
        r"failed to fetch|fetch failed|network\s*error|apiconnectionerror",
        ErrorCategory.NETWORK,
        "A network error occurred. Check your connection.",
        True,
    ),
    _p(
        r"ECONNRESET|EPIPE|socket hang up|connection\s*reset|broken\s*pipe",
        ErrorCategory.NETWORK,
        "The connection was interrupted. Please try again.",
        True,
    ),
    _p(
        r"ERR_PROXY|proxy",
        ErrorCategory.NETWORK,
        "A proxy error occurred. Check your proxy settings.",
        True,
    ),
    # Authentication
    _p(
        r"invalid.*api[_\s]?key|api[_\s]?key.*invalid|incorrect api key",
        ErrorCategory.AUTH,
        "The API key is invalid. Check your settings.",
        False,
    ),
    _p(
        r"unauthorized|\b401\b",
        ErrorCategory.AUTH,
        "Authentication failed. Check your API key.",
        False,
    ),
    _p(
        r"forbidden|\b403\b",
        ErrorCategory.AUTH,
        "Access denied. Check your API key permissions.",
        False,
    ),
    _p(
        r"authentication_?error",
        ErrorCategory.AUTH,
        "Authentication error. Check your API key.",
        False,
    ),
    # Quota; insufficient balance first so it is not read as rate limiting
    _p(
        r"insufficient_quota|billing|payment|insufficient.*balance",
        ErrorCategory.QUOTA,
        "Your account balance is insufficient. Check your billing.",
        False,
    ),
    _p(
        r"\b429\b|rate[_\s]?limit|too many requests",
        ErrorCategory.QUOTA,
        "Too many requests. Please wait a moment and try again.",
        True,
    ),
    _p(
        r"resource[_\s]?exhausted",
        ErrorCategory.QUOTA,
        "The service quota is exhausted. Please try again later.",
        True,
    ),
    # Context window
    _p(
        r"context[_\s]?length[_\s]?exceeded|context.?window|maximum.*context",
        ErrorCategory.CONTEXT,
        "The conversation is too long. Start a new session or shorten the history.",
        False,
    ),
    _p(
        r"max[_\s]?tokens|token[_\s]?limit|too many tokens",
        ErrorCategory.CONTEXT,
        "The token limit was exceeded. Shorten the input.",
        False,
    ),
    _p(
        r"prompt.*too\s*long|input.*too\s*long",
        ErrorCategory.CONTEXT,
        "The input is too long. Shorten it and try again.",
        False,
    ),
    # Provider
    _p(
        r"model.*not\s*found|does not exist|invalid.*model|notfounderror",
        ErrorCategory.PROVIDER,
        "The selected model is unavailable. Choose a different model.",
        False,
    ),
    _p(
        r"overloaded|capacity|server.*busy|service\s*unavailable",
        ErrorCategory.PROVIDER,
        "The service is overloaded. Please try again later.",
        True,
    ),
    _p(
        r"\b5\d{2}\s|internal\s*server\s*error|server\s*error",
        ErrorCategory.PROVIDER,
        "The service returned an error. Please try again later.",
        True,
    ),
    _p(
        r"unexpected token.*in json|json\.?parse|invalid json|jsondecodeerror",
        ErrorCategory.PROVIDER,
        "The service returned a malformed response. Please try again.",
        True,
    ),
    _p(
        r"content[_\s]?filter|content[_\s]?policy|safety",
        ErrorCategory.PROVIDER,
        "The request was blocked by the content filter. Rephrase it.",
        False,
    ),
    # Validation
    _p(
        r"validation.*error|invalid.*parameter|invalid.*argument|badrequesterror",
        ErrorCategory.VALIDATION,
        "The request parameters are invalid.",
        False,
    ),
)
