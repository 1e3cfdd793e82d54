"""Error taxonomy and domain exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """What kind of failure a classified error represents."""

    NETWORK = "network"
    AUTH = "auth"
    QUOTA = "quota"
    CONTEXT = "context"
    PROVIDER = "provider"
    VALIDATION = "validation"
    INTERNAL = "internal"


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    """A failure mapped onto the taxonomy.

    Attributes:
        category: Taxonomy bucket
        user_message: Safe, human-facing explanation
        technical_detail: Raw error text, never shown as the primary message
        retryable: Whether retrying the same request may succeed
        status_code: HTTP-like status code if the error carried one
    """

    category: ErrorCategory
    user_message: str
    technical_detail: str
    retryable: bool
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category.value,
            "userMessage": self.user_message,
            "technicalDetail": self.technical_detail,
            "retryable": self.retryable,
        }
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClassifiedError:
        try:
            category = ErrorCategory(data.get("category", "internal"))
        except ValueError:
            category = ErrorCategory.INTERNAL
        return cls(
            category=category,
            user_message=data.get("userMessage", ""),
            technical_detail=data.get("technicalDetail", ""),
            retryable=bool(data.get("retryable", False)),
            status_code=data.get("statusCode"),
        )


@dataclass
class UnknownSession(Exception):
    """Raised when an operation names a session the registry does not hold."""

    session_id: str

    def __str__(self) -> str:
        return f"Unknown session: {self.session_id}"


@dataclass
class AlreadyStreaming(Exception):
    """Raised when a session already has an active stream."""

    session_id: str
    message_id: str

    def __str__(self) -> str:
        return f"Session {self.session_id} is already streaming message {self.message_id}"
