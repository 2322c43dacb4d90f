"""Result of one analysis request, mapped to an HTTP status in one place."""

from dataclasses import dataclass, field
from typing import Any

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_ERROR = 500
HTTP_SERVICE_UNAVAILABLE = 503


@dataclass(frozen=True)
class Ok:
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationFailed:
    field: str
    message: str | None = None

    @property
    def error(self) -> str:
        return self.message or f"Missing {self.field} in request body"


@dataclass(frozen=True)
class Unavailable:
    reason: str = "AI service not available - API key not configured"


@dataclass(frozen=True)
class TransportFailed:
    label: str
    cause: str

    @property
    def error(self) -> str:
        return f"{self.label} failed: {self.cause}"


Outcome = Ok | ValidationFailed | Unavailable | TransportFailed


def to_status_and_body(outcome: Outcome) -> tuple[int, dict[str, Any]]:
    """Outcome を (HTTPステータス, レスポンスボディ) に変換する."""
    if isinstance(outcome, Ok):
        body = dict(outcome.data)
        body.setdefault("success", True)
        # success を先頭に置く
        return HTTP_OK, {"success": body.pop("success"), **body}
    if isinstance(outcome, ValidationFailed):
        return HTTP_BAD_REQUEST, {"success": False, "error": outcome.error}
    if isinstance(outcome, Unavailable):
        return HTTP_SERVICE_UNAVAILABLE, {"success": False, "error": outcome.reason}
    return HTTP_INTERNAL_ERROR, {"success": False, "error": outcome.error}
