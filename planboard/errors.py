"""Error envelope shared by every tool endpoint.

Handlers raise :class:`PlanboardError`; the application turns it into a JSON
body of the form ``{"ok": false, "error": {...}}``. Engine outcomes such as a
missing task line are :class:`~planboard.mutations.MutationResult` values and
never pass through here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi.responses import JSONResponse

BAD_REQUEST = 400
FORBIDDEN = 403
UNAVAILABLE = 503


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    status_code: int = BAD_REQUEST

    def to_dict(self) -> dict[str, Any]:
        # status_code travels on the HTTP response, not in the body
        return {"code": self.code, "message": self.message, "details": self.details}


class PlanboardError(RuntimeError):
    """Raised by tool handlers, payload readers and the store's write path."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Mapping[str, Any] | None = None,
        *,
        status_code: int = BAD_REQUEST,
    ) -> None:
        super().__init__(message)
        self.error = ErrorResponse(
            code=code,
            message=message,
            details=dict(details or {}),
            status_code=status_code,
        )

    @property
    def code(self) -> str:
        return self.error.code


def success_response(payload: dict[str, Any]) -> dict[str, Any]:
    return {"ok": True, "data": payload}


def error_response(error: ErrorResponse | PlanboardError) -> dict[str, Any]:
    if isinstance(error, PlanboardError):
        error = error.error
    return {"ok": False, "error": error.to_dict()}


def error_json(error: ErrorResponse | PlanboardError) -> JSONResponse:
    """Render an error envelope with the status code the error carries."""
    if isinstance(error, PlanboardError):
        error = error.error
    return JSONResponse(status_code=error.status_code, content=error_response(error))
