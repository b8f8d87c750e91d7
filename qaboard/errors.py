"""Board error taxonomy and the FastAPI handlers that translate it."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def _error_payload(
    *,
    error: str,
    type_: str,
    code: str | None = None,
    details: Any | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": error, "code": code, "type": type_}
    if details is not None:
        payload["details"] = details
    return payload


class BoardError(Exception):
    """Base exception for board operations.

    Raised from the service layer and translated by the handlers registered in
    ``register_exception_handlers``.
    """

    status_code: int = 400
    default_code: str | None = None

    def __init__(self, message: str, *, code: str | None = None, details: Any | None = None) -> None:
        self.message = message
        self.code = code if code is not None else self.default_code
        self.details = details
        super().__init__(message)


class InvalidInput(BoardError):
    status_code = 400
    default_code = "invalid_input"


class Unauthorized(BoardError):
    status_code = 401
    default_code = "unauthorized"


class InvalidSession(Unauthorized):
    default_code = "invalid_session"


class InvalidCredentials(Unauthorized):
    default_code = "invalid_credentials"


class NotFound(BoardError):
    status_code = 404
    default_code = "not_found"


class QuestionNotFound(NotFound):
    default_code = "question_not_found"

    def __init__(self, question_id: str) -> None:
        super().__init__("Question not found", details={"questionId": question_id})


class ReplyNotFound(NotFound):
    default_code = "reply_not_found"

    def __init__(self, question_id: str, reply_id: str) -> None:
        super().__init__("Reply not found", details={"questionId": question_id, "replyId": reply_id})


class ServiceUnavailable(BoardError):
    """Writes are rejected while maintenance is active."""

    status_code = 503
    default_code = "maintenance"

    def __init__(self, snapshot: dict[str, Any]) -> None:
        super().__init__("Service under maintenance", details={"maintenance": snapshot})


def register_exception_handlers(app: FastAPI) -> None:
    """Register the board's exception handlers on a FastAPI app."""

    @app.exception_handler(BoardError)
    async def _board_error_handler(_request: Request, exc: BoardError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(
                error=exc.message,
                code=exc.code,
                type_=exc.__class__.__name__,
                details=exc.details,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed bodies are client input errors, not 422s.
        return JSONResponse(
            status_code=400,
            content=_error_payload(
                error="Invalid request body",
                code="invalid_input",
                type_=InvalidInput.__name__,
                details=[{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()],
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = getattr(exc, "detail", None)
        if isinstance(detail, str):
            error = detail
            details = None
        else:
            error = "Request failed"
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(error=error, code="http_exception", type_=exc.__class__.__name__, details=details),
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
