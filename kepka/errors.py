"""
Error taxonomy and the FastAPI handlers that turn it into JSON responses.

Every error response has the shape ``{"error": <code>, "message": <text>}``
plus optional extra fields. Outside production a ``stack`` field carries the
formatted traceback.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kepka.config import Settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Any] = None,
        extra: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationFailed(ApiError):
    status_code = 400
    code = "validation_failed"


class NotFound(ApiError):
    status_code = 404
    code = "not_found"


class Conflict(ApiError):
    status_code = 409
    code = "conflict"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class PolicyDenied(ApiError):
    """A user security policy rejected the request."""

    code = "policy_denied"

    def __init__(self, message: str, *, policy_type: str, policy_id: Optional[str] = None):
        super().__init__(
            message, extra={"policy_type": policy_type, "policy_id": policy_id}
        )
        self.policy_type = policy_type
        self.policy_id = policy_id
        self.status_code = 429 if policy_type == "rate_limit" else 403


class AuthError(ApiError):
    status_code = 401
    code = "auth_failed"


class Forbidden(ApiError):
    status_code = 403
    code = "forbidden"


class UpstreamError(ApiError):
    """The database or payment gateway failed; callers see a generic message."""

    status_code = 502
    code = "upstream_error"


_HTTP_CODES = {
    400: "bad_request",
    401: "auth_failed",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_failed",
    429: "rate_limited",
}


def _with_stack(body: dict, exc: BaseException, settings: Settings) -> dict:
    if not settings.is_production:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return body


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Register the JSON error envelope on ``app``."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if isinstance(exc, UpstreamError):
            logger.error(
                "Upstream failure on %s %s: %s", request.method, request.url.path, exc
            )
            body = {"error": exc.code, "message": "Internal server error"}
            return JSONResponse(
                status_code=exc.status_code, content=_with_stack(body, exc, settings)
            )
        return JSONResponse(
            status_code=exc.status_code, content=jsonable_encoder(exc.to_dict())
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder(
                {
                    "error": ValidationFailed.code,
                    "message": "Validation failed",
                    "details": exc.errors(),
                }
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "error")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": code, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error on %s %s", request.method, request.url.path
        )
        body = {"error": "internal_error", "message": "Internal server error"}
        return JSONResponse(status_code=500, content=_with_stack(body, exc, settings))
