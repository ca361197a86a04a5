"""
Application errors and the handlers that turn them into JSON.

Every error body is flat: `error`, `code`, `request_id`, plus whatever the
error carries in `details` (the 403 plan-limit body adds entitlement, plan,
ceiling, current_usage and upgrade_plan).
"""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from synth.core.logging import LOGGER_NAME, get_request_id
from synth.core.middleware.request_id import REQUEST_ID_HEADER

logger = logging.getLogger(LOGGER_NAME)

_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = details or {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ForbiddenError(AppError):
    code = "forbidden"
    status_code = 403


class EntitlementDeniedError(ForbiddenError):
    """Raised at the HTTP boundary when an entitlement decision is a denial."""
    code = "plan_limit"

    def __init__(self, decision, *, code: Optional[str] = None, request_id: Optional[str] = None):
        details: Dict[str, Any] = {
            "entitlement": decision.entitlement,
            "plan": decision.plan.value,
            "ceiling": decision.ceiling,
            "current_usage": decision.current_usage,
        }
        if decision.upgrade_plan is not None:
            details["upgrade_plan"] = decision.upgrade_plan.value
        super().__init__(decision.reason or "Not allowed on your current plan", code=code, request_id=request_id, details=details)
        self.decision = decision


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429


class ExecutionProviderError(AppError):
    code = "execution_failed"
    status_code = 502


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(status_code: int, code: str, message: str, request_id: str, extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
    """Flat error body shared by every handler; `extra` keys sit beside `error` and `code`."""
    body = {"error": message, "code": code, "request_id": request_id, **(extra or {})}
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers={REQUEST_ID_HEADER: request_id},
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return error_response(exc.status_code, exc.code, exc.message, rid, exc.details)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    return error_response(exc.status_code, code, message, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "validation_error", "Request validation failed", _request_id_for(request), {"details": exc.errors()})


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response(500, "internal_error", "Unexpected error", rid)


def register_error_handlers(app) -> None:
    for exc_class, handler in (
        (AppError, app_error_handler),
        (HTTPException, http_error_handler),
        (RequestValidationError, request_validation_handler),
        (Exception, unhandled_exception_handler),
    ):
        app.add_exception_handler(exc_class, handler)
