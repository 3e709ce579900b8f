# autopay/app/exceptions.py
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class AutopayError(Exception):
    """Base class for errors surfaced by the subscription lifecycle engine."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class ValidationError(AutopayError):
    status_code = 400
    default_message = "Invalid request"


class ConflictError(AutopayError):
    status_code = 400
    default_message = "Conflicting record already exists"


class NotFoundError(AutopayError):
    status_code = 404
    default_message = "Not found"


class AuthFailureError(AutopayError):
    status_code = 401
    default_message = "Invalid signature"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ProviderError(AutopayError):
    """Upstream payment provider failure."""

    status_code = 502
    default_message = "Payment provider request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        retryable: bool = True,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.code = code


class ProviderTimeoutError(ProviderError):
    default_message = "Payment provider timed out"


class TransientError(AutopayError):
    """Store timeout or lock contention; the caller should retry."""

    status_code = 503
    default_message = "Temporarily unavailable, please retry"


class FatalInvariantError(AutopayError):
    """An invariant violation was detected; the transition is halted."""

    status_code = 500
    default_message = "Internal server error"


def _envelope(message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if data is not None:
        body["data"] = data
    return body


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(AutopayError)
    async def autopay_error_handler(request: Request, exc: AutopayError):
        if isinstance(exc, FatalInvariantError):
            # never leak invariant details to clients
            return JSONResponse(status_code=exc.status_code, content=_envelope(exc.default_message))
        if isinstance(exc, AuthFailureError):
            return JSONResponse(status_code=exc.status_code, content=_envelope(exc.default_message))
        return JSONResponse(status_code=exc.status_code, content=_envelope(exc.message, exc.data))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        return JSONResponse(
            status_code=400,
            content=_envelope(first.get("msg", "Invalid request")),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_envelope("Internal server error"),
        )

    return app
