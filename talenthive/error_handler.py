"""Application errors and their JSON serialization."""
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from talenthive.integrations.policy.response_wrappers import IntegrationResponseError

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Error raised by controllers; carries the HTTP status to respond with."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class NotFoundError(AppError):
    status_code = 404


class ForbiddenError(AppError):
    status_code = 403


class UnauthorizedError(AppError):
    status_code = 401


class ConflictError(AppError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    pass


class ValidationFailedError(AppError):
    """Request payload failed field validation; `details["field_errors"]` maps field -> message."""

    status_code = 422

    def __init__(self, field_errors: Dict[str, str], message: str = "Validation failed") -> None:
        super().__init__(message, details={"field_errors": dict(field_errors)})
        self.field_errors = dict(field_errors)


class ErrorHandler:
    def handle_exception(self, exc: Exception, context: Dict[str, Any] = None) -> Dict[str, Any]:
        logger.error("Unhandled exception while processing request: %s", exc, exc_info=True)
        return {
            "status": "error",
            "message": "An internal error occurred while processing your request. Please try again later.",
            "metadata": {"error": str(exc), "context": context or {}},
        }

    def handle_app_error(self, exc: AppError) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": "error", "message": exc.message}
        if exc.details:
            payload["details"] = exc.details
        return payload


def register_error_handlers(app: FastAPI, handler: Optional[ErrorHandler] = None) -> None:
    handler = handler or ErrorHandler()

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=handler.handle_app_error(exc))

    @app.exception_handler(IntegrationResponseError)
    async def _integration_error(request: Request, exc: IntegrationResponseError):
        logger.error("Payment processor response rejected on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content=handler.handle_app_error(AppError(f"Payment processor returned an invalid response: {exc}", 502)),
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError):
        field_errors = {".".join(str(p) for p in err.get("loc", ()) if p != "body"): err.get("msg", "") for err in exc.errors()}
        return JSONResponse(
            status_code=422,
            content=handler.handle_app_error(ValidationFailedError(field_errors)),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        payload = handler.handle_exception(exc, context={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=500, content=payload)
