"""
Error taxonomy for the task manager and the FastAPI handlers that render it.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong!"


class TasksAppError(Exception):
    """Base exception; carries the HTTP status and a machine-readable code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(TasksAppError):
    """A required field is missing or malformed."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Invalid request", errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NotFoundError(TasksAppError):
    """No record matches the identifier."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(TasksAppError):
    """A name is already taken."""

    status_code = 409
    code = "CONFLICT"


class ForbiddenError(TasksAppError):
    """The target is a predefined tag."""

    status_code = 403
    code = "FORBIDDEN"


class InternalError(TasksAppError):
    """Anything unexpected. The message sent to clients is always generic."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE):
        super().__init__(message)


def _field_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    """Attach handlers for the taxonomy, request validation, and the catch-all."""

    @app.exception_handler(TasksAppError)
    async def handle_app_error(request: Request, exc: TasksAppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        error = ValidationError(errors=_field_errors(exc))
        logger.warning("%s %s -> 400 %s", request.method, request.url.path, error.errors)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        error = InternalError()
        return JSONResponse(status_code=error.status_code, content=error.to_dict())
