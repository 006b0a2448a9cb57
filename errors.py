"""
Error taxonomy and the handlers that turn it into JSON responses.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    status_code = 500
    key = "message"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self, expose_errors: bool = True) -> Dict[str, Any]:
        return {self.key: self.message}


class Unauthenticated(APIError):
    status_code = 401
    key = "error"
    default_message = "Token Not Found"


class InvalidToken(APIError):
    status_code = 401
    key = "error"
    default_message = "Invalid token"


class InvalidCredentials(APIError):
    status_code = 401
    key = "error"
    default_message = "Invalid Email or Password"


class Forbidden(APIError):
    status_code = 403
    key = "error"
    default_message = "Access denied. Admins only."


class NotFound(APIError):
    status_code = 404
    default_message = "Not found"


class ValidationError(APIError):
    status_code = 400
    default_message = "Invalid request"


class DuplicateKey(ValidationError):
    default_message = "Duplicate key"


class StorageError(APIError):
    """Any persistence failure. `detail` is the underlying driver error."""

    def __init__(self, detail: str = ""):
        super().__init__("Internal server error")
        self.detail = detail

    def to_body(self, expose_errors: bool = True) -> Dict[str, Any]:
        body = {"message": self.message}
        if expose_errors and self.detail:
            body["error"] = self.detail
        return body


def error_response(exc: APIError, expose_errors: bool = True) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(expose_errors))


def register_exception_handlers(app: FastAPI, expose_errors: bool = True) -> None:
    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError):
        if isinstance(exc, StorageError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return error_response(exc, expose_errors)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        return JSONResponse(status_code=400, content={"message": message})
