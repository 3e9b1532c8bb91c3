from typing import ClassVar

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette import status


class FasbitError(Exception):
    kind: ClassVar[str] = "internal"
    status_code: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(FasbitError):
    kind = "auth"
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(AuthError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied."):
        super().__init__(message)


class ProtocolError(FasbitError):
    kind = "protocol"
    status_code = status.HTTP_400_BAD_REQUEST


class StateError(FasbitError):
    kind = "state"
    status_code = status.HTTP_409_CONFLICT


class IntegrityError(FasbitError):
    kind = "integrity"
    status_code = 422


class StorageError(FasbitError):
    kind = "storage"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFoundError(FasbitError):
    kind = "notFound"
    status_code = status.HTTP_404_NOT_FOUND


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."

    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Malformed JSON body."

    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if first.get("type") == "missing":
        return f"Missing required field '{location}'."

    return f"Invalid value for '{location}': {first.get('msg', 'invalid')}."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FasbitError)
    async def handle_fasbit_error(_request: Request, exc: FasbitError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _describe_validation_error(exc)
        logger.debug("Rejected request to {}: {}", request.url.path, message)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})
