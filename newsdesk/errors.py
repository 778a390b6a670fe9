import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ImageServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, code: Optional[str] = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class ImageValidationError(ImageServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class UploadLimitError(ImageValidationError):
    """Rejected multipart upload; ``code`` names the violated limit."""


class ImageNotFoundError(ImageServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ImageInUseError(ImageServiceError):
    status_code = status.HTTP_409_CONFLICT


def error_body(message: str, *, error: Optional[str] = None, data: Any = None) -> dict:
    body: dict = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    if data is not None:
        body["data"] = data
    return body


async def _service_error_handler(request: Request, exc: ImageServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, error=exc.code, data=exc.data),
    )


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation failed", error=problems),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ImageServiceError, _service_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
