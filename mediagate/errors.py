"""
Error taxonomy and the FastAPI handlers that turn it into responses
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class MediaGateError(Exception):
    """Base class for errors that map onto an HTTP status"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(MediaGateError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(MediaGateError):
    status_code = 401
    default_message = "Invalid or missing API key"


class NotFoundError(MediaGateError):
    status_code = 404
    default_message = "File not found"


class RangeNotSatisfiableError(MediaGateError):
    status_code = 416
    default_message = "Range Not Satisfiable"

    def __init__(self, total_size: int, message: Optional[str] = None):
        self.total_size = total_size
        super().__init__(message)


class UpstreamUnavailableError(MediaGateError):
    status_code = 503
    default_message = "Service unavailable"


class StreamIOError(MediaGateError):
    """Local disk failure while reading a media file"""

    status_code = 500
    default_message = "Failed to read media file"


class StreamAborted(Exception):
    """Raised from a response body after headers were sent

    Not mapped to any handler: it reaches the ASGI server, which drops the
    connection instead of completing a body shorter than its Content-Length.
    """


def error_body(message: str, status_code: int) -> dict:
    return {
        "success": False,
        "error": {
            "message": message,
            "statusCode": status_code,
        },
    }


def _log(request: Request, status_code: int, message: str, exc: Optional[BaseException] = None):
    line = f"[{request.method}] {request.url.path} - {message}"
    if status_code >= 500:
        logger.error(line, exc_info=exc)
    else:
        logger.warning(line)


async def handle_range_not_satisfiable(request: Request, exc: RangeNotSatisfiableError) -> Response:
    _log(request, exc.status_code, f"{exc.message} (size={exc.total_size}, range={request.headers.get('range')})")
    return Response(
        status_code=416,
        headers={
            "Content-Range": f"bytes */{exc.total_size}",
            "Accept-Ranges": "bytes",
        },
    )


async def handle_media_gate_error(request: Request, exc: MediaGateError) -> JSONResponse:
    _log(request, exc.status_code, exc.message, exc if exc.status_code >= 500 else None)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.status_code))


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    _log(request, exc.status_code, message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Path parameters such as a non-numeric file index land here
    fields = ", ".join(str(err.get("loc", ["?"])[-1]) for err in exc.errors())
    message = f"Invalid request parameter: {fields}" if fields else "Invalid request"
    _log(request, 400, message)
    return JSONResponse(status_code=400, content=error_body(message, 400))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, StreamAborted):
        # Headers are already out and the stream logged its own outcome
        logger.debug(f"Stream aborted after headers on {request.url.path}: {exc}")
    else:
        _log(request, 500, f"Unhandled error: {exc}", exc)
    return JSONResponse(status_code=500, content=error_body("Internal server error", 500))


def install_error_handlers(app: FastAPI) -> None:
    # Starlette picks the most specific class in the MRO, so order is not significant
    app.add_exception_handler(RangeNotSatisfiableError, handle_range_not_satisfiable)
    app.add_exception_handler(MediaGateError, handle_media_gate_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected)
