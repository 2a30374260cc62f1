"""
JSON error envelope for every route: {"error": "<message>"} plus an HTTP status.

HTTPException detail strings become the error message. Validation failures are
reported as 400 (not FastAPI's default 422). Anything unhandled is logged and
surfaced as a generic 500.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {"error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        content = dict(detail)
        content.setdefault("error", content.pop("message", "Request failed"))
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(detail) if detail else "Request failed"},
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(400, "Invalid input", details=details)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)


def service_error(result: dict) -> JSONResponse:
    """Translate a `{"success": False, "error", "status_code"}` service result."""
    return error_response(result.get("status_code") or 400, result.get("error") or "Request failed")
