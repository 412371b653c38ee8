import traceback
from typing import Any, Dict, List

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..factory import get_data_sanitizer

HTTP_ERROR_MESSAGES = {
    status.HTTP_400_BAD_REQUEST: "Bad request",
    status.HTTP_401_UNAUTHORIZED: "Authentication required",
    status.HTTP_403_FORBIDDEN: "Permission denied",
    status.HTTP_404_NOT_FOUND: "Resource not found",
    status.HTTP_409_CONFLICT: "Conflict occurred",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "Validation error",
    status.HTTP_429_TOO_MANY_REQUESTS: "Rate limit exceeded",
}


def normalize_error_detail(detail: Any) -> str | List[str] | Dict[str, Any]:
    """Normalizes the error detail to a string, list of strings, or dictionary.

    Args:
        detail: The raw error detail, which can be a string, dictionary, or list.

    Returns:
        A normalized representation of the error detail.
    """
    if isinstance(detail, str):
        return detail

    if isinstance(detail, dict):
        return {str(key): str(value) for key, value in detail.items()}

    if hasattr(detail, "__iter__"):
        return [str(item) for item in detail]

    return str(detail)


def _error_response(
    request: Request, status_code: int, message: str, errors: Dict[str, Any]
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "errors": errors,
            "status_code": status_code,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for the reference push server.

    Maps validation errors, HTTP errors and `ValueError`s raised by the
    notification rules to a uniform JSON error envelope. Anything else is
    logged with its location and answered with a generic 500.

    Args:
        request: The incoming FastAPI request object.
        exc: The exception that was caught.

    Returns:
        A `JSONResponse` with the error envelope and matching status code.
    """
    sanitizer = get_data_sanitizer()

    if isinstance(exc, (ValidationError, RequestValidationError, ResponseValidationError)):
        errors = {}
        for error in exc.errors():
            field = ".".join(str(x) for x in error["loc"])
            errors["detail"] = f"{error['msg']} in {field}"

        return _error_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", errors
        )

    if isinstance(exc, ValueError):
        return _error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "Invalid field items",
            {"detail": str(exc)},
        )

    if isinstance(exc, (HTTPException, StarletteHTTPException)):
        message = HTTP_ERROR_MESSAGES.get(exc.status_code, "HTTP error occurred")
        if exc.status_code >= 500:
            message = "Internal server error"

        return _error_response(
            request,
            exc.status_code,
            message,
            {"detail": normalize_error_detail(exc.detail)},
        )

    tb = traceback.extract_tb(exc.__traceback__)
    if tb:
        last_frame = tb[-1]
        location = f'File "{last_frame.filename}", line {last_frame.lineno}, in {last_frame.name}'
    else:
        location = "No traceback available"

    logger.critical(
        f"☢️ Unhandled exception -> {sanitizer.sanitize_exception_for_logging(exc)}\n"
        f"Location: {location}"
    )

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        {"detail": "An unexpected error occurred"},
    )
