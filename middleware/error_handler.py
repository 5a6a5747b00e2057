"""
middleware/error_handler.py — Taxonomía de errores y handlers globales.

Los adaptadores de proveedores (Gemini, ElevenLabs) traducen sus fallos a
estas excepciones en la frontera; los routers las dejan propagar y aquí se
convierten en el sobre estándar {"success": false, "error": "..."}.

Uso (en main.py):
    from middleware.error_handler import register_error_handlers
    register_error_handlers(app)
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from models.responses import fail

logger = logging.getLogger(__name__)


# ── Excepciones de aplicación ─────────────────────────────────────────────────


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "UNKNOWN"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Campos ausentes o mal formados. Siempre 400 local, nunca se reintenta."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"


class BackupFormatError(ValidationError):
    error_code = "BACKUP_FORMAT"


class CredentialError(AppError):
    """El proveedor rechaza la API key."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "INVALID_CREDENTIAL"


class QuotaError(AppError):
    """Cuota agotada. ElevenLabs la señala con 402, Gemini con 429."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "QUOTA_EXCEEDED"


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMITED"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class ConflictError(AppError):
    """Ya hay una operación en curso con la misma etiqueta."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "IN_PROGRESS"


class MalformedResponseError(AppError):
    """El proveedor devolvió contenido que no se puede interpretar."""

    error_code = "MALFORMED_RESPONSE"


class UnknownError(AppError):
    error_code = "UNKNOWN"


# ── Handlers ──────────────────────────────────────────────────────────────────


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "[%s] %s %s → %d",
        exc.error_code,
        request.method,
        request.url.path,
        exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=fail(exc.message))


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        error = "Method not allowed"
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        error = "Not found"
    else:
        error = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(error),
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "Invalid request")
    if location:
        error = f"Invalid request parameters: {location}: {detail}"
    else:
        error = f"Invalid request parameters: {detail}"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=fail(error))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
