"""Error taxonomy shared by services and routes.

Services raise these instead of ``HTTPException`` so the same checks can back
both HTTP handlers and the realtime gateway. ``register_exception_handlers``
renders them with the ``{"detail": ...}`` shape FastAPI uses for its own errors.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 500
    default_detail = "internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(DomainError):
    status_code = 404
    default_detail = "not found"


class Forbidden(DomainError):
    status_code = 403
    default_detail = "forbidden"


class Unauthorized(DomainError):
    status_code = 401
    default_detail = "unauthorized"


class InvalidState(DomainError):
    status_code = 400
    default_detail = "invalid state"


class StorageError(DomainError):
    status_code = 500
    default_detail = "storage error"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error(
            "Storage failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.__cause__ or exc,
        )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
