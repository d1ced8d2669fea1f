"""
Typed errors raised by the ledger services.

Routers never translate these by hand: `register_exception_handlers` maps
every StockError to a JSON body with its HTTP status. Anything else is an
unexpected storage/runtime failure and becomes a 500.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StockError(Exception):
    code = "stock_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = data

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"detail": self.message, "code": self.code}
        for k, v in self.data.items():
            out[k] = str(v) if v is not None and not isinstance(v, (int, float, str, bool)) else v
        return out


class ValidationError(StockError):
    """Malformed input, always raised before anything is written."""

    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(StockError):
    """Unknown or cross-tenant item, store, count, transfer or movement."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(StockError):
    """Illegal state transition (approving twice, completing a cancelled transfer...)."""

    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT


class ConflictError(InvalidStateError):
    """A concurrent caller won the race for the same transition."""

    code = "conflict"


def require_found(obj: Optional[Any], what: str, ident: Any = None):
    if obj is None:
        raise NotFoundError(f"{what} not found", id=ident)
    return obj


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StockError)
    async def stock_error_handler(request: Request, exc: StockError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Same body shape as ValidationError, with pydantic's per-field errors
        logger.warning("%s %s rejected (validation_error)", request.method, request.url.path)
        return JSONResponse(
            {"detail": "Validation error", "code": ValidationError.code, "errors": jsonable_encoder(exc.errors())},
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s failed", request.method, request.url.path)
        return JSONResponse({"detail": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
