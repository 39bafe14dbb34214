"""领域异常 → HTTP 错误响应"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.models.schemas import ErrorResponse
from copytrade.core.errors import OrderError, OrderErrorKind, OrderNotFoundError, ValidationError


logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    OrderErrorKind.VALIDATION: 400,
    OrderErrorKind.UNAUTHENTICATED: 401,
    OrderErrorKind.NOT_FOUND: 404,
    OrderErrorKind.UPSTREAM_REJECTED: 502,
    OrderErrorKind.TIMEOUT: 504,
}

TOKEN_EXPIRED_CODE = "TOKEN_EXPIRED"


def error_response(status_code: int, message: str, code: Optional[str] = None,
                   details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code or None, details=details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    code = TOKEN_EXPIRED_CODE if exc.kind == OrderErrorKind.UNAUTHENTICATED else None
    logger.warning(f"{request.method} {request.url.path} -> {status_code} {exc.kind.value}: {exc.message}")
    return error_response(status_code, exc.message, code=code, details=exc.details)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    details = dict(exc.details)
    details["reason"] = exc.reason
    return error_response(400, exc.message, details=details)


async def not_found_handler(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return error_response(404, "Order not found", details={"order_id": exc.order_id})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", [])[1:]) for err in exc.errors()]
    return error_response(400, "Invalid request body", details={"fields": fields})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderError, order_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(OrderNotFoundError, not_found_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
