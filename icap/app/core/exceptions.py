"""
Custom exceptions and error handlers for consistent error responses.

Every error leaves the API in the same envelope:
``{"success": false, "error_code": ..., "message": ..., "details": ...}``.
Business outcomes (unknown order, rejected status) are answered with
HTTP 200; non-2xx codes are reserved for malformed requests and
server failures.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""
    
    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class BusinessRuleError(AppException):
    """Outcome of a well-formed request that the domain refuses."""
    
    def __init__(self, message: str, error_code: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_200_OK,
            details=details
        )


class OrderNotFoundError(BusinessRuleError):
    """Raised when an order code is unknown."""
    
    def __init__(self, order_code: str):
        super().__init__(
            message="Pedido não encontrado",
            error_code="ORDER_NOT_FOUND",
            details={"orderId": order_code}
        )
        self.order_code = order_code


class InvalidStatusError(BusinessRuleError):
    """Raised when a status value is not part of the order lifecycle."""
    
    def __init__(self, value: str, allowed: list):
        super().__init__(
            message=f"Status inválido: {value}",
            error_code="INVALID_STATUS",
            details={"status": value, "allowed": allowed}
        )


# Global Exception Handlers

def _envelope(error_code: str, message: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error_code": error_code,
        "message": message,
        "details": details or {}
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(exc.error_code, exc.message, exc.details)
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        500: "ERR_INTERNAL_SERVER"
    }
    
    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")
    
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(error_code, str(exc.detail))
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(
            "ERR_VALIDATION",
            "Validation error",
            {"errors": jsonable_encoder(exc.errors())}
        )
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "error_type": type(exc).__name__}
    )
    
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope("ERR_INTERNAL_SERVER", "Erro interno do servidor")
    )
