"""Payment error taxonomy and structured error handlers.

Every error response includes a consistent envelope:
    {
        "code": "error_code",
        "message": "Human-readable message",
        "details": null | object,
        "request_id": "uuid"
    }
"""
from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400

    def __init__(self, message: str | None = None, details: object = None) -> None:
        self.message = message or self.code.replace("_", " ").capitalize()
        self.details = details
        super().__init__(self.message)


class InvalidProduct(PaymentError):
    code = "invalid_product"
    status_code = 400


class ProfileNotFound(PaymentError):
    code = "profile_not_found"
    status_code = 404


class InvoiceNotFound(PaymentError):
    code = "invoice_not_found"
    status_code = 404


class InvoiceNotPending(PaymentError):
    code = "invoice_not_pending"
    status_code = 409


class GatewayError(PaymentError):
    """The payment provider could not give a usable answer.

    Never proof of non-payment: the outcome is unknown and the call is safe
    to retry.
    """

    code = "gateway_error"
    status_code = 502


class UnauthorizedWebhook(PaymentError):
    code = "unauthorized_webhook"
    status_code = 401


def _get_request_id(request: Request) -> str:
    """Extract request_id set by ObservabilityMiddleware."""
    return getattr(request.state, "request_id", "unknown")


def _error_payload(
    code: str, message: str, details: object, request_id: str
) -> dict:
    return {
        "code": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }


def register_error_handlers(app: object) -> None:
    @app.exception_handler(PaymentError)  # type: ignore[arg-type]
    async def payment_error_handler(
        request: Request, exc: PaymentError
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        if exc.status_code >= 500:
            logger.warning(
                "Payment error on %s %s: %s",
                request.method,
                request.url.path,
                exc.message,
                extra={"request_id": request_id},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details, request_id),
        )

    @app.exception_handler(HTTPException)  # type: ignore[arg-type]
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details, request_id),
        )

    @app.exception_handler(RequestValidationError)  # type: ignore[arg-type]
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        logger.warning(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error",
                "Validation error",
                exc.errors(),
                request_id,
            ),
        )

    @app.exception_handler(Exception)  # type: ignore[arg-type]
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error",
                "Internal server error",
                None,
                request_id,
            ),
        )
