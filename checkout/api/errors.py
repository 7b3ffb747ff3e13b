from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from checkout.application.exceptions import CheckoutError

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "validation": 422,
    "invalid_transition": 409,
    "submission_in_progress": 409,
    "network": 503,
    "server_rejected": 422,
    "response_malformed": 502,
    "payment_init_missing": 502,
    "gateway_declined": 402,
    "gateway_cancelled": 409,
    "gateway_timeout": 504,
}


def register_exception_handlers(app: FastAPI) -> None:
    """Categorized checkout failures become a stable JSON body; raw exception text is never returned."""

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
        status_code = STATUS_BY_CATEGORY.get(exc.category, 500)
        logger.info(
            "Checkout request failed",
            extra={"category": exc.category, "reason": f"{request.method} {request.url.path}"},
        )
        content = {
            "category": exc.category,
            "message": exc.user_message,
            "retryable": exc.retryable,
        }
        errors = getattr(exc, "errors", None)
        if errors:
            content["errors"] = errors
        return JSONResponse(status_code=status_code, content=content)
