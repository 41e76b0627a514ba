"""
FastAPI application.

Every route decodes its request into a domain command, runs it, and
encodes the Result: Ok values through the response codec, Error values
through one kind → status table.
"""

from typing import Annotated

import fastapi
from fastapi import Header, Request
from fastapi.responses import JSONResponse
from kungfu import Error, Ok

from tracklease.app import Services
from tracklease.errors import ErrorKind, LeaseError
from tracklease.http._codecs import (
    CaptureOut,
    CreateOrderIn,
    CreateOrderOut,
    DiscountValidateIn,
    DiscountValidateOut,
    DownloadIn,
    DownloadOut,
    ErrorOut,
    WebhookAckOut,
)
from tracklease.log import get_logger

log = get_logger("http")

STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.DISCOUNT_INVALID: 400,
    ErrorKind.DISCOUNT_EXPIRED: 400,
    ErrorKind.DISCOUNT_LIMIT_REACHED: 400,
    ErrorKind.MIN_ORDER_NOT_MET: 400,
    ErrorKind.SIGNATURE_VERIFICATION_FAILED: 401,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.ORDER_NOT_COMPLETED: 403,
    ErrorKind.ORDER_NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.DOWNLOAD_WINDOW_EXPIRED: 410,
    ErrorKind.GATEWAY_AUTH: 502,
    ErrorKind.GATEWAY_ORDER: 502,
    ErrorKind.ENTITLEMENT_GENERATION_FAILED: 500,
    ErrorKind.STORAGE: 500,
    ErrorKind.NOTIFICATION: 502,
    ErrorKind.DATABASE: 500,
}


class LeaseHTTPError(Exception):
    """Carries a LeaseError out of a route to the exception handler."""

    def __init__(self, error: LeaseError, status: int | None = None) -> None:
        super().__init__(str(error))
        self.error = error
        self.status = status if status is not None else status_for(error)


def status_for(error: LeaseError) -> int:
    return STATUS.get(error.kind, 500)


def create_app(services: Services) -> fastapi.FastAPI:
    app = fastapi.FastAPI(title="tracklease")

    @app.exception_handler(LeaseHTTPError)
    async def _lease_error(request: Request, exc: LeaseHTTPError) -> JSONResponse:
        status = exc.status
        if status >= 500:
            log.error("http.failed", path=request.url.path, error=str(exc.error))
        return JSONResponse(ErrorOut.from_domain(exc.error).model_dump(), status_code=status)

    # ───────────────────────────────────────────────────────────────────────
    # Orders
    # ───────────────────────────────────────────────────────────────────────

    @app.post("/orders", status_code=201)
    async def create_order(req: CreateOrderIn) -> CreateOrderOut:
        match await services.ledger.create(req.to_domain()):
            case Ok(created):
                return CreateOrderOut.from_domain(created)
            case Error(e):
                raise LeaseHTTPError(e)

    @app.post("/orders/{order_id}/capture")
    async def capture_order(order_id: str) -> CaptureOut:
        match await services.ledger.capture_remote(order_id):
            case Ok(outcome):
                return CaptureOut.from_domain(outcome)
            case Error(e):
                raise LeaseHTTPError(e)

    # ───────────────────────────────────────────────────────────────────────
    # Discounts
    # ───────────────────────────────────────────────────────────────────────

    @app.post("/discounts/validate")
    async def validate_discount(req: DiscountValidateIn) -> DiscountValidateOut:
        match await services.discounts.validate(req.code, req.subtotal_cents):
            case Ok(code):
                return DiscountValidateOut.from_domain(code, req.subtotal_cents)
            case Error(e):
                raise LeaseHTTPError(e)

    # ───────────────────────────────────────────────────────────────────────
    # Downloads
    # ───────────────────────────────────────────────────────────────────────

    @app.post("/downloads")
    async def issue_downloads(
        req: DownloadIn,
        x_authenticated_email: Annotated[str | None, Header()] = None,
    ) -> DownloadOut:
        match await services.downloads.issue(req.order_id, req.customer_email, x_authenticated_email):
            case Ok(bundle):
                return DownloadOut.from_domain(bundle)
            case Error(e):
                raise LeaseHTTPError(e)

    # ───────────────────────────────────────────────────────────────────────
    # Webhooks
    # ───────────────────────────────────────────────────────────────────────

    @app.post("/webhooks/paypal")
    async def paypal_webhook(request: Request) -> WebhookAckOut:
        body = await request.body()
        match await services.reconciler.handle(request.headers, body):
            case Ok(ack):
                return WebhookAckOut.from_domain(ack)
            case Error(e):
                status = status_for(e)
                raise LeaseHTTPError(e, 500 if status >= 500 else status)

    return app


__all__ = ("STATUS", "LeaseHTTPError", "status_for", "create_app")
