import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from app.config import get_settings
from app.models import CheckoutRequest
from app.services.directory_store import DirectoryStore, get_directory_store
from app.services.payment_gateway import (
    PaymentGateway,
    PaymentGatewayError,
    apply_webhook_event,
    get_payment_gateway,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["checkout"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=CORS_HEADERS)


@router.options("/create-checkout-session")
def checkout_preflight():
    return Response(content="ok", status_code=200, headers=CORS_HEADERS)


@router.post("/create-checkout-session")
async def create_checkout_session(
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    try:
        payload = CheckoutRequest.model_validate(await request.json())
    except ValidationError as exc:
        logger.warning("checkout_rejected errors=%s", exc.error_count())
        return _error("Invalid request body: priceId and userEmail must be strings")
    except ValueError:
        return _error("Request body must be valid JSON")

    price_id = (payload.price_id or "").strip()
    email = (payload.user_email or "").strip()
    if not price_id or not email:
        return _error("Missing required parameters: priceId and userEmail")

    origin = request.headers.get("origin") or get_settings().site_url
    try:
        session = await run_in_threadpool(
            gateway.create_checkout_session,
            price_id=price_id,
            email=email,
            registration_id=payload.registration_id,
            plan_name=payload.plan_name,
            origin=origin,
        )
    except PaymentGatewayError as exc:
        return _error(str(exc))
    return JSONResponse(status_code=200, content=session, headers=CORS_HEADERS)


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    store: DirectoryStore = Depends(get_directory_store),
):
    payload = await request.body()
    try:
        event = gateway.verify_webhook(payload, request.headers.get("stripe-signature"))
    except PaymentGatewayError as exc:
        logger.warning("webhook_rejected reason=%s", exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})
    handled = apply_webhook_event(event, store)
    return {"received": True, "handled": handled}
