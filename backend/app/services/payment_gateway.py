import json
import logging
from contextlib import contextmanager
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional

import stripe

from app.config import get_settings
from app.services.directory_store import DirectoryStore

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Payment provider failure with a message safe to show the caller."""


class PaymentNotConfiguredError(PaymentGatewayError):
    pass


class PaymentGateway:
    def __init__(self):
        self._lock = Lock()
        self._initialized = False
        self._enabled = False
        self._api_key = ""
        self._webhook_secret = ""
        self._email_locks: Dict[str, List[Any]] = {}

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            settings = get_settings()
            self._api_key = settings.stripe_secret_key
            self._webhook_secret = settings.stripe_webhook_secret
            self._enabled = bool(self._api_key)
            self._initialized = True
            if self._enabled:
                logger.info("Payment gateway initialized")
            else:
                logger.warning("Payment gateway disabled: STRIPE_SECRET_KEY not set")

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    @contextmanager
    def _email_lock(self, email: str) -> Iterator[None]:
        key = email.lower()
        with self._lock:
            entry = self._email_locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    self._email_locks.pop(key, None)

    def find_or_create_customer(self, email: str, registration_id: Optional[str]) -> str:
        """Return the customer id for ``email``, creating the customer if absent.

        Creation is serialized per email inside this process only; two
        processes racing on the same email can still create duplicates.
        """
        self._ensure_initialized()
        if not self._enabled:
            raise PaymentNotConfiguredError("Payments are not configured")
        email = email.strip()
        with self._email_lock(email):
            try:
                existing = stripe.Customer.list(api_key=self._api_key, email=email, limit=1)
                if existing.data:
                    return existing.data[0].id
                customer = stripe.Customer.create(
                    api_key=self._api_key,
                    email=email,
                    metadata={"registration_id": registration_id or ""},
                )
            except stripe.StripeError as exc:
                logger.exception("Customer lookup failed")
                raise PaymentGatewayError(exc.user_message or str(exc)) from exc
        logger.info("payment_customer_created customer_id=%s", customer.id)
        return customer.id

    def create_checkout_session(
        self,
        *,
        price_id: str,
        email: str,
        registration_id: Optional[str],
        plan_name: Optional[str],
        origin: str,
    ) -> Dict[str, str]:
        customer_id = self.find_or_create_customer(email, registration_id)
        origin = origin.rstrip("/")
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=(
                    f"{origin}/proveedor/estado?id={registration_id or ''}"
                    "&success=true&session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{origin}/proveedores/registro?canceled=true",
                metadata={"registration_id": registration_id or "", "plan_name": plan_name or ""},
                subscription_data={"metadata": {"registration_id": registration_id or ""}},
            )
        except stripe.StripeError as exc:
            logger.exception("Checkout session creation failed")
            raise PaymentGatewayError(exc.user_message or str(exc)) from exc
        logger.info(
            "checkout_session=%s",
            json.dumps({"session_id": session.id, "registration_id": registration_id, "price_id": price_id}),
        )
        return {"sessionId": session.id, "url": session.url}

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Check the webhook signature and return the decoded event body."""
        self._ensure_initialized()
        if not self._webhook_secret:
            raise PaymentNotConfiguredError("Webhook secret is not configured")
        if not signature:
            raise PaymentGatewayError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise PaymentGatewayError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise PaymentGatewayError("Invalid webhook payload") from exc
        return json.loads(payload)


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _subscription_price_id(obj: Dict[str, Any]) -> Optional[str]:
    items = (obj.get("items") or {}).get("data") or []
    if not items:
        return None
    return ((items[0] or {}).get("price") or {}).get("id")


def apply_webhook_event(event: Dict[str, Any], store: DirectoryStore) -> bool:
    """Record the effect of a payment event. Returns False for ignored event types."""
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        metadata = _metadata(obj)
        registration_id = metadata.get("registration_id") or None
        plan_name = metadata.get("plan_name") or None
        subscription_id = obj.get("subscription")
        email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
        if subscription_id:
            store.upsert_subscription(
                subscription_id=subscription_id,
                status="active",
                registration_id=registration_id,
                email=email,
                plan_name=plan_name,
                customer_id=obj.get("customer"),
                checkout_session_id=obj.get("id"),
            )
        if registration_id:
            recorded = store.record_registration_payment(
                registration_id,
                {
                    "payment_status": "completed",
                    "stripe_session_id": obj.get("id"),
                    "stripe_subscription_id": subscription_id,
                    "plan_name": plan_name,
                },
                note=f"Pago completado - Plan: {plan_name or 'sin plan'}",
            )
            if not recorded:
                logger.warning("checkout completed for unknown registration_id=%s", registration_id)
        logger.info("webhook_checkout_completed registration_id=%s", registration_id)
        return True

    if event_type in {"customer.subscription.created", "customer.subscription.updated"}:
        price_id = _subscription_price_id(obj)
        plan = store.get_plan_by_price_id(price_id) if price_id else None
        store.upsert_subscription(
            subscription_id=obj.get("id"),
            status=obj.get("status") or "unknown",
            registration_id=_metadata(obj).get("registration_id") or None,
            customer_id=obj.get("customer"),
            price_id=price_id,
            plan_id=plan.id if plan else None,
            plan_name=plan.name if plan else None,
        )
        return True

    if event_type == "customer.subscription.deleted":
        store.upsert_subscription(
            subscription_id=obj.get("id"),
            status="canceled",
            customer_id=obj.get("customer"),
        )
        return True

    logger.info("webhook_ignored type=%s", event_type)
    return False


payment_gateway = PaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    return payment_gateway
