"""
Payment gateway abstraction for Stripe and in-memory testing.

Gateway methods return plain dicts so callers never touch SDK objects.
Timestamps on subscriptions are Unix seconds, as Stripe sends them.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import stripe

from kepka.errors import AuthError, UpstreamError

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2024-12-18.acacia"


class PaymentGateway(Protocol):
    """Operations the API needs from the billing provider."""

    def find_or_create_customer(self, email: str, name: Optional[str] = None) -> str:
        ...

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_id: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        ...

    def create_subscription(
        self, customer_id: str, price_id: str, metadata: Optional[dict] = None
    ) -> dict:
        ...

    def cancel_subscription_at_period_end(self, subscription_id: str) -> dict:
        ...

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify ``signature`` over ``payload`` and return the event dict."""
        ...


def _subscription_dict(subscription: Any, client_secret: Optional[str] = None) -> dict:
    def period(name: str) -> Optional[int]:
        value = getattr(subscription, name, None)
        if value is None:
            # Newer API versions carry the billing period on the items.
            try:
                items = subscription["items"]["data"]
            except (KeyError, TypeError):
                items = []
            value = items[0][name] if items and name in items[0] else None
        return value

    return {
        "id": subscription.id,
        "customer": subscription.customer,
        "status": subscription.status,
        "current_period_start": period("current_period_start"),
        "current_period_end": period("current_period_end"),
        "cancel_at_period_end": bool(getattr(subscription, "cancel_at_period_end", False)),
        "client_secret": client_secret,
    }


@dataclass
class StripePaymentGateway:
    """Stripe SDK-backed gateway."""

    api_key: str
    webhook_secret: str
    tolerance_seconds: int = 300

    def _call(self, description: str, fn, /, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, stripe_version=STRIPE_API_VERSION, **kwargs)
        except stripe.StripeError as exc:
            logger.exception("Stripe call failed: %s", description)
            raise UpstreamError(f"Payment gateway error during {description}") from exc

    def find_or_create_customer(self, email: str, name: Optional[str] = None) -> str:
        existing = self._call("customer lookup", stripe.Customer.list, email=email, limit=1)
        if existing.data:
            return existing.data[0].id
        customer = self._call("customer creation", stripe.Customer.create, email=email, name=name)
        return customer.id

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_id: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        intent = self._call(
            "payment intent creation",
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=currency,
            customer=customer_id,
            description=description,
            metadata=metadata or {},
            automatic_payment_methods={"enabled": True},
        )
        return {
            "id": intent.id,
            "client_secret": intent.client_secret,
            "amount": intent.amount,
            "currency": intent.currency,
            "status": intent.status,
        }

    def create_subscription(
        self, customer_id: str, price_id: str, metadata: Optional[dict] = None
    ) -> dict:
        subscription = self._call(
            "subscription creation",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            metadata=metadata or {},
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
        )
        invoice = getattr(subscription, "latest_invoice", None)
        intent = getattr(invoice, "payment_intent", None) if invoice else None
        return _subscription_dict(subscription, getattr(intent, "client_secret", None))

    def cancel_subscription_at_period_end(self, subscription_id: str) -> dict:
        subscription = self._call(
            "subscription cancellation",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return _subscription_dict(subscription)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not signature:
            raise AuthError("Missing webhook signature")
        try:
            stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("Webhook signature verification failed: %s", exc)
            raise AuthError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise AuthError("Invalid webhook payload") from exc
        return json.loads(payload)


def from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header value for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


@dataclass
class InMemoryPaymentGateway:
    """Test double speaking Stripe's signature scheme."""

    webhook_secret: str = "whsec_dev"
    tolerance_seconds: int = 300
    customers: dict[str, str] = field(default_factory=dict)
    intents: dict[str, dict] = field(default_factory=dict)
    subscriptions: dict[str, dict] = field(default_factory=dict)
    period_seconds: int = 30 * 24 * 3600

    def find_or_create_customer(self, email: str, name: Optional[str] = None) -> str:
        if email not in self.customers:
            self.customers[email] = _short_id("cus")
        return self.customers[email]

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_id: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        intent_id = _short_id("pi")
        intent = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:12]}",
            "amount": amount_cents,
            "currency": currency,
            "status": "requires_payment_method",
            "customer": customer_id,
            "description": description,
            "metadata": dict(metadata or {}),
        }
        self.intents[intent_id] = intent
        return {k: intent[k] for k in ("id", "client_secret", "amount", "currency", "status")}

    def create_subscription(
        self, customer_id: str, price_id: str, metadata: Optional[dict] = None
    ) -> dict:
        now = int(time.time())
        subscription_id = _short_id("sub")
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "customer": customer_id,
            "price": price_id,
            "status": "incomplete",
            "current_period_start": now,
            "current_period_end": now + self.period_seconds,
            "cancel_at_period_end": False,
            "metadata": dict(metadata or {}),
        }
        return self._subscription_view(
            subscription_id, client_secret=f"pi_{subscription_id}_secret"
        )

    def cancel_subscription_at_period_end(self, subscription_id: str) -> dict:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise UpstreamError(f"No such subscription: {subscription_id}")
        subscription["cancel_at_period_end"] = True
        return self._subscription_view(subscription_id)

    def _subscription_view(self, subscription_id: str, client_secret: Optional[str] = None) -> dict:
        subscription = self.subscriptions[subscription_id]
        view = {
            k: subscription[k]
            for k in (
                "id",
                "customer",
                "status",
                "current_period_start",
                "current_period_end",
                "cancel_at_period_end",
            )
        }
        view["client_secret"] = client_secret
        return view

    def sign(self, payload: bytes, timestamp: Optional[int] = None) -> str:
        return sign_payload(payload, self.webhook_secret, timestamp)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not signature:
            raise AuthError("Missing webhook signature")
        parts: dict[str, list[str]] = {}
        for item in signature.split(","):
            key, _, value = item.strip().partition("=")
            parts.setdefault(key, []).append(value)
        try:
            timestamp = int(parts["t"][0])
        except (KeyError, ValueError) as exc:
            raise AuthError("Invalid webhook signature") from exc
        expected = sign_payload(payload, self.webhook_secret, timestamp).split("v1=", 1)[1]
        if not any(hmac.compare_digest(expected, candidate) for candidate in parts.get("v1", [])):
            raise AuthError("Invalid webhook signature")
        if abs(time.time() - timestamp) > self.tolerance_seconds:
            raise AuthError("Webhook timestamp outside the tolerance zone")
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise AuthError("Invalid webhook payload") from exc
