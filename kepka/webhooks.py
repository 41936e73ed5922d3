"""
Reconciles payment-gateway webhook events into the local billing mirror.

Delivery is at-least-once, so every handler is an upsert keyed by the
gateway's object id, processed event ids are remembered, and a payment that
reached a terminal status never moves again.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from kepka.db import DbClient, PaymentTransactionRecord
from kepka.errors import ValidationFailed
from kepka.notifications import EventBroadcaster, Notifier
from kepka.payments import PaymentGateway, from_epoch
from kepka.types import PaymentStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

_PAYMENT_EVENTS = {
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELED,
    "payment_intent.processing": PaymentStatus.PROCESSING,
}


class WebhookReconciler:
    def __init__(
        self,
        db: DbClient,
        gateway: PaymentGateway,
        broadcaster: EventBroadcaster,
        notifier: Notifier,
    ):
        self.db = db
        self.gateway = gateway
        self.broadcaster = broadcaster
        self.notifier = notifier
        self._handlers: dict[str, Callable[[dict], None]] = {
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
        }
        for event_type, status in _PAYMENT_EVENTS.items():
            self._handlers[event_type] = (
                lambda obj, status=status: self._payment_changed(obj, status)
            )

    def handle(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify and apply one delivery; raises AuthError on a bad signature."""
        event = self.gateway.construct_event(payload, signature)
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise ValidationFailed("Malformed webhook event")

        if self.db.has_webhook_event(event_id):
            logger.info("Ignoring replayed webhook event %s (%s)", event_id, event_type)
            return {"received": True, "duplicate": True}

        obj = (event.get("data") or {}).get("object") or {}
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled event type: %s", event_type)
        else:
            handler(obj)
        self.db.record_webhook_event(event_id, event_type)
        return {"received": True, "duplicate": False}

    def _payment_changed(self, intent: dict, status: PaymentStatus) -> None:
        intent_id = intent.get("id")
        if not intent_id:
            raise ValidationFailed("Payment intent event without an id")

        existing = self.db.get_payment_transaction(intent_id)
        if existing is not None:
            if existing.status is status:
                return
            if existing.status.is_terminal:
                logger.warning(
                    "Payment %s already %s; ignoring %s",
                    intent_id,
                    existing.status.value,
                    status.value,
                )
                return

        fields: dict = {"status": status}
        if existing is None:
            metadata = dict(intent.get("metadata") or {})
            fields.update(
                user_id=metadata.get("user_id"),
                amount_cents=int(intent.get("amount") or 0),
                currency=intent.get("currency") or "usd",
                description=intent.get("description"),
                metadata=metadata,
            )
        record = self.db.upsert_payment_transaction(intent_id, **fields)
        logger.info("Payment %s: %s", intent_id, status.value)

        if record.user_id:
            self.broadcaster.publish(record.user_id, "payment-updated", record.as_dict())
        if status is PaymentStatus.SUCCEEDED:
            self._notify_success(record)

    def _notify_success(self, record: PaymentTransactionRecord) -> None:
        user = self.db.get_user(record.user_id) if record.user_id else None
        if user is None:
            return
        self.notifier.notify(
            "payment_success",
            {
                "amount": f"{record.amount_cents / 100:.2f}",
                "transaction_id": record.stripe_payment_intent_id,
            },
            user.email,
        )

    def _subscription_changed(self, subscription: dict) -> None:
        subscription_id = subscription.get("id")
        customer_id = subscription.get("customer")
        existing = None
        if subscription_id:
            existing = self.db.get_subscription_by_external_id(subscription_id)
        if existing is None and customer_id:
            existing = self.db.get_subscription_by_customer(customer_id)
        user_id = (
            existing.user_id
            if existing
            else (subscription.get("metadata") or {}).get("user_id")
        )
        if not user_id:
            logger.warning("Subscription %s has no known owner; skipping", subscription_id)
            return

        try:
            status = SubscriptionStatus(subscription.get("status"))
        except ValueError:
            logger.warning(
                "Unknown subscription status %r for %s",
                subscription.get("status"),
                subscription_id,
            )
            return

        fields = {
            "stripe_customer_id": customer_id,
            "stripe_subscription_id": subscription_id,
            "status": status,
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        }
        items = (subscription.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        for key in ("current_period_start", "current_period_end"):
            value = subscription.get(key) or first_item.get(key)
            if value:
                fields[key] = from_epoch(value)
        price_id = (first_item.get("price") or {}).get("id")
        plan = self.db.get_plan_by_price(price_id) if price_id else None
        if plan is not None:
            fields["plan_id"] = plan.id

        record = self.db.upsert_user_subscription(user_id, **fields)
        logger.info("Subscription updated: %s (%s)", subscription_id, status.value)
        self.broadcaster.publish(user_id, "subscription-updated", record.as_dict())

    def _subscription_deleted(self, subscription: dict) -> None:
        subscription_id = subscription.get("id")
        existing = (
            self.db.get_subscription_by_external_id(subscription_id)
            if subscription_id
            else None
        )
        if existing is None:
            logger.info("Deleted subscription %s is not mirrored locally", subscription_id)
            return
        record = self.db.upsert_user_subscription(
            existing.user_id,
            stripe_subscription_id=subscription_id,
            status=SubscriptionStatus.CANCELED,
        )
        logger.info("Subscription canceled: %s", subscription_id)
        self.broadcaster.publish(existing.user_id, "subscription-updated", record.as_dict())
