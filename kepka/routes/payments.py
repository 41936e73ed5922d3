"""
Billing routes: payment intents, subscription plans, subscriptions and the
payment-gateway webhook.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from kepka.db import UserRecord
from kepka.dependencies import (
    RequestContext,
    Services,
    get_current_user,
    get_request_context,
    get_services,
)
from kepka.errors import NotFound
from kepka.payments import from_epoch
from kepka.routes.common import audit
from kepka.schemas import PaymentIntentRequest, SubscriptionCreateRequest
from kepka.types import PaymentStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-intent")
def create_payment_intent(
    payload: PaymentIntentRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    gateway = services.payments
    customer_id = gateway.find_or_create_customer(user.email, user.full_name)
    intent = gateway.create_payment_intent(
        amount_cents=round(payload.amount * 100),
        currency=payload.currency,
        customer_id=customer_id,
        description=payload.description,
        metadata={**payload.metadata, "user_id": user.id},
    )
    services.db.upsert_payment_transaction(
        intent["id"],
        user_id=user.id,
        amount_cents=intent["amount"],
        currency=intent["currency"],
        status=PaymentStatus.PENDING,
        description=payload.description,
        metadata=payload.metadata,
    )
    logger.info("Payment intent created: %s for user %s", intent["id"], user.email)
    audit(services.db, user, ctx, "create", "payment_intent", intent["id"])
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


@router.get("/plans")
def list_plans(services: Services = Depends(get_services)):
    return {"plans": [p.as_dict() for p in services.db.list_plans()]}


@router.get("/subscriptions")
def get_subscription(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    subscription = services.db.get_user_subscription(user.id)
    if subscription is None:
        return {"subscription": None}
    body = subscription.as_dict()
    plan = services.db.get_plan(subscription.plan_id) if subscription.plan_id else None
    body["plan"] = plan.as_dict() if plan else None
    return {"subscription": body}


@router.post("/subscriptions")
def create_subscription(
    payload: SubscriptionCreateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    plan = services.db.get_plan_by_price(payload.price_id)
    if plan is None or not plan.is_active:
        raise NotFound("Subscription plan not found")
    gateway = services.payments
    customer_id = gateway.find_or_create_customer(user.email, user.full_name)
    subscription = gateway.create_subscription(
        customer_id, payload.price_id, {"user_id": user.id}
    )
    services.db.upsert_user_subscription(
        user.id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription["id"],
        plan_id=plan.id,
        status=SubscriptionStatus(subscription["status"]),
        current_period_start=from_epoch(subscription["current_period_start"]),
        current_period_end=from_epoch(subscription["current_period_end"]),
        cancel_at_period_end=subscription["cancel_at_period_end"],
    )
    logger.info("Subscription created: %s for user %s", subscription["id"], user.email)
    audit(services.db, user, ctx, "create", "subscription", subscription["id"])
    return {
        "subscription_id": subscription["id"],
        "client_secret": subscription["client_secret"],
    }


@router.post("/subscriptions/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(get_request_context),
):
    existing = services.db.get_subscription_by_external_id(subscription_id)
    if existing is None or existing.user_id != user.id:
        raise NotFound("Subscription not found")
    subscription = services.payments.cancel_subscription_at_period_end(subscription_id)
    services.db.upsert_user_subscription(
        user.id,
        stripe_subscription_id=subscription_id,
        cancel_at_period_end=True,
    )
    logger.info("Subscription cancelled: %s for user %s", subscription_id, user.email)
    audit(services.db, user, ctx, "cancel", "subscription", subscription_id)
    period_end = from_epoch(subscription["current_period_end"])
    return {
        "message": "Subscription will be cancelled at the end of the current period",
        "subscription": {
            "id": subscription["id"],
            "cancel_at_period_end": subscription["cancel_at_period_end"],
            "current_period_end": period_end.isoformat() if period_end else None,
        },
    }


@router.get("/transactions")
def list_payment_transactions(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    payments = services.db.list_payment_transactions(user.id, limit=50)
    return {"transactions": [p.as_dict() for p in payments]}


@router.post("/webhooks")
async def payment_webhook(request: Request):
    # Signature verification needs the raw body, so this reads it directly.
    services: Services = request.app.state.services
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await run_in_threadpool(services.webhooks.handle, payload, signature)
