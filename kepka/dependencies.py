"""
Service wiring and FastAPI dependencies.

``build_services`` constructs every collaborator once; ``create_app`` keeps the
result on ``app.state.services`` and the dependencies below read from there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from kepka.auth import ACCESS, TokenService
from kepka.config import Settings
from kepka.db import DbClient, InMemoryDbClient, SqlDbClient, UserRecord, utcnow
from kepka.errors import AuthError, Forbidden
from kepka.notifications import (
    EventBroadcaster,
    InMemoryBroadcaster,
    Notifier,
    RedisBroadcaster,
)
from kepka.payments import InMemoryPaymentGateway, PaymentGateway, StripePaymentGateway
from kepka.policies import PolicyEvaluator
from kepka.recorder import TransactionRecorder
from kepka.webhooks import WebhookReconciler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    db: DbClient
    payments: PaymentGateway
    broadcaster: EventBroadcaster
    notifier: Notifier
    tokens: TokenService
    evaluator: PolicyEvaluator
    recorder: TransactionRecorder
    webhooks: WebhookReconciler

    def start(self) -> None:
        self.broadcaster.start()
        logger.info("Services started (db=%s)", type(self.db).__name__)

    def stop(self) -> None:
        self.broadcaster.stop()
        logger.info("Services stopped")


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        return InMemoryDbClient()
    return SqlDbClient(settings.database_url)


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    if settings.use_in_memory_backends or not settings.stripe_secret_key:
        return InMemoryPaymentGateway(
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    return StripePaymentGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )


def build_broadcaster(settings: Settings) -> EventBroadcaster:
    if settings.use_in_memory_backends or not settings.redis_url:
        return InMemoryBroadcaster()
    return RedisBroadcaster(
        url=settings.redis_url, channel_prefix=settings.realtime_channel_prefix
    )


def build_services(
    settings: Settings,
    *,
    db: Optional[DbClient] = None,
    payments: Optional[PaymentGateway] = None,
    broadcaster: Optional[EventBroadcaster] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    db = db or build_db_client(settings)
    payments = payments or build_payment_gateway(settings)
    broadcaster = broadcaster or build_broadcaster(settings)
    notifier = notifier or Notifier()
    evaluator = PolicyEvaluator(db)
    recorder = TransactionRecorder(
        db,
        evaluator,
        broadcaster,
        sponsor_address=settings.sponsor_address,
        sponsorship_ttl=timedelta(minutes=settings.sponsorship_ttl_minutes),
        clock=clock,
    )
    return Services(
        settings=settings,
        db=db,
        payments=payments,
        broadcaster=broadcaster,
        notifier=notifier,
        tokens=TokenService(settings),
        evaluator=evaluator,
        recorder=recorder,
        webhooks=WebhookReconciler(db, payments, broadcaster, notifier),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db_client(services: Services = Depends(get_services)) -> DbClient:
    return services.db


def get_recorder(services: Services = Depends(get_services)) -> TransactionRecorder:
    return services.recorder


def get_payment_gateway(services: Services = Depends(get_services)) -> PaymentGateway:
    return services.payments


def get_notifier(services: Services = Depends(get_services)) -> Notifier:
    return services.notifier


def get_token_service(services: Services = Depends(get_services)) -> TokenService:
    return services.tokens


def authenticate(services: Services, token: str) -> UserRecord:
    """Resolve an access token to an active user."""
    payload = services.tokens.decode(token, ACCESS)
    user = services.db.get_user(payload["sub"])
    if user is None:
        raise AuthError("User not found")
    if user.is_suspended:
        raise Forbidden("Account suspended")
    return user


_bearer = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    services: Services = Depends(get_services),
) -> UserRecord:
    if credentials is None or not credentials.credentials:
        raise AuthError("Missing bearer token")
    return authenticate(services, credentials.credentials)


def require_admin(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


@dataclass
class RequestContext:
    ip_address: Optional[str]
    user_agent: Optional[str]


def client_ip(request: Request, trusted_proxies: list[str]) -> Optional[str]:
    """Peer address, or the nearest untrusted hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or peer not in trusted_proxies:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return hops[0] if hops else peer


def get_request_context(
    request: Request, services: Services = Depends(get_services)
) -> RequestContext:
    ip_address = client_ip(request, services.settings.trusted_proxies)
    return RequestContext(
        ip_address=ip_address, user_agent=request.headers.get("user-agent")
    )
