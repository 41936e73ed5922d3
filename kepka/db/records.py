"""
Plain records returned by every DbClient implementation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from kepka.types import (
    PaymentStatus,
    ReportStatus,
    SettingType,
    SponsorshipStatus,
    SubscriptionStatus,
    TransactionStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    full_name: Optional[str] = None
    wallet_address: Optional[str] = None
    is_admin: bool = False
    is_suspended: bool = False
    suspension_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    suspended_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "wallet_address": self.wallet_address,
            "is_admin": self.is_admin,
            "is_suspended": self.is_suspended,
            "suspension_reason": self.suspension_reason,
            "suspended_at": _iso(self.suspended_at),
            "suspended_by": self.suspended_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class WalletConnectionRecord:
    id: str
    user_id: str
    wallet_address: str
    wallet_type: str
    is_primary: bool = False
    is_verified: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "wallet_address": self.wallet_address,
            "wallet_type": self.wallet_type,
            "is_primary": self.is_primary,
            "is_verified": self.is_verified,
            "created_at": _iso(self.created_at),
        }


@dataclass
class TokenRecord:
    id: str
    creator_id: str
    token_name: str
    symbol: str
    policy_id: str
    asset_name: str
    decimals: int = 6
    total_supply: int = 0
    description: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "token_name": self.token_name,
            "symbol": self.symbol,
            "policy_id": self.policy_id,
            "asset_name": self.asset_name,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "description": self.description,
            "image_url": self.image_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class TransactionRecord:
    id: str
    user_id: str
    token_id: str
    transaction_type: str
    amount: int
    tx_hash: str
    fee_ada: int = 0
    status: TransactionStatus = TransactionStatus.PENDING
    metadata: Optional[dict] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_id": self.token_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "tx_hash": self.tx_hash,
            "fee_ada": self.fee_ada,
            "status": self.status.value,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class SponsorshipRecord:
    id: str
    user_id: str
    transaction_id: str
    sponsor_address: str
    gas_fee_ada: int
    nonce: int
    expires_at: datetime
    status: SponsorshipStatus = SponsorshipStatus.PENDING
    signature_hash: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def effective_status(self, now: Optional[datetime] = None) -> SponsorshipStatus:
        """Status as seen by readers: an expired, unexecuted row reads as failed."""
        if self.status is SponsorshipStatus.EXECUTED:
            return self.status
        if self.is_expired(now):
            return SponsorshipStatus.FAILED
        return self.status

    def as_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_id": self.transaction_id,
            "sponsor_address": self.sponsor_address,
            "gas_fee_ada": self.gas_fee_ada,
            "nonce": self.nonce,
            "status": self.effective_status(now).value,
            "expired": self.is_expired(now),
            "signature_hash": self.signature_hash,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class PolicyRecord:
    id: str
    user_id: str
    policy_name: str
    policy_type: str
    policy_config: dict
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "policy_name": self.policy_name,
            "policy_type": self.policy_type,
            "policy_config": self.policy_config,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }


@dataclass
class AuditLogRecord:
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[dict] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
        }


@dataclass
class WalletSignerRecord:
    id: str
    wallet_id: str
    signer_address: str
    public_key: str
    signer_name: Optional[str] = None
    is_verified: bool = False
    added_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "multi_sig_wallet_id": self.wallet_id,
            "signer_address": self.signer_address,
            "signer_name": self.signer_name,
            "public_key": self.public_key,
            "is_verified": self.is_verified,
            "added_at": _iso(self.added_at),
        }


@dataclass
class MultiSigWalletRecord:
    id: str
    user_id: str
    wallet_name: str
    required_signatures: int
    total_signers: int
    wallet_address: str
    script_hash: str
    is_active: bool = True
    signers: list[WalletSignerRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "wallet_name": self.wallet_name,
            "required_signatures": self.required_signatures,
            "total_signers": self.total_signers,
            "wallet_address": self.wallet_address,
            "script_hash": self.script_hash,
            "is_active": self.is_active,
            "signers": [signer.as_dict() for signer in self.signers],
            "created_at": _iso(self.created_at),
        }


@dataclass
class TokenReportRecord:
    id: str
    token_id: str
    reporter_id: Optional[str]
    report_type: str
    description: str
    status: ReportStatus = ReportStatus.PENDING
    admin_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "token_id": self.token_id,
            "reporter_id": self.reporter_id,
            "report_type": self.report_type,
            "description": self.description,
            "status": self.status.value,
            "admin_notes": self.admin_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class PlatformSettingRecord:
    setting_key: str
    setting_value: Any
    setting_type: SettingType
    description: Optional[str] = None
    is_public: bool = False
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "setting_key": self.setting_key,
            "setting_value": self.setting_value,
            "setting_type": self.setting_type.value,
            "description": self.description,
            "is_public": self.is_public,
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
        }


@dataclass
class SubscriptionPlanRecord:
    id: str
    stripe_price_id: str
    name: str
    price_cents: int
    interval: str
    description: Optional[str] = None
    currency: str = "usd"
    features: list = field(default_factory=list)
    is_active: bool = True

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "stripe_price_id": self.stripe_price_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "interval": self.interval,
            "features": list(self.features),
            "is_active": self.is_active,
        }


@dataclass
class UserSubscriptionRecord:
    id: str
    user_id: str
    stripe_customer_id: str
    status: SubscriptionStatus
    stripe_subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class PaymentTransactionRecord:
    id: str
    user_id: Optional[str]
    stripe_payment_intent_id: str
    amount_cents: int
    status: PaymentStatus
    currency: str = "usd"
    description: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status.value,
            "description": self.description,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class ExchangeRateRecord:
    token_symbol: str
    price_usd: float
    price_ada: float
    volume_24h: float = 0.0
    change_24h: float = 0.0
    market_cap: float = 0.0
    id: str = field(default_factory=new_id)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "token_symbol": self.token_symbol,
            "price_usd": self.price_usd,
            "price_ada": self.price_ada,
            "volume_24h": self.volume_24h,
            "change_24h": self.change_24h,
            "market_cap": self.market_cap,
            "updated_at": _iso(self.updated_at),
        }


DEFAULT_PLANS = (
    {
        "stripe_price_id": "price_basic_monthly",
        "name": "Basic Plan",
        "description": "Perfect for getting started with Kepka",
        "price_cents": 999,
        "interval": "month",
        "features": ["Up to 5 tokens", "Basic minting", "Standard support"],
    },
    {
        "stripe_price_id": "price_pro_monthly",
        "name": "Pro Plan",
        "description": "Advanced features for serious token creators",
        "price_cents": 2999,
        "interval": "month",
        "features": [
            "Unlimited tokens",
            "Advanced minting",
            "Gasless transactions",
            "Priority support",
            "Analytics dashboard",
        ],
    },
    {
        "stripe_price_id": "price_enterprise_monthly",
        "name": "Enterprise Plan",
        "description": "Full-featured plan for businesses",
        "price_cents": 9999,
        "interval": "month",
        "features": [
            "Everything in Pro",
            "Multi-signature wallets",
            "Custom integrations",
            "Dedicated support",
            "White-label options",
        ],
    },
)

DEFAULT_SETTINGS = (
    (
        "max_daily_gasless_transactions",
        10,
        SettingType.NUMBER,
        "Maximum gasless transactions per user per day",
        True,
    ),
    (
        "min_token_creation_fee",
        2000000,
        SettingType.NUMBER,
        "Minimum fee for token creation in lovelace",
        True,
    ),
    (
        "platform_fee_percentage",
        0.5,
        SettingType.NUMBER,
        "Platform fee percentage for transactions",
        True,
    ),
    ("maintenance_mode", False, SettingType.BOOLEAN, "Enable maintenance mode", False),
    (
        "supported_wallets",
        ["nami", "eternl", "flint", "lace", "yoroi"],
        SettingType.ARRAY,
        "List of supported wallet types",
        True,
    ),
)

DEFAULT_EXCHANGE_RATES = (
    {
        "token_symbol": "ADA",
        "price_usd": 1.0,
        "price_ada": 1.0,
        "volume_24h": 1000000.0,
        "change_24h": 2.5,
        "market_cap": 35000000000.0,
    },
    {
        "token_symbol": "KEPKA",
        "price_usd": 0.5,
        "price_ada": 0.5,
        "volume_24h": 50000.0,
        "change_24h": 15.2,
        "market_cap": 500000.0,
    },
)
