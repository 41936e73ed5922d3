"""
Shared enums for persisted state.
"""

from __future__ import annotations

from enum import Enum


class TransactionType(str, Enum):
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class SponsorshipStatus(str, Enum):
    PENDING = "pending"
    SPONSORED = "sponsored"
    EXECUTED = "executed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SponsorshipStatus.EXECUTED, SponsorshipStatus.FAILED)


class PolicyType(str, Enum):
    RATE_LIMIT = "rate_limit"
    AMOUNT_LIMIT = "amount_limit"
    TIME_LOCK = "time_lock"
    WHITELIST = "whitelist"


class WalletType(str, Enum):
    NAMI = "nami"
    ETERNL = "eternl"
    FLINT = "flint"
    YOROI = "yoroi"
    LACE = "lace"


class ReportType(str, Enum):
    SPAM = "spam"
    SCAM = "scam"
    INAPPROPRIATE = "inappropriate"
    COPYRIGHT = "copyright"
    OTHER = "other"


class ReportStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        )


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class SettingType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
