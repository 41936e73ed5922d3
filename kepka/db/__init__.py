"""
Database access layer: a DbClient interface with in-memory and SQL backends.
"""

from kepka.db.base import DbClient
from kepka.db.memory import InMemoryDbClient
from kepka.db.records import (
    AuditLogRecord,
    ExchangeRateRecord,
    MultiSigWalletRecord,
    PaymentTransactionRecord,
    PlatformSettingRecord,
    PolicyRecord,
    SponsorshipRecord,
    SubscriptionPlanRecord,
    TokenRecord,
    TokenReportRecord,
    TransactionRecord,
    UserRecord,
    UserSubscriptionRecord,
    WalletConnectionRecord,
    WalletSignerRecord,
    utcnow,
)
from kepka.db.sql import SqlDbClient

__all__ = [
    "AuditLogRecord",
    "DbClient",
    "ExchangeRateRecord",
    "InMemoryDbClient",
    "MultiSigWalletRecord",
    "PaymentTransactionRecord",
    "PlatformSettingRecord",
    "PolicyRecord",
    "SponsorshipRecord",
    "SqlDbClient",
    "SubscriptionPlanRecord",
    "TokenRecord",
    "TokenReportRecord",
    "TransactionRecord",
    "UserRecord",
    "UserSubscriptionRecord",
    "WalletConnectionRecord",
    "WalletSignerRecord",
    "utcnow",
]
