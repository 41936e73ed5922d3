"""
Database interface shared by the in-memory and SQL clients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

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
)
from kepka.types import ReportStatus, SponsorshipStatus, TransactionStatus


class DbClient(Protocol):
    """Interface for database access.

    Lookups that take an owner (``owner_id`` / ``user_id``) only return rows
    owned by that user; passing ``None`` skips the ownership filter and is
    reserved for admin paths. Unique-constraint violations raise
    ``kepka.errors.Conflict``.
    """

    def ping(self) -> bool:
        ...

    # Users

    def create_user(
        self,
        email: str,
        password_hash: str,
        full_name: Optional[str] = None,
        *,
        is_admin: bool = False,
    ) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def update_user(self, user_id: str, **fields: Any) -> Optional[UserRecord]:
        ...

    def list_users(
        self, *, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[UserRecord], int]:
        ...

    def add_wallet_connection(
        self,
        user_id: str,
        wallet_address: str,
        wallet_type: str,
        *,
        is_primary: bool = False,
    ) -> WalletConnectionRecord:
        ...

    def list_wallet_connections(self, user_id: str) -> list[WalletConnectionRecord]:
        ...

    # Tokens

    def create_token(
        self,
        creator_id: str,
        *,
        token_name: str,
        symbol: str,
        policy_id: str,
        asset_name: str,
        decimals: int = 6,
        total_supply: int = 0,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> TokenRecord:
        ...

    def get_token(
        self, token_id: str, *, owner_id: Optional[str] = None
    ) -> Optional[TokenRecord]:
        ...

    def update_token(
        self, token_id: str, owner_id: str, **fields: Any
    ) -> Optional[TokenRecord]:
        ...

    def list_tokens(
        self,
        *,
        owner_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TokenRecord], int]:
        ...

    def adjust_token_supply(self, token_id: str, delta: int) -> TokenRecord:
        ...

    # Transactions

    def create_transaction(
        self,
        user_id: str,
        *,
        token_id: str,
        transaction_type: str,
        amount: int,
        tx_hash: str,
        fee_ada: int = 0,
        metadata: Optional[dict] = None,
    ) -> TransactionRecord:
        ...

    def get_transaction(
        self, transaction_id: str, *, user_id: Optional[str] = None
    ) -> Optional[TransactionRecord]:
        ...

    def list_transactions(
        self,
        user_id: str,
        *,
        transaction_type: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TransactionRecord], int]:
        ...

    def set_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        expected: TransactionStatus,
    ) -> Optional[TransactionRecord]:
        """Conditional update; returns None when the row is not in ``expected``."""
        ...

    # Gasless sponsorships

    def allocate_nonce(self, user_id: str) -> int:
        """Atomically return the next nonce for ``user_id`` (1, 2, 3, ...)."""
        ...

    def create_sponsorship(
        self,
        user_id: str,
        *,
        transaction_id: str,
        sponsor_address: str,
        gas_fee_ada: int,
        nonce: int,
        expires_at: datetime,
        status: SponsorshipStatus,
    ) -> SponsorshipRecord:
        """Raise Conflict if the nonce is taken or the transaction already has a
        sponsorship that has not failed."""
        ...

    def get_sponsorship(
        self, sponsorship_id: str, *, user_id: Optional[str] = None
    ) -> Optional[SponsorshipRecord]:
        ...

    def list_sponsorships(
        self,
        *,
        user_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> list[SponsorshipRecord]:
        ...

    def set_sponsorship_status(
        self,
        sponsorship_id: str,
        status: SponsorshipStatus,
        *,
        expected: tuple[SponsorshipStatus, ...],
        signature_hash: Optional[str] = None,
    ) -> Optional[SponsorshipRecord]:
        ...

    def count_sponsorships_since(self, user_id: str, since: datetime) -> int:
        ...

    # Security policies and audit log

    def create_policy(
        self,
        user_id: str,
        *,
        policy_name: str,
        policy_type: str,
        policy_config: dict,
        is_active: bool = True,
    ) -> PolicyRecord:
        ...

    def list_policies(
        self, user_id: str, *, active_only: bool = False
    ) -> list[PolicyRecord]:
        ...

    def update_policy(
        self, policy_id: str, user_id: str, **fields: Any
    ) -> Optional[PolicyRecord]:
        ...

    def append_audit_log(
        self,
        *,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AuditLogRecord:
        ...

    def list_audit_logs(
        self,
        user_id: str,
        *,
        action: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        ...

    def count_audit_logs_since(
        self, user_id: str, action: str, since: datetime
    ) -> int:
        ...

    # Multi-signature wallets

    def create_multisig_wallet(
        self,
        user_id: str,
        *,
        wallet_name: str,
        required_signatures: int,
        total_signers: int,
        wallet_address: str,
        script_hash: str,
        signers: list[dict],
    ) -> MultiSigWalletRecord:
        ...

    def list_multisig_wallets(self, user_id: str) -> list[MultiSigWalletRecord]:
        ...

    def get_multisig_wallet(
        self, wallet_id: str, *, user_id: Optional[str] = None
    ) -> Optional[MultiSigWalletRecord]:
        ...

    def add_wallet_signer(
        self,
        wallet_id: str,
        *,
        signer_address: str,
        public_key: str,
        signer_name: Optional[str] = None,
    ) -> WalletSignerRecord:
        ...

    # Token reports and platform settings

    def create_token_report(
        self,
        *,
        token_id: str,
        reporter_id: str,
        report_type: str,
        description: str,
    ) -> TokenReportRecord:
        ...

    def list_token_reports(
        self,
        *,
        status: Optional[ReportStatus] = None,
        reporter_id: Optional[str] = None,
    ) -> list[TokenReportRecord]:
        ...

    def resolve_token_report(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        admin_notes: str,
        resolved_by: str,
    ) -> Optional[TokenReportRecord]:
        ...

    def list_settings(self, *, public_only: bool = False) -> list[PlatformSettingRecord]:
        ...

    def update_setting(
        self, key: str, value: Any, *, updated_by: str
    ) -> Optional[PlatformSettingRecord]:
        ...

    # Exchange rates

    def list_exchange_rates(self) -> list[ExchangeRateRecord]:
        """Most recently updated first."""
        ...

    def get_exchange_rate(self, token_symbol: str) -> Optional[ExchangeRateRecord]:
        ...

    def upsert_exchange_rates(self, rates: list[dict]) -> list[ExchangeRateRecord]:
        """Insert or replace rates keyed by upper-cased ``token_symbol``."""
        ...

    # Billing mirror

    def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRecord]:
        ...

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlanRecord]:
        ...

    def get_plan_by_price(self, stripe_price_id: str) -> Optional[SubscriptionPlanRecord]:
        ...

    def upsert_payment_transaction(
        self, stripe_payment_intent_id: str, **fields: Any
    ) -> PaymentTransactionRecord:
        ...

    def get_payment_transaction(
        self, stripe_payment_intent_id: str
    ) -> Optional[PaymentTransactionRecord]:
        ...

    def list_payment_transactions(
        self, user_id: str, *, limit: int = 50
    ) -> list[PaymentTransactionRecord]:
        ...

    def upsert_user_subscription(
        self, user_id: str, **fields: Any
    ) -> UserSubscriptionRecord:
        ...

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        ...

    def get_subscription_by_external_id(
        self, stripe_subscription_id: str
    ) -> Optional[UserSubscriptionRecord]:
        ...

    def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[UserSubscriptionRecord]:
        ...

    def has_webhook_event(self, event_id: str) -> bool:
        ...

    def record_webhook_event(self, event_id: str, event_type: str) -> None:
        ...

    # Reporting

    def platform_stats(self, *, since: datetime) -> dict:
        ...

    def snapshot(self) -> dict[str, list[dict]]:
        ...
