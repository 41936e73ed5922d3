"""
In-memory database for development and tests.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, TypeVar

from kepka.db.records import (
    DEFAULT_EXCHANGE_RATES,
    DEFAULT_PLANS,
    DEFAULT_SETTINGS,
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
    new_id,
    utcnow,
)
from kepka.errors import Conflict, NotFound
from kepka.types import (
    PaymentStatus,
    ReportStatus,
    SponsorshipStatus,
    SubscriptionStatus,
    TransactionStatus,
)

T = TypeVar("T")


def _page(
    items: Iterable[T], limit: int, offset: int, key: Callable[[T], Any]
) -> tuple[list[T], int]:
    ordered = sorted(items, key=key, reverse=True)
    return ordered[offset : offset + limit], len(ordered)


class InMemoryDbClient:
    """Simple in-memory database for development and tests.

    Records handed out are copies so callers cannot mutate stored state.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.users: dict[str, UserRecord] = {}
        self.wallet_connections: dict[str, WalletConnectionRecord] = {}
        self.tokens: dict[str, TokenRecord] = {}
        self.transactions: dict[str, TransactionRecord] = {}
        self.sponsorships: dict[str, SponsorshipRecord] = {}
        self.nonces: dict[str, int] = {}
        self.policies: dict[str, PolicyRecord] = {}
        self.audit_logs: dict[str, AuditLogRecord] = {}
        self.multisig_wallets: dict[str, MultiSigWalletRecord] = {}
        self.token_reports: dict[str, TokenReportRecord] = {}
        self.settings: dict[str, PlatformSettingRecord] = {}
        self.exchange_rates: dict[str, ExchangeRateRecord] = {}
        self.plans: dict[str, SubscriptionPlanRecord] = {}
        self.subscriptions: dict[str, UserSubscriptionRecord] = {}
        self.payments: dict[str, PaymentTransactionRecord] = {}
        self.webhook_events: dict[str, str] = {}
        self._seed()

    def _seed(self) -> None:
        for plan in DEFAULT_PLANS:
            record = SubscriptionPlanRecord(id=new_id(), **plan)
            self.plans[record.id] = record
        for key, value, setting_type, description, is_public in DEFAULT_SETTINGS:
            self.settings[key] = PlatformSettingRecord(
                setting_key=key,
                setting_value=value,
                setting_type=setting_type,
                description=description,
                is_public=is_public,
            )
        for rate in DEFAULT_EXCHANGE_RATES:
            self.exchange_rates[rate["token_symbol"]] = ExchangeRateRecord(**rate)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.__init__()

    def ping(self) -> bool:
        return True

    # Users

    def create_user(
        self,
        email: str,
        password_hash: str,
        full_name: Optional[str] = None,
        *,
        is_admin: bool = False,
    ) -> UserRecord:
        with self._lock:
            if self._find_user_by_email(email):
                raise Conflict("A user with this email already exists")
            record = UserRecord(
                id=new_id(),
                email=email.lower(),
                password_hash=password_hash,
                full_name=full_name,
                is_admin=is_admin,
            )
            self.users[record.id] = record
            return copy.deepcopy(record)

    def _find_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.lower()
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return copy.deepcopy(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._find_user_by_email(email)
            return copy.deepcopy(user) if user else None

    def update_user(self, user_id: str, **fields: Any) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(user, **fields, updated_at=utcnow())
            self.users[user_id] = updated
            return copy.deepcopy(updated)

    def list_users(
        self, *, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[UserRecord], int]:
        with self._lock:
            users = list(self.users.values())
            if search:
                needle = search.lower()
                users = [
                    user
                    for user in users
                    if needle in user.email.lower()
                    or needle in (user.full_name or "").lower()
                ]
            page, total = _page(users, limit, offset, key=lambda u: u.created_at)
            return copy.deepcopy(page), total

    def add_wallet_connection(
        self,
        user_id: str,
        wallet_address: str,
        wallet_type: str,
        *,
        is_primary: bool = False,
    ) -> WalletConnectionRecord:
        with self._lock:
            for wallet in self.wallet_connections.values():
                if wallet.user_id == user_id and wallet.wallet_address == wallet_address:
                    raise Conflict("Wallet is already connected")
            if is_primary:
                for wallet in self.wallet_connections.values():
                    if wallet.user_id == user_id:
                        wallet.is_primary = False
            record = WalletConnectionRecord(
                id=new_id(),
                user_id=user_id,
                wallet_address=wallet_address,
                wallet_type=wallet_type,
                is_primary=is_primary,
            )
            self.wallet_connections[record.id] = record
            return copy.deepcopy(record)

    def list_wallet_connections(self, user_id: str) -> list[WalletConnectionRecord]:
        with self._lock:
            wallets = [
                w for w in self.wallet_connections.values() if w.user_id == user_id
            ]
            return copy.deepcopy(
                sorted(wallets, key=lambda w: w.created_at, reverse=True)
            )

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
        with self._lock:
            record = TokenRecord(
                id=new_id(),
                creator_id=creator_id,
                token_name=token_name,
                symbol=symbol,
                policy_id=policy_id,
                asset_name=asset_name,
                decimals=decimals,
                total_supply=total_supply,
                description=description,
                image_url=image_url,
            )
            self.tokens[record.id] = record
            return copy.deepcopy(record)

    def get_token(
        self, token_id: str, *, owner_id: Optional[str] = None
    ) -> Optional[TokenRecord]:
        with self._lock:
            token = self.tokens.get(token_id)
            if not token or (owner_id is not None and token.creator_id != owner_id):
                return None
            return copy.deepcopy(token)

    def update_token(
        self, token_id: str, owner_id: str, **fields: Any
    ) -> Optional[TokenRecord]:
        with self._lock:
            token = self.tokens.get(token_id)
            if not token or token.creator_id != owner_id:
                return None
            updated = replace(token, **fields, updated_at=utcnow())
            self.tokens[token_id] = updated
            return copy.deepcopy(updated)

    def list_tokens(
        self,
        *,
        owner_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TokenRecord], int]:
        with self._lock:
            tokens = [
                t
                for t in self.tokens.values()
                if owner_id is None or t.creator_id == owner_id
            ]
            if search:
                needle = search.lower()
                tokens = [
                    t
                    for t in tokens
                    if needle in t.token_name.lower() or needle in t.symbol.lower()
                ]
            page, total = _page(tokens, limit, offset, key=lambda t: t.created_at)
            return copy.deepcopy(page), total

    def adjust_token_supply(self, token_id: str, delta: int) -> TokenRecord:
        with self._lock:
            token = self.tokens.get(token_id)
            if not token:
                raise NotFound("Token not found")
            if token.total_supply + delta < 0:
                raise Conflict("Burn amount exceeds token supply")
            token.total_supply += delta
            token.updated_at = utcnow()
            return copy.deepcopy(token)

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
        with self._lock:
            for existing in self.transactions.values():
                if existing.tx_hash == tx_hash:
                    raise Conflict("A transaction with this hash already exists")
            record = TransactionRecord(
                id=new_id(),
                user_id=user_id,
                token_id=token_id,
                transaction_type=transaction_type,
                amount=amount,
                tx_hash=tx_hash,
                fee_ada=fee_ada,
                metadata=metadata,
            )
            self.transactions[record.id] = record
            return copy.deepcopy(record)

    def get_transaction(
        self, transaction_id: str, *, user_id: Optional[str] = None
    ) -> Optional[TransactionRecord]:
        with self._lock:
            tx = self.transactions.get(transaction_id)
            if not tx or (user_id is not None and tx.user_id != user_id):
                return None
            return copy.deepcopy(tx)

    def list_transactions(
        self,
        user_id: str,
        *,
        transaction_type: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TransactionRecord], int]:
        with self._lock:
            txs = [
                tx
                for tx in self.transactions.values()
                if tx.user_id == user_id
                and (transaction_type is None or tx.transaction_type == transaction_type)
                and (status is None or tx.status == status)
            ]
            page, total = _page(txs, limit, offset, key=lambda t: t.created_at)
            return copy.deepcopy(page), total

    def set_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        expected: TransactionStatus,
    ) -> Optional[TransactionRecord]:
        with self._lock:
            tx = self.transactions.get(transaction_id)
            if not tx or tx.status != expected:
                return None
            tx.status = status
            tx.updated_at = utcnow()
            return copy.deepcopy(tx)

    # Gasless sponsorships

    def allocate_nonce(self, user_id: str) -> int:
        with self._lock:
            nonce = self.nonces.get(user_id, 0) + 1
            self.nonces[user_id] = nonce
            return nonce

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
        with self._lock:
            for existing in self.sponsorships.values():
                if existing.user_id == user_id and existing.nonce == nonce:
                    raise Conflict("Nonce already used")
                if (
                    existing.transaction_id == transaction_id
                    and existing.status is not SponsorshipStatus.FAILED
                ):
                    raise Conflict("Transaction already has a live sponsorship")
            record = SponsorshipRecord(
                id=new_id(),
                user_id=user_id,
                transaction_id=transaction_id,
                sponsor_address=sponsor_address,
                gas_fee_ada=gas_fee_ada,
                nonce=nonce,
                expires_at=expires_at,
                status=status,
            )
            self.sponsorships[record.id] = record
            return copy.deepcopy(record)

    def get_sponsorship(
        self, sponsorship_id: str, *, user_id: Optional[str] = None
    ) -> Optional[SponsorshipRecord]:
        with self._lock:
            record = self.sponsorships.get(sponsorship_id)
            if not record or (user_id is not None and record.user_id != user_id):
                return None
            return copy.deepcopy(record)

    def list_sponsorships(
        self,
        *,
        user_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> list[SponsorshipRecord]:
        with self._lock:
            records = [
                r
                for r in self.sponsorships.values()
                if (user_id is None or r.user_id == user_id)
                and (transaction_id is None or r.transaction_id == transaction_id)
            ]
            return copy.deepcopy(
                sorted(records, key=lambda r: r.created_at, reverse=True)
            )

    def set_sponsorship_status(
        self,
        sponsorship_id: str,
        status: SponsorshipStatus,
        *,
        expected: tuple[SponsorshipStatus, ...],
        signature_hash: Optional[str] = None,
    ) -> Optional[SponsorshipRecord]:
        with self._lock:
            record = self.sponsorships.get(sponsorship_id)
            if not record or record.status not in expected:
                return None
            record.status = status
            if signature_hash is not None:
                record.signature_hash = signature_hash
            record.updated_at = utcnow()
            return copy.deepcopy(record)

    def count_sponsorships_since(self, user_id: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1
                for r in self.sponsorships.values()
                if r.user_id == user_id and r.created_at >= since
            )

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
        with self._lock:
            record = PolicyRecord(
                id=new_id(),
                user_id=user_id,
                policy_name=policy_name,
                policy_type=policy_type,
                policy_config=dict(policy_config),
                is_active=is_active,
            )
            self.policies[record.id] = record
            return copy.deepcopy(record)

    def list_policies(
        self, user_id: str, *, active_only: bool = False
    ) -> list[PolicyRecord]:
        with self._lock:
            policies = [
                p
                for p in self.policies.values()
                if p.user_id == user_id and (p.is_active or not active_only)
            ]
            return copy.deepcopy(
                sorted(policies, key=lambda p: p.created_at, reverse=True)
            )

    def update_policy(
        self, policy_id: str, user_id: str, **fields: Any
    ) -> Optional[PolicyRecord]:
        with self._lock:
            policy = self.policies.get(policy_id)
            if not policy or policy.user_id != user_id:
                return None
            updated = replace(policy, **fields)
            self.policies[policy_id] = updated
            return copy.deepcopy(updated)

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
        with self._lock:
            record = AuditLogRecord(
                id=new_id(),
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata=copy.deepcopy(metadata),
            )
            self.audit_logs[record.id] = record
            return copy.deepcopy(record)

    def list_audit_logs(
        self,
        user_id: str,
        *,
        action: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        with self._lock:
            logs = [
                log
                for log in self.audit_logs.values()
                if log.user_id == user_id and (action is None or log.action == action)
            ]
            page, total = _page(logs, limit, offset, key=lambda log: log.created_at)
            return copy.deepcopy(page), total

    def count_audit_logs_since(
        self, user_id: str, action: str, since: datetime
    ) -> int:
        with self._lock:
            return sum(
                1
                for log in self.audit_logs.values()
                if log.user_id == user_id
                and log.action == action
                and log.created_at >= since
            )

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
        with self._lock:
            for wallet in self.multisig_wallets.values():
                if wallet.wallet_address == wallet_address:
                    raise Conflict("A wallet with this address already exists")
            addresses = [s["signer_address"] for s in signers]
            if len(set(addresses)) != len(addresses):
                raise Conflict("Duplicate signer address")
            wallet_id = new_id()
            record = MultiSigWalletRecord(
                id=wallet_id,
                user_id=user_id,
                wallet_name=wallet_name,
                required_signatures=required_signatures,
                total_signers=total_signers,
                wallet_address=wallet_address,
                script_hash=script_hash,
                signers=[
                    WalletSignerRecord(
                        id=new_id(),
                        wallet_id=wallet_id,
                        signer_address=s["signer_address"],
                        public_key=s["public_key"],
                        signer_name=s.get("signer_name"),
                    )
                    for s in signers
                ],
            )
            self.multisig_wallets[wallet_id] = record
            return copy.deepcopy(record)

    def list_multisig_wallets(self, user_id: str) -> list[MultiSigWalletRecord]:
        with self._lock:
            wallets = [
                w for w in self.multisig_wallets.values() if w.user_id == user_id
            ]
            return copy.deepcopy(
                sorted(wallets, key=lambda w: w.created_at, reverse=True)
            )

    def get_multisig_wallet(
        self, wallet_id: str, *, user_id: Optional[str] = None
    ) -> Optional[MultiSigWalletRecord]:
        with self._lock:
            wallet = self.multisig_wallets.get(wallet_id)
            if not wallet or (user_id is not None and wallet.user_id != user_id):
                return None
            return copy.deepcopy(wallet)

    def add_wallet_signer(
        self,
        wallet_id: str,
        *,
        signer_address: str,
        public_key: str,
        signer_name: Optional[str] = None,
    ) -> WalletSignerRecord:
        with self._lock:
            wallet = self.multisig_wallets.get(wallet_id)
            if not wallet:
                raise NotFound("Multi-sig wallet not found")
            if any(s.signer_address == signer_address for s in wallet.signers):
                raise Conflict("This signer address is already added to the wallet")
            signer = WalletSignerRecord(
                id=new_id(),
                wallet_id=wallet_id,
                signer_address=signer_address,
                public_key=public_key,
                signer_name=signer_name,
            )
            wallet.signers.append(signer)
            return copy.deepcopy(signer)

    # Token reports and platform settings

    def create_token_report(
        self,
        *,
        token_id: str,
        reporter_id: str,
        report_type: str,
        description: str,
    ) -> TokenReportRecord:
        with self._lock:
            record = TokenReportRecord(
                id=new_id(),
                token_id=token_id,
                reporter_id=reporter_id,
                report_type=report_type,
                description=description,
            )
            self.token_reports[record.id] = record
            return copy.deepcopy(record)

    def list_token_reports(
        self,
        *,
        status: Optional[ReportStatus] = None,
        reporter_id: Optional[str] = None,
    ) -> list[TokenReportRecord]:
        with self._lock:
            reports = [
                r
                for r in self.token_reports.values()
                if (status is None or r.status == status)
                and (reporter_id is None or r.reporter_id == reporter_id)
            ]
            return copy.deepcopy(
                sorted(reports, key=lambda r: r.created_at, reverse=True)
            )

    def resolve_token_report(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        admin_notes: str,
        resolved_by: str,
    ) -> Optional[TokenReportRecord]:
        with self._lock:
            report = self.token_reports.get(report_id)
            if not report:
                return None
            report.status = status
            report.admin_notes = admin_notes
            report.resolved_by = resolved_by
            report.resolved_at = utcnow()
            return copy.deepcopy(report)

    def list_settings(self, *, public_only: bool = False) -> list[PlatformSettingRecord]:
        with self._lock:
            settings = [
                s for s in self.settings.values() if s.is_public or not public_only
            ]
            return copy.deepcopy(sorted(settings, key=lambda s: s.setting_key))

    def update_setting(
        self, key: str, value: Any, *, updated_by: str
    ) -> Optional[PlatformSettingRecord]:
        with self._lock:
            setting = self.settings.get(key)
            if not setting:
                return None
            setting.setting_value = copy.deepcopy(value)
            setting.updated_by = updated_by
            setting.updated_at = utcnow()
            return copy.deepcopy(setting)

    # Exchange rates

    def list_exchange_rates(self) -> list[ExchangeRateRecord]:
        with self._lock:
            return copy.deepcopy(
                sorted(self.exchange_rates.values(), key=lambda r: r.updated_at, reverse=True)
            )

    def get_exchange_rate(self, token_symbol: str) -> Optional[ExchangeRateRecord]:
        with self._lock:
            return copy.deepcopy(self.exchange_rates.get(token_symbol.upper()))

    def upsert_exchange_rates(self, rates: list[dict]) -> list[ExchangeRateRecord]:
        with self._lock:
            now = utcnow()
            saved = []
            for rate in rates:
                symbol = rate["token_symbol"].upper()
                existing = self.exchange_rates.get(symbol)
                record = ExchangeRateRecord(
                    **{**rate, "token_symbol": symbol},
                    id=existing.id if existing else new_id(),
                    updated_at=now,
                )
                self.exchange_rates[symbol] = record
                saved.append(copy.deepcopy(record))
            return saved

    # Billing mirror

    def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRecord]:
        with self._lock:
            plans = [p for p in self.plans.values() if p.is_active or not active_only]
            return copy.deepcopy(sorted(plans, key=lambda p: p.price_cents))

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlanRecord]:
        with self._lock:
            plan = self.plans.get(plan_id)
            return copy.deepcopy(plan) if plan else None

    def get_plan_by_price(self, stripe_price_id: str) -> Optional[SubscriptionPlanRecord]:
        with self._lock:
            for plan in self.plans.values():
                if plan.stripe_price_id == stripe_price_id:
                    return copy.deepcopy(plan)
            return None

    def upsert_payment_transaction(
        self, stripe_payment_intent_id: str, **fields: Any
    ) -> PaymentTransactionRecord:
        with self._lock:
            existing = self.payments.get(stripe_payment_intent_id)
            if existing:
                updated = replace(existing, **fields, updated_at=utcnow())
            else:
                fields.setdefault("amount_cents", 0)
                fields.setdefault("status", PaymentStatus.PENDING)
                fields.setdefault("user_id", None)
                updated = PaymentTransactionRecord(
                    id=new_id(),
                    stripe_payment_intent_id=stripe_payment_intent_id,
                    **fields,
                )
            self.payments[stripe_payment_intent_id] = updated
            return copy.deepcopy(updated)

    def get_payment_transaction(
        self, stripe_payment_intent_id: str
    ) -> Optional[PaymentTransactionRecord]:
        with self._lock:
            record = self.payments.get(stripe_payment_intent_id)
            return copy.deepcopy(record) if record else None

    def list_payment_transactions(
        self, user_id: str, *, limit: int = 50
    ) -> list[PaymentTransactionRecord]:
        with self._lock:
            records = [p for p in self.payments.values() if p.user_id == user_id]
            page, _ = _page(records, limit, 0, key=lambda p: p.created_at)
            return copy.deepcopy(page)

    def upsert_user_subscription(
        self, user_id: str, **fields: Any
    ) -> UserSubscriptionRecord:
        with self._lock:
            existing = None
            external_id = fields.get("stripe_subscription_id")
            if external_id:
                existing = self._subscription_by(
                    lambda s: s.stripe_subscription_id == external_id
                )
            if existing is None:
                existing = self._subscription_by(lambda s: s.user_id == user_id)
            if existing:
                updated = replace(existing, **fields, updated_at=utcnow())
            else:
                fields.setdefault("status", SubscriptionStatus.INCOMPLETE)
                updated = UserSubscriptionRecord(id=new_id(), user_id=user_id, **fields)
            self.subscriptions[updated.id] = updated
            return copy.deepcopy(updated)

    def _subscription_by(
        self, predicate: Callable[[UserSubscriptionRecord], bool]
    ) -> Optional[UserSubscriptionRecord]:
        for sub in self.subscriptions.values():
            if predicate(sub):
                return sub
        return None

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        with self._lock:
            sub = self._subscription_by(lambda s: s.user_id == user_id)
            return copy.deepcopy(sub) if sub else None

    def get_subscription_by_external_id(
        self, stripe_subscription_id: str
    ) -> Optional[UserSubscriptionRecord]:
        with self._lock:
            sub = self._subscription_by(
                lambda s: s.stripe_subscription_id == stripe_subscription_id
            )
            return copy.deepcopy(sub) if sub else None

    def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[UserSubscriptionRecord]:
        with self._lock:
            sub = self._subscription_by(
                lambda s: s.stripe_customer_id == stripe_customer_id
            )
            return copy.deepcopy(sub) if sub else None

    def has_webhook_event(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self.webhook_events

    def record_webhook_event(self, event_id: str, event_type: str) -> None:
        with self._lock:
            self.webhook_events.setdefault(event_id, event_type)

    # Reporting

    def platform_stats(self, *, since: datetime) -> dict:
        with self._lock:
            return {
                "total_users": len(self.users),
                "total_tokens": len(self.tokens),
                "total_transactions": len(self.transactions),
                "total_gasless_transactions": len(self.sponsorships),
                "active_multi_sig_wallets": sum(
                    1 for w in self.multisig_wallets.values() if w.is_active
                ),
                "pending_reports": sum(
                    1
                    for r in self.token_reports.values()
                    if r.status == ReportStatus.PENDING
                ),
                "total_volume_ada": sum(
                    r.gas_fee_ada
                    for r in self.sponsorships.values()
                    if r.status == SponsorshipStatus.EXECUTED
                ),
                "active_subscriptions": sum(
                    1
                    for s in self.subscriptions.values()
                    if s.status == SubscriptionStatus.ACTIVE
                ),
                "recent_24h": {
                    "new_users": sum(
                        1 for u in self.users.values() if u.created_at >= since
                    ),
                    "new_tokens": sum(
                        1 for t in self.tokens.values() if t.created_at >= since
                    ),
                    "new_transactions": sum(
                        1 for t in self.transactions.values() if t.created_at >= since
                    ),
                },
            }

    def snapshot(self) -> dict[str, list[dict]]:
        with self._lock:
            return {
                "profiles": [u.as_dict() for u in self.users.values()],
                "wallet_connections": [
                    w.as_dict() for w in self.wallet_connections.values()
                ],
                "tokens": [t.as_dict() for t in self.tokens.values()],
                "transactions": [t.as_dict() for t in self.transactions.values()],
                "gasless_transactions": [
                    s.as_dict() for s in self.sponsorships.values()
                ],
                "security_policies": [p.as_dict() for p in self.policies.values()],
                "audit_logs": [a.as_dict() for a in self.audit_logs.values()],
                "multi_sig_wallets": [
                    w.as_dict() for w in self.multisig_wallets.values()
                ],
                "token_reports": [r.as_dict() for r in self.token_reports.values()],
                "platform_settings": [s.as_dict() for s in self.settings.values()],
                "exchange_rates": [r.as_dict() for r in self.exchange_rates.values()],
                "subscription_plans": [p.as_dict() for p in self.plans.values()],
                "user_subscriptions": [
                    s.as_dict() for s in self.subscriptions.values()
                ],
                "payment_transactions": [p.as_dict() for p in self.payments.values()],
            }
