"""
SQLAlchemy-backed DbClient. Accepts any SQLAlchemy URL (Postgres in
production, SQLite for tests).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

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
from kepka.errors import Conflict, NotFound, UpstreamError
from kepka.types import (
    PaymentStatus,
    ReportStatus,
    SettingType,
    SponsorshipStatus,
    SubscriptionStatus,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

NONCE_RETRY_LIMIT = 16


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _apply(row: Any, fields: dict) -> None:
    for key, value in fields.items():
        setattr(row, key, value.value if isinstance(value, Enum) else value)


def _count(session: Session, stmt) -> int:
    return session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()


class SqlDbClient:
    """
    SQLAlchemy-backed implementation of DbClient.
    """

    def __init__(self, database_url: str, *, create_schema: bool = True):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            Base.metadata.create_all(self.engine)
            self._seed()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
        except IntegrityError as exc:
            session.rollback()
            raise Conflict("Resource already exists") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Database operation failed")
            raise UpstreamError("Database operation failed") from exc
        finally:
            session.close()

    def _seed(self) -> None:
        with self._session() as session:
            known_prices = set(session.execute(select(PlanRow.stripe_price_id)).scalars())
            for plan in DEFAULT_PLANS:
                if plan["stripe_price_id"] not in known_prices:
                    session.add(PlanRow(id=new_id(), currency="usd", is_active=True, **plan))
            known_keys = set(session.execute(select(SettingRow.setting_key)).scalars())
            for key, value, setting_type, description, is_public in DEFAULT_SETTINGS:
                if key not in known_keys:
                    session.add(
                        SettingRow(
                            setting_key=key,
                            setting_value=value,
                            setting_type=setting_type.value,
                            description=description,
                            is_public=is_public,
                            updated_at=utcnow(),
                        )
                    )
            known_symbols = set(
                session.execute(select(ExchangeRateRow.token_symbol)).scalars()
            )
            for rate in DEFAULT_EXCHANGE_RATES:
                if rate["token_symbol"] not in known_symbols:
                    session.add(ExchangeRateRow(id=new_id(), updated_at=utcnow(), **rate))
            session.commit()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    # Users

    def _to_user(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            password_hash=row.password_hash,
            full_name=row.full_name,
            wallet_address=row.wallet_address,
            is_admin=row.is_admin,
            is_suspended=row.is_suspended,
            suspension_reason=row.suspension_reason,
            suspended_at=_aware(row.suspended_at),
            suspended_by=row.suspended_by,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def create_user(
        self,
        email: str,
        password_hash: str,
        full_name: Optional[str] = None,
        *,
        is_admin: bool = False,
    ) -> UserRecord:
        now = utcnow()
        with self._session() as session:
            existing = session.execute(
                select(UserRow.id).where(UserRow.email == email.lower())
            ).first()
            if existing:
                raise Conflict("A user with this email already exists")
            row = UserRow(
                id=new_id(),
                email=email.lower(),
                password_hash=password_hash,
                full_name=full_name,
                is_admin=is_admin,
                is_suspended=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_user(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email.lower())
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, user_id: str, **fields: Any) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            _apply(row, fields)
            row.updated_at = utcnow()
            session.commit()
            return self._to_user(row)

    def list_users(
        self, *, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[UserRecord], int]:
        with self._session() as session:
            stmt = select(UserRow)
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(UserRow.email.ilike(pattern), UserRow.full_name.ilike(pattern))
                )
            total = _count(session, stmt)
            rows = session.execute(
                stmt.order_by(UserRow.created_at.desc()).limit(limit).offset(offset)
            ).scalars()
            return [self._to_user(row) for row in rows], total

    def _to_wallet_connection(self, row: "WalletConnectionRow") -> WalletConnectionRecord:
        return WalletConnectionRecord(
            id=row.id,
            user_id=row.user_id,
            wallet_address=row.wallet_address,
            wallet_type=row.wallet_type,
            is_primary=row.is_primary,
            is_verified=row.is_verified,
            created_at=_aware(row.created_at),
        )

    def add_wallet_connection(
        self,
        user_id: str,
        wallet_address: str,
        wallet_type: str,
        *,
        is_primary: bool = False,
    ) -> WalletConnectionRecord:
        with self._session() as session:
            if is_primary:
                session.execute(
                    update(WalletConnectionRow)
                    .where(WalletConnectionRow.user_id == user_id)
                    .values(is_primary=False)
                )
            row = WalletConnectionRow(
                id=new_id(),
                user_id=user_id,
                wallet_address=wallet_address,
                wallet_type=wallet_type,
                is_primary=is_primary,
                is_verified=False,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_wallet_connection(row)

    def list_wallet_connections(self, user_id: str) -> list[WalletConnectionRecord]:
        with self._session() as session:
            rows = session.execute(
                select(WalletConnectionRow)
                .where(WalletConnectionRow.user_id == user_id)
                .order_by(WalletConnectionRow.created_at.desc())
            ).scalars()
            return [self._to_wallet_connection(row) for row in rows]

    # Tokens

    def _to_token(self, row: "TokenRow") -> TokenRecord:
        return TokenRecord(
            id=row.id,
            creator_id=row.creator_id,
            token_name=row.token_name,
            symbol=row.symbol,
            policy_id=row.policy_id,
            asset_name=row.asset_name,
            decimals=row.decimals,
            total_supply=row.total_supply,
            description=row.description,
            image_url=row.image_url,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

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
        now = utcnow()
        with self._session() as session:
            row = TokenRow(
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
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_token(row)

    def get_token(
        self, token_id: str, *, owner_id: Optional[str] = None
    ) -> Optional[TokenRecord]:
        with self._session() as session:
            row = session.get(TokenRow, token_id)
            if not row or (owner_id is not None and row.creator_id != owner_id):
                return None
            return self._to_token(row)

    def update_token(
        self, token_id: str, owner_id: str, **fields: Any
    ) -> Optional[TokenRecord]:
        with self._session() as session:
            row = session.get(TokenRow, token_id)
            if not row or row.creator_id != owner_id:
                return None
            _apply(row, fields)
            row.updated_at = utcnow()
            session.commit()
            return self._to_token(row)

    def list_tokens(
        self,
        *,
        owner_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TokenRecord], int]:
        with self._session() as session:
            stmt = select(TokenRow)
            if owner_id is not None:
                stmt = stmt.where(TokenRow.creator_id == owner_id)
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(TokenRow.token_name.ilike(pattern), TokenRow.symbol.ilike(pattern))
                )
            total = _count(session, stmt)
            rows = session.execute(
                stmt.order_by(TokenRow.created_at.desc()).limit(limit).offset(offset)
            ).scalars()
            return [self._to_token(row) for row in rows], total

    def adjust_token_supply(self, token_id: str, delta: int) -> TokenRecord:
        with self._session() as session:
            # Single conditional UPDATE so concurrent burns cannot go negative.
            result = session.execute(
                update(TokenRow)
                .where(TokenRow.id == token_id, TokenRow.total_supply + delta >= 0)
                .values(total_supply=TokenRow.total_supply + delta, updated_at=utcnow())
            )
            if result.rowcount != 1:
                session.rollback()
                if session.get(TokenRow, token_id) is None:
                    raise NotFound("Token not found")
                raise Conflict("Burn amount exceeds token supply")
            session.commit()
            return self._to_token(session.get(TokenRow, token_id))

    # Transactions

    def _to_transaction(self, row: "TransactionRow") -> TransactionRecord:
        return TransactionRecord(
            id=row.id,
            user_id=row.user_id,
            token_id=row.token_id,
            transaction_type=row.transaction_type,
            amount=row.amount,
            tx_hash=row.tx_hash,
            fee_ada=row.fee_ada,
            status=TransactionStatus(row.status),
            metadata=row.meta,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

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
        now = utcnow()
        with self._session() as session:
            row = TransactionRow(
                id=new_id(),
                user_id=user_id,
                token_id=token_id,
                transaction_type=transaction_type,
                amount=amount,
                tx_hash=tx_hash,
                fee_ada=fee_ada,
                status=TransactionStatus.PENDING.value,
                meta=metadata,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_transaction(row)

    def get_transaction(
        self, transaction_id: str, *, user_id: Optional[str] = None
    ) -> Optional[TransactionRecord]:
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            if not row or (user_id is not None and row.user_id != user_id):
                return None
            return self._to_transaction(row)

    def list_transactions(
        self,
        user_id: str,
        *,
        transaction_type: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TransactionRecord], int]:
        with self._session() as session:
            stmt = select(TransactionRow).where(TransactionRow.user_id == user_id)
            if transaction_type:
                stmt = stmt.where(TransactionRow.transaction_type == transaction_type)
            if status:
                stmt = stmt.where(TransactionRow.status == status.value)
            total = _count(session, stmt)
            rows = session.execute(
                stmt.order_by(TransactionRow.created_at.desc()).limit(limit).offset(offset)
            ).scalars()
            return [self._to_transaction(row) for row in rows], total

    def set_transaction_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        expected: TransactionStatus,
    ) -> Optional[TransactionRecord]:
        with self._session() as session:
            result = session.execute(
                update(TransactionRow)
                .where(
                    TransactionRow.id == transaction_id,
                    TransactionRow.status == expected.value,
                )
                .values(status=status.value, updated_at=utcnow())
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            return self._to_transaction(session.get(TransactionRow, transaction_id))

    # Gasless sponsorships

    def allocate_nonce(self, user_id: str) -> int:
        """Compare-and-swap on the per-user counter row, retried on contention."""
        for _ in range(NONCE_RETRY_LIMIT):
            with self._session() as session:
                current = session.execute(
                    select(NonceRow.value).where(NonceRow.user_id == user_id)
                ).scalar_one_or_none()
                if current is None:
                    session.add(NonceRow(user_id=user_id, value=1))
                    try:
                        session.commit()
                    except IntegrityError:
                        session.rollback()
                        continue
                    return 1
                result = session.execute(
                    update(NonceRow)
                    .where(NonceRow.user_id == user_id, NonceRow.value == current)
                    .values(value=current + 1)
                )
                if result.rowcount == 1:
                    session.commit()
                    return current + 1
                session.rollback()
        raise UpstreamError("Unable to allocate nonce")

    def _to_sponsorship(self, row: "SponsorshipRow") -> SponsorshipRecord:
        return SponsorshipRecord(
            id=row.id,
            user_id=row.user_id,
            transaction_id=row.transaction_id,
            sponsor_address=row.sponsor_address,
            gas_fee_ada=row.gas_fee_ada,
            nonce=row.nonce,
            expires_at=_aware(row.expires_at),
            status=SponsorshipStatus(row.status),
            signature_hash=row.signature_hash,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

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
        now = utcnow()
        with self._session() as session:
            row = SponsorshipRow(
                id=new_id(),
                user_id=user_id,
                transaction_id=transaction_id,
                sponsor_address=sponsor_address,
                gas_fee_ada=gas_fee_ada,
                nonce=nonce,
                expires_at=expires_at,
                status=status.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_sponsorship(row)

    def get_sponsorship(
        self, sponsorship_id: str, *, user_id: Optional[str] = None
    ) -> Optional[SponsorshipRecord]:
        with self._session() as session:
            row = session.get(SponsorshipRow, sponsorship_id)
            if not row or (user_id is not None and row.user_id != user_id):
                return None
            return self._to_sponsorship(row)

    def list_sponsorships(
        self,
        *,
        user_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> list[SponsorshipRecord]:
        with self._session() as session:
            stmt = select(SponsorshipRow)
            if user_id is not None:
                stmt = stmt.where(SponsorshipRow.user_id == user_id)
            if transaction_id is not None:
                stmt = stmt.where(SponsorshipRow.transaction_id == transaction_id)
            rows = session.execute(
                stmt.order_by(SponsorshipRow.created_at.desc())
            ).scalars()
            return [self._to_sponsorship(row) for row in rows]

    def set_sponsorship_status(
        self,
        sponsorship_id: str,
        status: SponsorshipStatus,
        *,
        expected: tuple[SponsorshipStatus, ...],
        signature_hash: Optional[str] = None,
    ) -> Optional[SponsorshipRecord]:
        values: dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
        if signature_hash is not None:
            values["signature_hash"] = signature_hash
        with self._session() as session:
            result = session.execute(
                update(SponsorshipRow)
                .where(
                    SponsorshipRow.id == sponsorship_id,
                    SponsorshipRow.status.in_([s.value for s in expected]),
                )
                .values(**values)
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            return self._to_sponsorship(session.get(SponsorshipRow, sponsorship_id))

    def count_sponsorships_since(self, user_id: str, since: datetime) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count())
                .select_from(SponsorshipRow)
                .where(
                    SponsorshipRow.user_id == user_id,
                    SponsorshipRow.created_at >= since,
                )
            ).scalar_one()

    # Security policies and audit log

    def _to_policy(self, row: "PolicyRow") -> PolicyRecord:
        return PolicyRecord(
            id=row.id,
            user_id=row.user_id,
            policy_name=row.policy_name,
            policy_type=row.policy_type,
            policy_config=dict(row.policy_config or {}),
            is_active=row.is_active,
            created_at=_aware(row.created_at),
        )

    def create_policy(
        self,
        user_id: str,
        *,
        policy_name: str,
        policy_type: str,
        policy_config: dict,
        is_active: bool = True,
    ) -> PolicyRecord:
        with self._session() as session:
            row = PolicyRow(
                id=new_id(),
                user_id=user_id,
                policy_name=policy_name,
                policy_type=policy_type,
                policy_config=policy_config,
                is_active=is_active,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_policy(row)

    def list_policies(
        self, user_id: str, *, active_only: bool = False
    ) -> list[PolicyRecord]:
        with self._session() as session:
            stmt = select(PolicyRow).where(PolicyRow.user_id == user_id)
            if active_only:
                stmt = stmt.where(PolicyRow.is_active.is_(True))
            rows = session.execute(stmt.order_by(PolicyRow.created_at.desc())).scalars()
            return [self._to_policy(row) for row in rows]

    def update_policy(
        self, policy_id: str, user_id: str, **fields: Any
    ) -> Optional[PolicyRecord]:
        with self._session() as session:
            row = session.get(PolicyRow, policy_id)
            if not row or row.user_id != user_id:
                return None
            _apply(row, fields)
            session.commit()
            return self._to_policy(row)

    def _to_audit_log(self, row: "AuditLogRow") -> AuditLogRecord:
        return AuditLogRecord(
            id=row.id,
            user_id=row.user_id,
            action=row.action,
            resource_type=row.resource_type,
            resource_id=row.resource_id,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            metadata=row.meta,
            created_at=_aware(row.created_at),
        )

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
        with self._session() as session:
            row = AuditLogRow(
                id=new_id(),
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                ip_address=ip_address,
                user_agent=user_agent,
                meta=metadata,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_audit_log(row)

    def list_audit_logs(
        self,
        user_id: str,
        *,
        action: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        with self._session() as session:
            stmt = select(AuditLogRow).where(AuditLogRow.user_id == user_id)
            if action:
                stmt = stmt.where(AuditLogRow.action == action)
            total = _count(session, stmt)
            rows = session.execute(
                stmt.order_by(AuditLogRow.created_at.desc()).limit(limit).offset(offset)
            ).scalars()
            return [self._to_audit_log(row) for row in rows], total

    def count_audit_logs_since(
        self, user_id: str, action: str, since: datetime
    ) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count())
                .select_from(AuditLogRow)
                .where(
                    AuditLogRow.user_id == user_id,
                    AuditLogRow.action == action,
                    AuditLogRow.created_at >= since,
                )
            ).scalar_one()

    # Multi-signature wallets

    def _to_signer(self, row: "WalletSignerRow") -> WalletSignerRecord:
        return WalletSignerRecord(
            id=row.id,
            wallet_id=row.wallet_id,
            signer_address=row.signer_address,
            public_key=row.public_key,
            signer_name=row.signer_name,
            is_verified=row.is_verified,
            added_at=_aware(row.added_at),
        )

    def _to_wallet(
        self, row: "MultiSigWalletRow", signers: list["WalletSignerRow"]
    ) -> MultiSigWalletRecord:
        return MultiSigWalletRecord(
            id=row.id,
            user_id=row.user_id,
            wallet_name=row.wallet_name,
            required_signatures=row.required_signatures,
            total_signers=row.total_signers,
            wallet_address=row.wallet_address,
            script_hash=row.script_hash,
            is_active=row.is_active,
            signers=[self._to_signer(s) for s in signers],
            created_at=_aware(row.created_at),
        )

    def _signers_for(self, session: Session, wallet_id: str) -> list["WalletSignerRow"]:
        return list(
            session.execute(
                select(WalletSignerRow)
                .where(WalletSignerRow.wallet_id == wallet_id)
                .order_by(WalletSignerRow.added_at.asc())
            ).scalars()
        )

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
        now = utcnow()
        with self._session() as session:
            wallet = MultiSigWalletRow(
                id=new_id(),
                user_id=user_id,
                wallet_name=wallet_name,
                required_signatures=required_signatures,
                total_signers=total_signers,
                wallet_address=wallet_address,
                script_hash=script_hash,
                is_active=True,
                created_at=now,
            )
            signer_rows = [
                WalletSignerRow(
                    id=new_id(),
                    wallet_id=wallet.id,
                    signer_address=s["signer_address"],
                    signer_name=s.get("signer_name"),
                    public_key=s["public_key"],
                    is_verified=False,
                    added_at=now,
                )
                for s in signers
            ]
            # Wallet and signers commit together.
            session.add(wallet)
            session.add_all(signer_rows)
            session.commit()
            return self._to_wallet(wallet, signer_rows)

    def list_multisig_wallets(self, user_id: str) -> list[MultiSigWalletRecord]:
        with self._session() as session:
            rows = session.execute(
                select(MultiSigWalletRow)
                .where(MultiSigWalletRow.user_id == user_id)
                .order_by(MultiSigWalletRow.created_at.desc())
            ).scalars()
            return [self._to_wallet(row, self._signers_for(session, row.id)) for row in rows]

    def get_multisig_wallet(
        self, wallet_id: str, *, user_id: Optional[str] = None
    ) -> Optional[MultiSigWalletRecord]:
        with self._session() as session:
            row = session.get(MultiSigWalletRow, wallet_id)
            if not row or (user_id is not None and row.user_id != user_id):
                return None
            return self._to_wallet(row, self._signers_for(session, row.id))

    def add_wallet_signer(
        self,
        wallet_id: str,
        *,
        signer_address: str,
        public_key: str,
        signer_name: Optional[str] = None,
    ) -> WalletSignerRecord:
        with self._session() as session:
            if session.get(MultiSigWalletRow, wallet_id) is None:
                raise NotFound("Multi-sig wallet not found")
            row = WalletSignerRow(
                id=new_id(),
                wallet_id=wallet_id,
                signer_address=signer_address,
                signer_name=signer_name,
                public_key=public_key,
                is_verified=False,
                added_at=utcnow(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict(
                    "This signer address is already added to the wallet"
                ) from exc
            return self._to_signer(row)

    # Token reports and platform settings

    def _to_report(self, row: "TokenReportRow") -> TokenReportRecord:
        return TokenReportRecord(
            id=row.id,
            token_id=row.token_id,
            reporter_id=row.reporter_id,
            report_type=row.report_type,
            description=row.description,
            status=ReportStatus(row.status),
            admin_notes=row.admin_notes,
            resolved_by=row.resolved_by,
            resolved_at=_aware(row.resolved_at),
            created_at=_aware(row.created_at),
        )

    def create_token_report(
        self,
        *,
        token_id: str,
        reporter_id: str,
        report_type: str,
        description: str,
    ) -> TokenReportRecord:
        with self._session() as session:
            row = TokenReportRow(
                id=new_id(),
                token_id=token_id,
                reporter_id=reporter_id,
                report_type=report_type,
                description=description,
                status=ReportStatus.PENDING.value,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_report(row)

    def list_token_reports(
        self,
        *,
        status: Optional[ReportStatus] = None,
        reporter_id: Optional[str] = None,
    ) -> list[TokenReportRecord]:
        with self._session() as session:
            stmt = select(TokenReportRow)
            if status is not None:
                stmt = stmt.where(TokenReportRow.status == status.value)
            if reporter_id is not None:
                stmt = stmt.where(TokenReportRow.reporter_id == reporter_id)
            rows = session.execute(
                stmt.order_by(TokenReportRow.created_at.desc())
            ).scalars()
            return [self._to_report(row) for row in rows]

    def resolve_token_report(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        admin_notes: str,
        resolved_by: str,
    ) -> Optional[TokenReportRecord]:
        with self._session() as session:
            row = session.get(TokenReportRow, report_id)
            if not row:
                return None
            row.status = status.value
            row.admin_notes = admin_notes
            row.resolved_by = resolved_by
            row.resolved_at = utcnow()
            session.commit()
            return self._to_report(row)

    def _to_setting(self, row: "SettingRow") -> PlatformSettingRecord:
        return PlatformSettingRecord(
            setting_key=row.setting_key,
            setting_value=row.setting_value,
            setting_type=SettingType(row.setting_type),
            description=row.description,
            is_public=row.is_public,
            updated_at=_aware(row.updated_at),
            updated_by=row.updated_by,
        )

    def list_settings(self, *, public_only: bool = False) -> list[PlatformSettingRecord]:
        with self._session() as session:
            stmt = select(SettingRow)
            if public_only:
                stmt = stmt.where(SettingRow.is_public.is_(True))
            rows = session.execute(stmt.order_by(SettingRow.setting_key.asc())).scalars()
            return [self._to_setting(row) for row in rows]

    def update_setting(
        self, key: str, value: Any, *, updated_by: str
    ) -> Optional[PlatformSettingRecord]:
        with self._session() as session:
            row = session.get(SettingRow, key)
            if not row:
                return None
            row.setting_value = value
            row.updated_by = updated_by
            row.updated_at = utcnow()
            session.commit()
            return self._to_setting(row)

    # Exchange rates

    def _to_rate(self, row: "ExchangeRateRow") -> ExchangeRateRecord:
        return ExchangeRateRecord(
            id=row.id,
            token_symbol=row.token_symbol,
            price_usd=row.price_usd,
            price_ada=row.price_ada,
            volume_24h=row.volume_24h,
            change_24h=row.change_24h,
            market_cap=row.market_cap,
            updated_at=_aware(row.updated_at),
        )

    def list_exchange_rates(self) -> list[ExchangeRateRecord]:
        with self._session() as session:
            rows = session.execute(
                select(ExchangeRateRow).order_by(ExchangeRateRow.updated_at.desc())
            ).scalars()
            return [self._to_rate(row) for row in rows]

    def get_exchange_rate(self, token_symbol: str) -> Optional[ExchangeRateRecord]:
        with self._session() as session:
            row = session.execute(
                select(ExchangeRateRow).where(
                    ExchangeRateRow.token_symbol == token_symbol.upper()
                )
            ).scalar_one_or_none()
            return self._to_rate(row) if row else None

    def upsert_exchange_rates(self, rates: list[dict]) -> list[ExchangeRateRecord]:
        now = utcnow()
        with self._session() as session:
            rows = []
            for rate in rates:
                symbol = rate["token_symbol"].upper()
                row = session.execute(
                    select(ExchangeRateRow).where(ExchangeRateRow.token_symbol == symbol)
                ).scalar_one_or_none()
                if row is None:
                    row = ExchangeRateRow(
                        id=new_id(),
                        token_symbol=symbol,
                        volume_24h=0,
                        change_24h=0,
                        market_cap=0,
                    )
                    session.add(row)
                _apply(row, {k: v for k, v in rate.items() if k != "token_symbol"})
                row.updated_at = now
                rows.append(row)
            session.commit()
            return [self._to_rate(row) for row in rows]

    # Billing mirror

    def _to_plan(self, row: "PlanRow") -> SubscriptionPlanRecord:
        return SubscriptionPlanRecord(
            id=row.id,
            stripe_price_id=row.stripe_price_id,
            name=row.name,
            description=row.description,
            price_cents=row.price_cents,
            currency=row.currency,
            interval=row.interval,
            features=list(row.features or []),
            is_active=row.is_active,
        )

    def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRecord]:
        with self._session() as session:
            stmt = select(PlanRow)
            if active_only:
                stmt = stmt.where(PlanRow.is_active.is_(True))
            rows = session.execute(stmt.order_by(PlanRow.price_cents.asc())).scalars()
            return [self._to_plan(row) for row in rows]

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlanRecord]:
        with self._session() as session:
            row = session.get(PlanRow, plan_id)
            return self._to_plan(row) if row else None

    def get_plan_by_price(self, stripe_price_id: str) -> Optional[SubscriptionPlanRecord]:
        with self._session() as session:
            row = session.execute(
                select(PlanRow).where(PlanRow.stripe_price_id == stripe_price_id)
            ).scalar_one_or_none()
            return self._to_plan(row) if row else None

    def _to_payment(self, row: "PaymentRow") -> PaymentTransactionRecord:
        return PaymentTransactionRecord(
            id=row.id,
            user_id=row.user_id,
            stripe_payment_intent_id=row.stripe_payment_intent_id,
            amount_cents=row.amount_cents,
            currency=row.currency,
            status=PaymentStatus(row.status),
            description=row.description,
            metadata=dict(row.meta or {}),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def upsert_payment_transaction(
        self, stripe_payment_intent_id: str, **fields: Any
    ) -> PaymentTransactionRecord:
        if "metadata" in fields:
            fields["meta"] = fields.pop("metadata")
        now = utcnow()
        with self._session() as session:
            row = session.execute(
                select(PaymentRow).where(
                    PaymentRow.stripe_payment_intent_id == stripe_payment_intent_id
                )
            ).scalar_one_or_none()
            if row is None:
                row = PaymentRow(
                    id=new_id(),
                    stripe_payment_intent_id=stripe_payment_intent_id,
                    amount_cents=0,
                    currency="usd",
                    status=PaymentStatus.PENDING.value,
                    meta={},
                    created_at=now,
                )
                session.add(row)
            _apply(row, fields)
            row.updated_at = now
            session.commit()
            return self._to_payment(row)

    def get_payment_transaction(
        self, stripe_payment_intent_id: str
    ) -> Optional[PaymentTransactionRecord]:
        with self._session() as session:
            row = session.execute(
                select(PaymentRow).where(
                    PaymentRow.stripe_payment_intent_id == stripe_payment_intent_id
                )
            ).scalar_one_or_none()
            return self._to_payment(row) if row else None

    def list_payment_transactions(
        self, user_id: str, *, limit: int = 50
    ) -> list[PaymentTransactionRecord]:
        with self._session() as session:
            rows = session.execute(
                select(PaymentRow)
                .where(PaymentRow.user_id == user_id)
                .order_by(PaymentRow.created_at.desc())
                .limit(limit)
            ).scalars()
            return [self._to_payment(row) for row in rows]

    def _to_subscription(self, row: "SubscriptionRow") -> UserSubscriptionRecord:
        return UserSubscriptionRecord(
            id=row.id,
            user_id=row.user_id,
            stripe_customer_id=row.stripe_customer_id,
            stripe_subscription_id=row.stripe_subscription_id,
            plan_id=row.plan_id,
            status=SubscriptionStatus(row.status),
            current_period_start=_aware(row.current_period_start),
            current_period_end=_aware(row.current_period_end),
            cancel_at_period_end=row.cancel_at_period_end,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def upsert_user_subscription(
        self, user_id: str, **fields: Any
    ) -> UserSubscriptionRecord:
        now = utcnow()
        with self._session() as session:
            row = None
            external_id = fields.get("stripe_subscription_id")
            if external_id:
                row = session.execute(
                    select(SubscriptionRow).where(
                        SubscriptionRow.stripe_subscription_id == external_id
                    )
                ).scalar_one_or_none()
            if row is None:
                row = session.execute(
                    select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
                ).scalar_one_or_none()
            if row is None:
                row = SubscriptionRow(
                    id=new_id(),
                    user_id=user_id,
                    status=SubscriptionStatus.INCOMPLETE.value,
                    cancel_at_period_end=False,
                    created_at=now,
                )
                session.add(row)
            _apply(row, fields)
            row.updated_at = now
            session.commit()
            return self._to_subscription(row)

    def _subscription_where(self, *criteria) -> Optional[UserSubscriptionRecord]:
        with self._session() as session:
            row = session.execute(
                select(SubscriptionRow).where(*criteria).limit(1)
            ).scalar_one_or_none()
            return self._to_subscription(row) if row else None

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        return self._subscription_where(SubscriptionRow.user_id == user_id)

    def get_subscription_by_external_id(
        self, stripe_subscription_id: str
    ) -> Optional[UserSubscriptionRecord]:
        return self._subscription_where(
            SubscriptionRow.stripe_subscription_id == stripe_subscription_id
        )

    def get_subscription_by_customer(
        self, stripe_customer_id: str
    ) -> Optional[UserSubscriptionRecord]:
        return self._subscription_where(
            SubscriptionRow.stripe_customer_id == stripe_customer_id
        )

    def has_webhook_event(self, event_id: str) -> bool:
        with self._session() as session:
            return session.get(WebhookEventRow, event_id) is not None

    def record_webhook_event(self, event_id: str, event_type: str) -> None:
        with self._session() as session:
            if session.get(WebhookEventRow, event_id) is not None:
                return
            session.add(
                WebhookEventRow(
                    event_id=event_id, event_type=event_type, processed_at=utcnow()
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # Another delivery of the same event won the race.
                session.rollback()

    # Reporting

    def platform_stats(self, *, since: datetime) -> dict:
        with self._session() as session:

            def count(model, *criteria) -> int:
                return session.execute(
                    select(func.count()).select_from(model).where(*criteria)
                ).scalar_one()

            volume = session.execute(
                select(func.coalesce(func.sum(SponsorshipRow.gas_fee_ada), 0)).where(
                    SponsorshipRow.status == SponsorshipStatus.EXECUTED.value
                )
            ).scalar_one()
            return {
                "total_users": count(UserRow),
                "total_tokens": count(TokenRow),
                "total_transactions": count(TransactionRow),
                "total_gasless_transactions": count(SponsorshipRow),
                "active_multi_sig_wallets": count(
                    MultiSigWalletRow, MultiSigWalletRow.is_active.is_(True)
                ),
                "pending_reports": count(
                    TokenReportRow, TokenReportRow.status == ReportStatus.PENDING.value
                ),
                "total_volume_ada": int(volume or 0),
                "active_subscriptions": count(
                    SubscriptionRow,
                    SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
                ),
                "recent_24h": {
                    "new_users": count(UserRow, UserRow.created_at >= since),
                    "new_tokens": count(TokenRow, TokenRow.created_at >= since),
                    "new_transactions": count(
                        TransactionRow, TransactionRow.created_at >= since
                    ),
                },
            }

    def snapshot(self) -> dict[str, list[dict]]:
        with self._session() as session:

            def dump(model, convert) -> list[dict]:
                return [convert(row).as_dict() for row in session.execute(select(model)).scalars()]

            return {
                "profiles": dump(UserRow, self._to_user),
                "wallet_connections": dump(WalletConnectionRow, self._to_wallet_connection),
                "tokens": dump(TokenRow, self._to_token),
                "transactions": dump(TransactionRow, self._to_transaction),
                "gasless_transactions": dump(SponsorshipRow, self._to_sponsorship),
                "security_policies": dump(PolicyRow, self._to_policy),
                "audit_logs": dump(AuditLogRow, self._to_audit_log),
                "multi_sig_wallets": [
                    self._to_wallet(row, self._signers_for(session, row.id)).as_dict()
                    for row in session.execute(select(MultiSigWalletRow)).scalars()
                ],
                "token_reports": dump(TokenReportRow, self._to_report),
                "platform_settings": dump(SettingRow, self._to_setting),
                "exchange_rates": dump(ExchangeRateRow, self._to_rate),
                "subscription_plans": dump(PlanRow, self._to_plan),
                "user_subscriptions": dump(SubscriptionRow, self._to_subscription),
                "payment_transactions": dump(PaymentRow, self._to_payment),
            }


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    wallet_address = Column(String, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_suspended = Column(Boolean, nullable=False, default=False)
    suspension_reason = Column(Text, nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspended_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class WalletConnectionRow(Base):
    __tablename__ = "wallet_connections"
    __table_args__ = (UniqueConstraint("user_id", "wallet_address"),)

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    wallet_address = Column(String, nullable=False)
    wallet_type = Column(String, nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TokenRow(Base):
    __tablename__ = "tokens"

    id = Column(String(36), primary_key=True)
    creator_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    token_name = Column(String, nullable=False)
    symbol = Column(String, nullable=False)
    policy_id = Column(String, nullable=False)
    asset_name = Column(String, nullable=False)
    decimals = Column(Integer, nullable=False, default=6)
    total_supply = Column(BigInteger, nullable=False, default=0)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    tx_hash = Column(String, nullable=False, unique=True)
    token_id = Column(String(36), ForeignKey("tokens.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False)
    amount = Column(BigInteger, nullable=False)
    fee_ada = Column(BigInteger, nullable=False, default=0)
    status = Column(String, nullable=False, index=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class SponsorshipRow(Base):
    __tablename__ = "gasless_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "nonce"),
        # One live sponsorship per transaction; failed rows do not count.
        Index(
            "uq_gasless_transactions_live_transaction",
            "transaction_id",
            unique=True,
            postgresql_where=text("status <> 'failed'"),
            sqlite_where=text("status <> 'failed'"),
        ),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    transaction_id = Column(
        String(36), ForeignKey("transactions.id"), nullable=False, index=True
    )
    sponsor_address = Column(String, nullable=False)
    gas_fee_ada = Column(BigInteger, nullable=False, default=0)
    status = Column(String, nullable=False)
    signature_hash = Column(String, nullable=True)
    nonce = Column(BigInteger, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class NonceRow(Base):
    __tablename__ = "user_nonces"

    user_id = Column(String(36), primary_key=True)
    value = Column(BigInteger, nullable=False)


class PolicyRow(Base):
    __tablename__ = "security_policies"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    policy_name = Column(String, nullable=False)
    policy_type = Column(String, nullable=False)
    policy_config = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AuditLogRow(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class MultiSigWalletRow(Base):
    __tablename__ = "multi_sig_wallets"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    wallet_name = Column(String, nullable=False)
    required_signatures = Column(Integer, nullable=False)
    total_signers = Column(Integer, nullable=False)
    wallet_address = Column(String, nullable=False, unique=True)
    script_hash = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class WalletSignerRow(Base):
    __tablename__ = "wallet_signers"
    __table_args__ = (UniqueConstraint("multi_sig_wallet_id", "signer_address"),)

    id = Column(String(36), primary_key=True)
    wallet_id = Column(
        "multi_sig_wallet_id",
        String(36),
        ForeignKey("multi_sig_wallets.id"),
        nullable=False,
        index=True,
    )
    signer_address = Column(String, nullable=False)
    signer_name = Column(String, nullable=True)
    public_key = Column(String, nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    added_at = Column(DateTime(timezone=True), nullable=False)


class TokenReportRow(Base):
    __tablename__ = "token_reports"

    id = Column(String(36), primary_key=True)
    token_id = Column(String(36), ForeignKey("tokens.id"), nullable=False, index=True)
    reporter_id = Column(String(36), nullable=True)
    report_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String, nullable=False, index=True)
    admin_notes = Column(Text, nullable=True)
    resolved_by = Column(String(36), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SettingRow(Base):
    __tablename__ = "platform_settings"

    setting_key = Column(String, primary_key=True)
    setting_value = Column(JSON, nullable=True)
    setting_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    updated_by = Column(String(36), nullable=True)


class ExchangeRateRow(Base):
    __tablename__ = "exchange_rates"

    id = Column(String(36), primary_key=True)
    token_symbol = Column(String, nullable=False, unique=True)
    price_usd = Column(Numeric(20, 8, asdecimal=False), nullable=False)
    price_ada = Column(Numeric(20, 8, asdecimal=False), nullable=False)
    volume_24h = Column(Numeric(20, 8, asdecimal=False), nullable=False, default=0)
    change_24h = Column(Numeric(10, 4, asdecimal=False), nullable=False, default=0)
    market_cap = Column(Numeric(20, 2, asdecimal=False), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)


class PlanRow(Base):
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True)
    stripe_price_id = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    interval = Column(String, nullable=False)
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)


class SubscriptionRow(Base):
    __tablename__ = "user_subscriptions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=True)
    status = Column(String, nullable=False)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class PaymentRow(Base):
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=True, index=True)
    stripe_payment_intent_id = Column(String, nullable=False, unique=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class WebhookEventRow(Base):
    __tablename__ = "webhook_events"

    event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False)
