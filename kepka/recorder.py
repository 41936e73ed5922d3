"""
Transaction and gasless-sponsorship bookkeeping.

Transactions move ``pending -> confirmed | failed``. Sponsorships move
``pending -> sponsored -> executed`` or to ``failed`` from any non-terminal
state. Expiry is checked lazily: a sponsorship past ``expires_at`` that never
executed reads as failed everywhere, and is written as failed the first time
someone tries to move it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from kepka.db import DbClient, SponsorshipRecord, TransactionRecord, utcnow
from kepka.errors import Conflict, InvalidTransition, NotFound, PolicyDenied
from kepka.notifications import EventBroadcaster
from kepka.policies import SPONSOR_ACTION, ActionDescriptor, PolicyEvaluator
from kepka.types import SponsorshipStatus, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)

_SUPPLY_SIGN = {TransactionType.MINT.value: 1, TransactionType.BURN.value: -1}


class TransactionRecorder:
    def __init__(
        self,
        db: DbClient,
        evaluator: PolicyEvaluator,
        broadcaster: EventBroadcaster,
        *,
        sponsor_address: str,
        sponsorship_ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.evaluator = evaluator
        self.broadcaster = broadcaster
        self.sponsor_address = sponsor_address
        self.sponsorship_ttl = sponsorship_ttl
        self.clock = clock

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
        if self.db.get_token(token_id, owner_id=user_id) is None:
            raise NotFound("Token not found")
        record = self.db.create_transaction(
            user_id,
            token_id=token_id,
            transaction_type=transaction_type,
            amount=amount,
            tx_hash=tx_hash,
            fee_ada=fee_ada,
            metadata=metadata,
        )
        logger.info(
            "Transaction %s created: %s %s of token %s by user %s",
            record.id,
            transaction_type,
            amount,
            token_id,
            user_id,
        )
        self.broadcaster.publish(user_id, "transaction-created", record.as_dict())
        return record

    def get_transaction(self, user_id: str, transaction_id: str) -> TransactionRecord:
        record = self.db.get_transaction(transaction_id, user_id=user_id)
        if record is None:
            raise NotFound("Transaction not found")
        return record

    def update_transaction_status(
        self, user_id: str, transaction_id: str, status: TransactionStatus
    ) -> TransactionRecord:
        current = self.get_transaction(user_id, transaction_id)
        if current.status is status:
            return current
        if current.status.is_terminal or status is TransactionStatus.PENDING:
            raise InvalidTransition(
                f"Cannot move transaction from {current.status.value} to {status.value}"
            )

        updated = self.db.set_transaction_status(
            transaction_id, status, expected=TransactionStatus.PENDING
        )
        if updated is None:
            raise InvalidTransition("Transaction status changed concurrently")

        sign = _SUPPLY_SIGN.get(current.transaction_type)
        if status is TransactionStatus.CONFIRMED and sign:
            try:
                self.db.adjust_token_supply(current.token_id, sign * current.amount)
            except Exception:
                # Leave the transaction pending when the supply cannot move.
                self.db.set_transaction_status(
                    transaction_id,
                    TransactionStatus.PENDING,
                    expected=TransactionStatus.CONFIRMED,
                )
                raise

        logger.info(
            "Transaction %s moved %s -> %s", transaction_id, current.status.value, status.value
        )
        self.broadcaster.publish(user_id, "transaction-updated", updated.as_dict())
        return updated

    # Gasless sponsorships

    def sponsor(
        self,
        user_id: str,
        transaction_id: str,
        estimated_fee: int,
        origin_ip: Optional[str] = None,
    ) -> SponsorshipRecord:
        transaction = self.get_transaction(user_id, transaction_id)
        if transaction.status is not TransactionStatus.PENDING:
            raise InvalidTransition("Only pending transactions can be sponsored")

        now = self.clock()
        for existing in self.db.list_sponsorships(transaction_id=transaction_id):
            if existing.effective_status(now) is not SponsorshipStatus.FAILED:
                raise Conflict("Transaction already has a live sponsorship")
            if existing.status is not SponsorshipStatus.FAILED:
                self._mark_failed(existing.user_id, existing)

        decision = self.evaluator.evaluate(
            user_id,
            ActionDescriptor(
                kind=SPONSOR_ACTION,
                amount=transaction.amount,
                timestamp=now,
                origin_ip=origin_ip,
            ),
            self.db.list_policies(user_id, active_only=True),
        )
        if not decision.allowed:
            raise PolicyDenied(
                decision.reason or "Request denied by security policy",
                policy_type=decision.policy_type or "unknown",
                policy_id=decision.policy_id,
            )

        nonce = self.db.allocate_nonce(user_id)
        record = self.db.create_sponsorship(
            user_id,
            transaction_id=transaction_id,
            sponsor_address=self.sponsor_address,
            gas_fee_ada=estimated_fee,
            nonce=nonce,
            expires_at=now + self.sponsorship_ttl,
            status=SponsorshipStatus.SPONSORED,
        )
        logger.info(
            "Transaction %s sponsored for user %s (nonce %s)", transaction_id, user_id, nonce
        )
        self.broadcaster.publish(
            user_id, "gasless-transaction-sponsored", record.as_dict(now)
        )
        return record

    def get_sponsorship(self, user_id: str, sponsorship_id: str) -> SponsorshipRecord:
        record = self.db.get_sponsorship(sponsorship_id, user_id=user_id)
        if record is None:
            raise NotFound("Gasless transaction not found")
        return record

    def list_sponsorships(
        self, user_id: str, *, transaction_id: Optional[str] = None
    ) -> list[SponsorshipRecord]:
        return self.db.list_sponsorships(user_id=user_id, transaction_id=transaction_id)

    def effective_status(
        self, sponsorship: SponsorshipRecord, now: Optional[datetime] = None
    ) -> SponsorshipStatus:
        return sponsorship.effective_status(now or self.clock())

    def view(self, sponsorship: SponsorshipRecord) -> dict:
        return sponsorship.as_dict(self.clock())

    def execute_sponsorship(
        self, user_id: str, sponsorship_id: str, signature_hash: Optional[str] = None
    ) -> SponsorshipRecord:
        current = self.get_sponsorship(user_id, sponsorship_id)
        if current.status is SponsorshipStatus.EXECUTED:
            return current
        if current.is_expired(self.clock()):
            self._mark_failed(user_id, current)
            raise InvalidTransition("Gasless transaction has expired")
        if current.status is not SponsorshipStatus.SPONSORED:
            raise InvalidTransition(
                f"Cannot execute a gasless transaction in status {current.status.value}"
            )
        updated = self.db.set_sponsorship_status(
            sponsorship_id,
            SponsorshipStatus.EXECUTED,
            expected=(SponsorshipStatus.SPONSORED,),
            signature_hash=signature_hash,
        )
        if updated is None:
            raise InvalidTransition("Gasless transaction status changed concurrently")
        logger.info("Gasless transaction %s executed for user %s", sponsorship_id, user_id)
        self.broadcaster.publish(
            user_id, "gasless-transaction-updated", updated.as_dict(self.clock())
        )
        return updated

    def fail_sponsorship(self, user_id: str, sponsorship_id: str) -> SponsorshipRecord:
        current = self.get_sponsorship(user_id, sponsorship_id)
        if current.status is SponsorshipStatus.FAILED:
            return current
        if current.status is SponsorshipStatus.EXECUTED:
            raise InvalidTransition("Executed gasless transactions cannot fail")
        return self._mark_failed(user_id, current)

    def _mark_failed(self, user_id: str, current: SponsorshipRecord) -> SponsorshipRecord:
        updated = self.db.set_sponsorship_status(
            current.id,
            SponsorshipStatus.FAILED,
            expected=(SponsorshipStatus.PENDING, SponsorshipStatus.SPONSORED),
        )
        if updated is None:
            raise InvalidTransition("Gasless transaction status changed concurrently")
        logger.info("Gasless transaction %s marked failed", current.id)
        self.broadcaster.publish(
            user_id, "gasless-transaction-updated", updated.as_dict(self.clock())
        )
        return updated
