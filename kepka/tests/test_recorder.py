import unittest
from datetime import datetime, timedelta, timezone

from kepka.db import InMemoryDbClient
from kepka.errors import Conflict, InvalidTransition, NotFound, PolicyDenied
from kepka.notifications import InMemoryBroadcaster
from kepka.policies import PolicyEvaluator
from kepka.recorder import TransactionRecorder
from kepka.types import SponsorshipStatus, TransactionStatus


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TransactionRecorderTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.broadcaster = InMemoryBroadcaster()
        self.clock = FakeClock(datetime.now(timezone.utc))
        self.recorder = TransactionRecorder(
            self.db,
            PolicyEvaluator(self.db),
            self.broadcaster,
            sponsor_address="addr_sponsor",
            clock=self.clock,
        )
        self.user = self.db.create_user("owner@example.com", "hash", "Owner")
        self.token = self.db.create_token(
            self.user.id,
            token_name="Kepka",
            symbol="KPK",
            policy_id="policy123",
            asset_name="4b504b",
            total_supply=100,
        )
        self._hashes = 0

    def _transaction(self, transaction_type="mint", amount=10):
        self._hashes += 1
        return self.recorder.create_transaction(
            self.user.id,
            token_id=self.token.id,
            transaction_type=transaction_type,
            amount=amount,
            tx_hash=f"hash-{self._hashes}",
        )

    def test_create_requires_owned_token(self):
        other = self.db.create_user("other@example.com", "hash", "Other")
        with self.assertRaises(NotFound):
            self.recorder.create_transaction(
                other.id,
                token_id=self.token.id,
                transaction_type="mint",
                amount=1,
                tx_hash="hash-x",
            )

    def test_create_publishes_event(self):
        tx = self._transaction()
        events = self.broadcaster.events_for(self.user.id)
        self.assertEqual(events[-1]["event"], "transaction-created")
        self.assertEqual(events[-1]["data"]["id"], tx.id)

    def test_duplicate_tx_hash_conflicts(self):
        self._transaction()
        with self.assertRaises(Conflict):
            self.recorder.create_transaction(
                self.user.id,
                token_id=self.token.id,
                transaction_type="mint",
                amount=1,
                tx_hash="hash-1",
            )

    def test_confirmed_mint_increases_supply(self):
        tx = self._transaction("mint", 25)
        updated = self.recorder.update_transaction_status(
            self.user.id, tx.id, TransactionStatus.CONFIRMED
        )
        self.assertEqual(updated.status, TransactionStatus.CONFIRMED)
        self.assertEqual(self.db.get_token(self.token.id).total_supply, 125)

    def test_confirmed_burn_decreases_supply(self):
        tx = self._transaction("burn", 40)
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.CONFIRMED)
        self.assertEqual(self.db.get_token(self.token.id).total_supply, 60)

    def test_transfer_leaves_supply_alone(self):
        tx = self._transaction("transfer", 40)
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.CONFIRMED)
        self.assertEqual(self.db.get_token(self.token.id).total_supply, 100)

    def test_burn_beyond_supply_reverts_to_pending(self):
        tx = self._transaction("burn", 500)
        with self.assertRaises(Conflict):
            self.recorder.update_transaction_status(
                self.user.id, tx.id, TransactionStatus.CONFIRMED
            )
        self.assertEqual(self.db.get_transaction(tx.id).status, TransactionStatus.PENDING)
        self.assertEqual(self.db.get_token(self.token.id).total_supply, 100)

    def test_confirm_twice_applies_supply_once(self):
        tx = self._transaction("mint", 5)
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.CONFIRMED)
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.CONFIRMED)
        self.assertEqual(self.db.get_token(self.token.id).total_supply, 105)

    def test_terminal_transactions_do_not_move(self):
        tx = self._transaction()
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.FAILED)
        with self.assertRaises(InvalidTransition):
            self.recorder.update_transaction_status(
                self.user.id, tx.id, TransactionStatus.CONFIRMED
            )
        with self.assertRaises(InvalidTransition):
            self.recorder.update_transaction_status(
                self.user.id, tx.id, TransactionStatus.PENDING
            )

    def test_sponsor_assigns_increasing_nonces(self):
        first = self.recorder.sponsor(self.user.id, self._transaction().id, 170000)
        second = self.recorder.sponsor(self.user.id, self._transaction().id, 170000)
        self.assertEqual(first.nonce, 1)
        self.assertEqual(second.nonce, 2)
        self.assertEqual(first.status, SponsorshipStatus.SPONSORED)
        self.assertEqual(first.sponsor_address, "addr_sponsor")
        self.assertEqual(first.expires_at, self.clock.now + timedelta(minutes=30))

    def test_nonces_are_per_user(self):
        other = self.db.create_user("other@example.com", "hash", "Other")
        token = self.db.create_token(
            other.id, token_name="T", symbol="T", policy_id="p", asset_name="a"
        )
        tx = self.recorder.create_transaction(
            other.id, token_id=token.id, transaction_type="transfer", amount=1, tx_hash="o-1"
        )
        self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        sponsorship = self.recorder.sponsor(other.id, tx.id, 1)
        self.assertEqual(sponsorship.nonce, 1)

    def test_sponsor_requires_pending_transaction(self):
        tx = self._transaction()
        self.recorder.update_transaction_status(self.user.id, tx.id, TransactionStatus.CONFIRMED)
        with self.assertRaises(InvalidTransition):
            self.recorder.sponsor(self.user.id, tx.id, 1)

    def test_sponsor_denied_by_amount_limit(self):
        self.db.create_policy(
            self.user.id,
            policy_name="cap",
            policy_type="amount_limit",
            policy_config={"max_amount": 10},
        )
        self.recorder.sponsor(self.user.id, self._transaction(amount=10).id, 1)
        with self.assertRaises(PolicyDenied) as ctx:
            self.recorder.sponsor(self.user.id, self._transaction(amount=11).id, 1)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.policy_type, "amount_limit")

    def test_denied_sponsorship_does_not_consume_nonce(self):
        self.db.create_policy(
            self.user.id,
            policy_name="cap",
            policy_type="amount_limit",
            policy_config={"max_amount": 10},
        )
        with self.assertRaises(PolicyDenied):
            self.recorder.sponsor(self.user.id, self._transaction(amount=50).id, 1)
        sponsorship = self.recorder.sponsor(self.user.id, self._transaction(amount=5).id, 1)
        self.assertEqual(sponsorship.nonce, 1)

    def test_rate_limited_sponsorship_is_429(self):
        self.db.create_policy(
            self.user.id,
            policy_name="slow down",
            policy_type="rate_limit",
            policy_config={"hours": 1, "max_transactions": 1},
        )
        self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        with self.assertRaises(PolicyDenied) as ctx:
            self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        self.assertEqual(ctx.exception.status_code, 429)

    def test_execute_and_fail_transitions(self):
        sponsorship = self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        executed = self.recorder.execute_sponsorship(
            self.user.id, sponsorship.id, signature_hash="sig"
        )
        self.assertEqual(executed.status, SponsorshipStatus.EXECUTED)
        self.assertEqual(executed.signature_hash, "sig")
        # Executing again is a no-op.
        again = self.recorder.execute_sponsorship(self.user.id, sponsorship.id)
        self.assertEqual(again.status, SponsorshipStatus.EXECUTED)
        with self.assertRaises(InvalidTransition):
            self.recorder.fail_sponsorship(self.user.id, sponsorship.id)

    def test_failed_sponsorship_cannot_execute(self):
        sponsorship = self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        self.recorder.fail_sponsorship(self.user.id, sponsorship.id)
        with self.assertRaises(InvalidTransition):
            self.recorder.execute_sponsorship(self.user.id, sponsorship.id)

    def test_expired_sponsorship_reads_failed_and_cannot_execute(self):
        sponsorship = self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        self.assertEqual(self.recorder.view(sponsorship)["status"], "sponsored")
        self.clock.advance(minutes=31)
        view = self.recorder.view(self.recorder.get_sponsorship(self.user.id, sponsorship.id))
        self.assertEqual(view["status"], "failed")
        self.assertTrue(view["expired"])
        with self.assertRaises(InvalidTransition):
            self.recorder.execute_sponsorship(self.user.id, sponsorship.id)
        stored = self.db.get_sponsorship(sponsorship.id)
        self.assertEqual(stored.status, SponsorshipStatus.FAILED)

    def test_transaction_is_sponsored_at_most_once(self):
        tx = self._transaction()
        self.recorder.sponsor(self.user.id, tx.id, 1)
        with self.assertRaises(Conflict):
            self.recorder.sponsor(self.user.id, tx.id, 1)
        self.assertEqual(len(self.recorder.list_sponsorships(self.user.id, transaction_id=tx.id)), 1)
        # The rejected attempt did not use up a nonce.
        self.assertEqual(self.recorder.sponsor(self.user.id, self._transaction().id, 1).nonce, 2)

    def test_executed_sponsorship_blocks_another(self):
        tx = self._transaction()
        sponsorship = self.recorder.sponsor(self.user.id, tx.id, 1)
        self.recorder.execute_sponsorship(self.user.id, sponsorship.id)
        with self.assertRaises(Conflict):
            self.recorder.sponsor(self.user.id, tx.id, 1)

    def test_failed_sponsorship_can_be_replaced(self):
        tx = self._transaction()
        first = self.recorder.sponsor(self.user.id, tx.id, 1)
        self.recorder.fail_sponsorship(self.user.id, first.id)
        second = self.recorder.sponsor(self.user.id, tx.id, 1)
        self.assertEqual(second.nonce, 2)

    def test_expired_sponsorship_can_be_replaced(self):
        tx = self._transaction()
        first = self.recorder.sponsor(self.user.id, tx.id, 1)
        self.clock.advance(minutes=31)
        second = self.recorder.sponsor(self.user.id, tx.id, 1)
        self.assertEqual(second.status, SponsorshipStatus.SPONSORED)
        self.assertEqual(self.db.get_sponsorship(first.id).status, SponsorshipStatus.FAILED)

    def test_other_users_cannot_see_sponsorship(self):
        sponsorship = self.recorder.sponsor(self.user.id, self._transaction().id, 1)
        with self.assertRaises(NotFound):
            self.recorder.get_sponsorship("someone-else", sponsorship.id)


if __name__ == "__main__":
    unittest.main()
