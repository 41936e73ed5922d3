import unittest
from datetime import timedelta

from sqlalchemy import UniqueConstraint

from kepka.db import SqlDbClient, utcnow
from kepka.db.sql import WalletSignerRow
from kepka.errors import Conflict, NotFound
from kepka.types import (
    PaymentStatus,
    ReportStatus,
    SponsorshipStatus,
    SubscriptionStatus,
    TransactionStatus,
)


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    @classmethod
    def setUpClass(cls):
        cls.db = SqlDbClient("sqlite+pysqlite:///:memory:")

    def _user(self, email):
        return self.db.create_user(email, "hash", "Test User")

    def _token(self, owner_id, supply=0):
        return self.db.create_token(
            owner_id,
            token_name="Kepka",
            symbol="KPK",
            policy_id="policy123",
            asset_name="4b504b",
            total_supply=supply,
        )

    def test_ping(self):
        self.assertTrue(self.db.ping())

    def test_user_roundtrip_and_duplicate_email(self):
        user = self._user("sql-user@example.com")
        self.assertEqual(self.db.get_user_by_email("SQL-User@example.com").id, user.id)
        with self.assertRaises(Conflict):
            self._user("sql-user@example.com")
        updated = self.db.update_user(user.id, is_suspended=True, suspension_reason="spam")
        self.assertTrue(updated.is_suspended)
        self.assertIsNone(self.db.update_user("missing", is_suspended=True))

    def test_token_defaults_and_ownership(self):
        owner = self._user("token-owner@example.com")
        token = self._token(owner.id)
        self.assertEqual(token.decimals, 6)
        self.assertEqual(token.total_supply, 0)
        self.assertIsNone(self.db.get_token(token.id, owner_id="someone-else"))
        tokens, total = self.db.list_tokens(owner_id=owner.id)
        self.assertEqual(total, 1)
        self.assertEqual(tokens[0].id, token.id)

    def test_supply_adjustment_never_goes_negative(self):
        owner = self._user("supply@example.com")
        token = self._token(owner.id, supply=10)
        self.assertEqual(self.db.adjust_token_supply(token.id, 5).total_supply, 15)
        with self.assertRaises(Conflict):
            self.db.adjust_token_supply(token.id, -16)
        self.assertEqual(self.db.get_token(token.id).total_supply, 15)
        with self.assertRaises(NotFound):
            self.db.adjust_token_supply("missing", 1)

    def test_tx_hash_is_unique(self):
        owner = self._user("hash@example.com")
        token = self._token(owner.id)
        self.db.create_transaction(
            owner.id, token_id=token.id, transaction_type="mint", amount=1, tx_hash="dup-hash"
        )
        with self.assertRaises(Conflict):
            self.db.create_transaction(
                owner.id,
                token_id=token.id,
                transaction_type="mint",
                amount=1,
                tx_hash="dup-hash",
            )

    def test_conditional_status_update(self):
        owner = self._user("status@example.com")
        token = self._token(owner.id)
        tx = self.db.create_transaction(
            owner.id, token_id=token.id, transaction_type="mint", amount=1, tx_hash="st-1"
        )
        updated = self.db.set_transaction_status(
            tx.id, TransactionStatus.CONFIRMED, expected=TransactionStatus.PENDING
        )
        self.assertEqual(updated.status, TransactionStatus.CONFIRMED)
        self.assertIsNone(
            self.db.set_transaction_status(
                tx.id, TransactionStatus.FAILED, expected=TransactionStatus.PENDING
            )
        )
        txs, total = self.db.list_transactions(owner.id, status=TransactionStatus.CONFIRMED)
        self.assertEqual(total, 1)

    def test_nonce_allocation_is_sequential_per_user(self):
        first = self._user("nonce-a@example.com")
        second = self._user("nonce-b@example.com")
        self.assertEqual(
            [self.db.allocate_nonce(first.id) for _ in range(3)], [1, 2, 3]
        )
        self.assertEqual(self.db.allocate_nonce(second.id), 1)

    def test_sponsorship_nonce_unique_per_user(self):
        owner = self._user("sponsor@example.com")
        token = self._token(owner.id)
        tx = self.db.create_transaction(
            owner.id, token_id=token.id, transaction_type="transfer", amount=1, tx_hash="sp-1"
        )
        expires = utcnow() + timedelta(minutes=30)
        sponsorship = self.db.create_sponsorship(
            owner.id,
            transaction_id=tx.id,
            sponsor_address="addr",
            gas_fee_ada=1,
            nonce=1,
            expires_at=expires,
            status=SponsorshipStatus.SPONSORED,
        )
        self.assertEqual(self.db.get_sponsorship(sponsorship.id).nonce, 1)
        with self.assertRaises(Conflict):
            self.db.create_sponsorship(
                owner.id,
                transaction_id=tx.id,
                sponsor_address="addr",
                gas_fee_ada=1,
                nonce=1,
                expires_at=expires,
                status=SponsorshipStatus.SPONSORED,
            )
        executed = self.db.set_sponsorship_status(
            sponsorship.id,
            SponsorshipStatus.EXECUTED,
            expected=(SponsorshipStatus.SPONSORED,),
            signature_hash="sig",
        )
        self.assertEqual(executed.signature_hash, "sig")
        self.assertEqual(
            self.db.count_sponsorships_since(owner.id, utcnow() - timedelta(hours=1)), 1
        )

    def test_one_live_sponsorship_per_transaction(self):
        owner = self._user("live@example.com")
        token = self._token(owner.id)
        tx = self.db.create_transaction(
            owner.id, token_id=token.id, transaction_type="transfer", amount=1, tx_hash="live-1"
        )
        expires = utcnow() + timedelta(minutes=30)

        def sponsor(nonce):
            return self.db.create_sponsorship(
                owner.id,
                transaction_id=tx.id,
                sponsor_address="addr",
                gas_fee_ada=1,
                nonce=nonce,
                expires_at=expires,
                status=SponsorshipStatus.SPONSORED,
            )

        first = sponsor(1)
        with self.assertRaises(Conflict):
            sponsor(2)
        self.db.set_sponsorship_status(
            first.id, SponsorshipStatus.FAILED, expected=(SponsorshipStatus.SPONSORED,)
        )
        second = sponsor(3)
        self.assertEqual(
            [s.id for s in self.db.list_sponsorships(transaction_id=tx.id)
             if s.status is SponsorshipStatus.SPONSORED],
            [second.id],
        )

    def test_signer_constraint_uses_wallet_column(self):
        unique_columns = [
            sorted(column.name for column in constraint.columns)
            for constraint in WalletSignerRow.__table__.constraints
            if isinstance(constraint, UniqueConstraint)
        ]
        self.assertIn(["multi_sig_wallet_id", "signer_address"], unique_columns)

    def test_multisig_signers_are_unique(self):
        owner = self._user("multisig@example.com")
        wallet = self.db.create_multisig_wallet(
            owner.id,
            wallet_name="Treasury",
            required_signatures=1,
            total_signers=3,
            wallet_address="addr_multisig_1",
            script_hash="script",
            signers=[{"signer_address": "addr_a", "public_key": "pk_a"}],
        )
        self.assertEqual(len(wallet.signers), 1)
        self.db.add_wallet_signer(wallet.id, signer_address="addr_b", public_key="pk_b")
        with self.assertRaises(Conflict):
            self.db.add_wallet_signer(wallet.id, signer_address="addr_b", public_key="pk_b")
        self.assertEqual(len(self.db.get_multisig_wallet(wallet.id).signers), 2)

    def test_reports_and_settings(self):
        reporter = self._user("reporter@example.com")
        token = self._token(reporter.id)
        report = self.db.create_token_report(
            token_id=token.id, reporter_id=reporter.id, report_type="spam", description="x"
        )
        resolved = self.db.resolve_token_report(
            report.id, status=ReportStatus.RESOLVED, admin_notes="ok", resolved_by=reporter.id
        )
        self.assertEqual(resolved.status, ReportStatus.RESOLVED)
        keys = {s.setting_key for s in self.db.list_settings()}
        self.assertIn("maintenance_mode", keys)
        setting = self.db.update_setting("maintenance_mode", True, updated_by=reporter.id)
        self.assertIs(setting.setting_value, True)

    def test_billing_mirror_upserts(self):
        user = self._user("billing@example.com")
        self.assertEqual(len(self.db.list_plans()), 3)
        payment = self.db.upsert_payment_transaction(
            "pi_sql_1", user_id=user.id, amount_cents=500, status=PaymentStatus.PENDING
        )
        self.db.upsert_payment_transaction("pi_sql_1", status=PaymentStatus.SUCCEEDED)
        stored = self.db.get_payment_transaction("pi_sql_1")
        self.assertEqual(stored.id, payment.id)
        self.assertEqual(stored.status, PaymentStatus.SUCCEEDED)
        self.assertEqual(stored.amount_cents, 500)

        plan = self.db.get_plan_by_price("price_pro_monthly")
        sub = self.db.upsert_user_subscription(
            user.id,
            stripe_customer_id="cus_sql",
            stripe_subscription_id="sub_sql",
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
        )
        self.assertEqual(self.db.get_subscription_by_customer("cus_sql").id, sub.id)

        self.assertFalse(self.db.has_webhook_event("evt_sql"))
        self.db.record_webhook_event("evt_sql", "payment_intent.succeeded")
        self.db.record_webhook_event("evt_sql", "payment_intent.succeeded")
        self.assertTrue(self.db.has_webhook_event("evt_sql"))

    def test_exchange_rates_upsert_by_symbol(self):
        self.assertEqual(self.db.get_exchange_rate("ada").price_usd, 1.0)
        saved = self.db.upsert_exchange_rates(
            [
                {"token_symbol": "ada", "price_usd": 0.42, "price_ada": 1.0},
                {
                    "token_symbol": "SQLT",
                    "price_usd": 3.25,
                    "price_ada": 7.5,
                    "volume_24h": 10.0,
                    "change_24h": -1.5,
                    "market_cap": 1000.0,
                },
            ]
        )
        self.assertEqual([r.token_symbol for r in saved], ["ADA", "SQLT"])
        self.assertAlmostEqual(self.db.get_exchange_rate("ADA").price_usd, 0.42)
        self.assertAlmostEqual(self.db.get_exchange_rate("sqlt").change_24h, -1.5)
        symbols = [r.token_symbol for r in self.db.list_exchange_rates()]
        self.assertEqual(symbols.count("ADA"), 1)
        self.assertIn("KEPKA", symbols)
        self.assertIsNone(self.db.get_exchange_rate("missing"))

    def test_snapshot_lists_tables(self):
        snapshot = self.db.snapshot()
        self.assertIn("profiles", snapshot)
        self.assertIn("gasless_transactions", snapshot)
        self.assertIn("exchange_rates", snapshot)


if __name__ == "__main__":
    unittest.main()
