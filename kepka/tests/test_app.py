import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from fastapi.testclient import TestClient
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketDisconnect

from kepka.app import create_app
from kepka.config import Settings
from kepka.dependencies import authenticate, build_services
from kepka.notifications import Notifier


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.build_client()
        self._hashes = 0

    def build_client(self, **overrides):
        self.settings = Settings(
            KEPKA_ENV="test",
            KEPKA_USE_IN_MEMORY_BACKENDS=True,
            ADMIN_EMAILS=["admin@example.com"],
            **overrides,
        )
        self.emails = []
        notifier = Notifier(
            channels={"email": lambda message, to: self.emails.append((to, message))}
        )
        self.services = build_services(self.settings, notifier=notifier)
        self.app = create_app(self.settings, self.services)
        self.client = TestClient(self.app)

    def signup(self, email="user@example.com", password="password123", full_name="Test User"):
        response = self.client.post(
            "/api/auth/signup",
            json={"email": email, "password": password, "full_name": full_name},
        )
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        headers = {"Authorization": f"Bearer {body['session']['access_token']}"}
        return body["user"], headers

    def create_token(self, headers, **overrides):
        payload = {
            "token_name": "Kepka Token",
            "symbol": "KPK",
            "policy_id": "policy123",
            "asset_name": "4b504b",
        }
        payload.update(overrides)
        response = self.client.post("/api/tokens", json=payload, headers=headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["token"]

    def create_transaction(self, headers, token_id, transaction_type="mint", amount=100):
        self._hashes += 1
        response = self.client.post(
            "/api/transactions",
            json={
                "token_id": token_id,
                "transaction_type": transaction_type,
                "amount": amount,
                "tx_hash": f"tx-hash-{self._hashes}",
            },
            headers=headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["transaction"]


class HealthAndErrorTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"status": "ok", "database": True, "environment": "test"}
        )

    def test_cors_allows_only_the_frontend_by_default(self):
        def preflight(origin):
            return self.client.options(
                "/api/tokens",
                headers={"Origin": origin, "Access-Control-Request-Method": "GET"},
            )

        allowed = preflight(self.settings.frontend_url)
        self.assertEqual(
            allowed.headers.get("access-control-allow-origin"), self.settings.frontend_url
        )
        denied = preflight("https://evil.example.com")
        self.assertIsNone(denied.headers.get("access-control-allow-origin"))

    def test_missing_bearer_token(self):
        response = self.client.get("/api/tokens")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "auth_failed")

    def test_garbage_bearer_token(self):
        response = self.client.get(
            "/api/tokens", headers={"Authorization": "Bearer not-a-jwt"}
        )
        self.assertEqual(response.status_code, 401)

    def test_validation_errors_use_envelope(self):
        response = self.client.post(
            "/api/auth/signup", json={"email": "bad", "password": "x", "full_name": "A"}
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error"], "validation_failed")
        self.assertTrue(body["details"])

    def test_unknown_route(self):
        response = self.client.get("/api/nope")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "not_found")


class AuthApiTests(ApiTestCase):
    def test_signup_login_refresh_logout(self):
        user, headers = self.signup()
        self.assertEqual(user["email"], "user@example.com")
        self.assertFalse(user["is_admin"])
        self.assertEqual(self.emails[0][0], "user@example.com")
        self.assertIn("Test User", self.emails[0][1].content)

        login = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "password123"}
        )
        self.assertEqual(login.status_code, 200)
        session = login.json()["session"]
        self.assertEqual(session["token_type"], "bearer")

        refreshed = self.client.post(
            "/api/auth/refresh", json={"refresh_token": session["refresh_token"]}
        )
        self.assertEqual(refreshed.status_code, 200)

        # An access token is not a refresh token.
        wrong_type = self.client.post(
            "/api/auth/refresh", json={"refresh_token": session["access_token"]}
        )
        self.assertEqual(wrong_type.status_code, 401)

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)
        logs = self.client.get("/api/security/audit-logs", headers=headers).json()
        actions = {entry["action"] for entry in logs["audit_logs"]}
        self.assertTrue({"signup", "login", "logout"} <= actions)

    def test_duplicate_signup_conflicts(self):
        self.signup()
        response = self.client.post(
            "/api/auth/signup",
            json={"email": "User@Example.com", "password": "password123", "full_name": "Again"},
        )
        self.assertEqual(response.status_code, 409)

    def test_bad_password(self):
        self.signup()
        response = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "wrong-pass"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid email or password")

    def test_admin_emails_are_promoted(self):
        user, _ = self.signup(email="admin@example.com")
        self.assertTrue(user["is_admin"])

    def test_password_reset_token_works_once(self):
        self.signup()
        unknown = self.client.post(
            "/api/auth/forgot-password", json={"email": "nobody@example.com"}
        )
        known = self.client.post("/api/auth/forgot-password", json={"email": "user@example.com"})
        self.assertEqual(unknown.json(), known.json())

        to, message = self.emails[-1]
        self.assertEqual(to, "user@example.com")
        reset_token = message.content.split("token=", 1)[1]

        reset = self.client.post(
            "/api/auth/reset-password",
            json={"reset_token": reset_token, "new_password": "new-password-1"},
        )
        self.assertEqual(reset.status_code, 200, reset.text)
        login = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "new-password-1"}
        )
        self.assertEqual(login.status_code, 200)

        reused = self.client.post(
            "/api/auth/reset-password",
            json={"reset_token": reset_token, "new_password": "another-password"},
        )
        self.assertEqual(reused.status_code, 401)


class UserApiTests(ApiTestCase):
    def test_profile_and_wallet_connections(self):
        _, headers = self.signup()
        updated = self.client.put(
            "/api/users/profile",
            json={"full_name": "Renamed User", "wallet_address": "addr1qxyz0123456789"},
            headers=headers,
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["profile"]["full_name"], "Renamed User")
        profile = self.client.get("/api/users/profile", headers=headers).json()["profile"]
        self.assertEqual(profile["wallet_address"], "addr1qxyz0123456789")

        connected = self.client.post(
            "/api/users/wallet-connections",
            json={"wallet_address": "addr1wallet", "wallet_type": "nami", "is_primary": True},
            headers=headers,
        )
        self.assertEqual(connected.status_code, 201)
        duplicate = self.client.post(
            "/api/users/wallet-connections",
            json={"wallet_address": "addr1wallet", "wallet_type": "nami"},
            headers=headers,
        )
        self.assertEqual(duplicate.status_code, 409)
        wallets = self.client.get("/api/users/wallet-connections", headers=headers).json()
        self.assertEqual(len(wallets["wallet_connections"]), 1)

        bad_type = self.client.post(
            "/api/users/wallet-connections",
            json={"wallet_address": "addr1other", "wallet_type": "metamask"},
            headers=headers,
        )
        self.assertEqual(bad_type.status_code, 400)


class TokenApiTests(ApiTestCase):
    def test_create_token_defaults(self):
        _, headers = self.signup()
        token = self.create_token(headers)
        self.assertEqual(token["total_supply"], 0)
        self.assertEqual(token["decimals"], 6)

        listing = self.client.get("/api/tokens", headers=headers).json()
        self.assertEqual(listing["pagination"]["total"], 1)
        self.assertFalse(listing["pagination"]["has_more"])

        found = self.client.get("/api/tokens", params={"search": "kpk"}, headers=headers)
        self.assertEqual(len(found.json()["tokens"]), 1)

    def test_tokens_are_private_to_their_owner(self):
        _, owner = self.signup()
        token = self.create_token(owner)
        _, other = self.signup(email="other@example.com")
        self.assertEqual(
            self.client.get(f"/api/tokens/{token['id']}", headers=other).status_code, 404
        )
        update = self.client.put(
            f"/api/tokens/{token['id']}", json={"description": "mine now"}, headers=other
        )
        self.assertEqual(update.status_code, 404)

    def test_update_and_report(self):
        _, owner = self.signup()
        token = self.create_token(owner)
        updated = self.client.put(
            f"/api/tokens/{token['id']}",
            json={"description": "A community token"},
            headers=owner,
        )
        self.assertEqual(updated.json()["token"]["description"], "A community token")

        _, reporter = self.signup(email="reporter@example.com")
        report = self.client.post(
            f"/api/tokens/{token['id']}/reports",
            json={"report_type": "scam", "description": "Looks fake"},
            headers=reporter,
        )
        self.assertEqual(report.status_code, 201)
        self.assertEqual(report.json()["report"]["status"], "pending")

    def test_invalid_token_payload(self):
        _, headers = self.signup()
        response = self.client.post(
            "/api/tokens",
            json={
                "token_name": "Kepka",
                "symbol": "KPK",
                "policy_id": "p",
                "asset_name": "a",
                "decimals": 19,
            },
            headers=headers,
        )
        self.assertEqual(response.status_code, 400)


class TransactionApiTests(ApiTestCase):
    def test_confirming_mint_and_burn_moves_supply(self):
        _, headers = self.signup()
        token = self.create_token(headers)
        mint = self.create_transaction(headers, token["id"], "mint", 1000)
        self.assertEqual(mint["status"], "pending")

        confirm = self.client.patch(
            f"/api/transactions/{mint['id']}/status",
            json={"status": "confirmed"},
            headers=headers,
        )
        self.assertEqual(confirm.status_code, 200)
        supply = self.client.get(f"/api/tokens/{token['id']}", headers=headers).json()
        self.assertEqual(supply["token"]["total_supply"], 1000)

        burn = self.create_transaction(headers, token["id"], "burn", 1500)
        too_much = self.client.patch(
            f"/api/transactions/{burn['id']}/status",
            json={"status": "confirmed"},
            headers=headers,
        )
        self.assertEqual(too_much.status_code, 409)
        still_pending = self.client.get(f"/api/transactions/{burn['id']}", headers=headers)
        self.assertEqual(still_pending.json()["transaction"]["status"], "pending")

        back = self.client.patch(
            f"/api/transactions/{mint['id']}/status",
            json={"status": "pending"},
            headers=headers,
        )
        self.assertEqual(back.status_code, 409)

    def test_list_filters(self):
        _, headers = self.signup()
        token = self.create_token(headers)
        self.create_transaction(headers, token["id"], "mint")
        self.create_transaction(headers, token["id"], "transfer")
        mints = self.client.get(
            "/api/transactions", params={"type": "mint"}, headers=headers
        ).json()
        self.assertEqual(mints["pagination"]["total"], 1)
        pending = self.client.get(
            "/api/transactions", params={"status": "pending"}, headers=headers
        ).json()
        self.assertEqual(pending["pagination"]["total"], 2)

    def test_transaction_requires_owned_token(self):
        _, owner = self.signup()
        token = self.create_token(owner)
        _, other = self.signup(email="other@example.com")
        response = self.client.post(
            "/api/transactions",
            json={
                "token_id": token["id"],
                "transaction_type": "mint",
                "amount": 1,
                "tx_hash": "foreign",
            },
            headers=other,
        )
        self.assertEqual(response.status_code, 404)

    def test_duplicate_tx_hash(self):
        _, headers = self.signup()
        token = self.create_token(headers)
        payload = {
            "token_id": token["id"],
            "transaction_type": "mint",
            "amount": 1,
            "tx_hash": "same-hash",
        }
        self.assertEqual(
            self.client.post("/api/transactions", json=payload, headers=headers).status_code,
            201,
        )
        self.assertEqual(
            self.client.post("/api/transactions", json=payload, headers=headers).status_code,
            409,
        )


class GaslessApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        _, self.headers = self.signup()
        self.token = self.create_token(self.headers)

    def sponsor(self, transaction_id, estimated_fee=170000):
        return self.client.post(
            "/api/gasless/sponsor",
            json={"transaction_id": transaction_id, "estimated_fee": estimated_fee},
            headers=self.headers,
        )

    def test_sponsor_assigns_nonce_and_expiry(self):
        tx = self.create_transaction(self.headers, self.token["id"])
        before = datetime.now(timezone.utc)
        response = self.sponsor(tx["id"])
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["message"], "Transaction sponsored successfully")
        sponsorship = body["gasless_transaction"]
        self.assertEqual(sponsorship["nonce"], 1)
        self.assertEqual(sponsorship["status"], "sponsored")
        self.assertEqual(sponsorship["sponsor_address"], self.settings.sponsor_address)
        expires_at = datetime.fromisoformat(sponsorship["expires_at"])
        self.assertLess(abs(expires_at - (before + timedelta(minutes=30))), timedelta(minutes=1))

        second = self.sponsor(self.create_transaction(self.headers, self.token["id"])["id"])
        self.assertEqual(second.json()["gasless_transaction"]["nonce"], 2)

        detail = self.client.get(f"/api/transactions/{tx['id']}", headers=self.headers).json()
        self.assertEqual(len(detail["gasless_transactions"]), 1)

        listing = self.client.get("/api/gasless/transactions", headers=self.headers).json()
        self.assertEqual(len(listing["gasless_transactions"]), 2)
        self.assertIsNotNone(listing["gasless_transactions"][0]["transaction"])

    def test_transaction_cannot_be_sponsored_twice(self):
        tx = self.create_transaction(self.headers, self.token["id"])
        self.assertEqual(self.sponsor(tx["id"]).status_code, 200)
        again = self.sponsor(tx["id"])
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"], "conflict")
        detail = self.client.get(f"/api/transactions/{tx['id']}", headers=self.headers).json()
        self.assertEqual(len(detail["gasless_transactions"]), 1)

    def test_whitelist_ignores_forwarded_header_from_untrusted_peer(self):
        self.client.post(
            "/api/gasless/policies",
            json={
                "policy_name": "Office only",
                "policy_type": "whitelist",
                "policy_config": {"allowed_ips": ["10.9.9.9"]},
            },
            headers=self.headers,
        )
        tx = self.create_transaction(self.headers, self.token["id"])
        spoofed = self.client.post(
            "/api/gasless/sponsor",
            json={"transaction_id": tx["id"], "estimated_fee": 1},
            headers={**self.headers, "X-Forwarded-For": "10.9.9.9"},
        )
        self.assertEqual(spoofed.status_code, 403)
        self.assertEqual(spoofed.json()["policy_type"], "whitelist")

    def test_rate_limit_policy_returns_429(self):
        created = self.client.post(
            "/api/gasless/policies",
            json={
                "policy_name": "One per hour",
                "policy_type": "rate_limit",
                "policy_config": {"hours": 1, "max_transactions": 1},
            },
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 201)
        first = self.sponsor(self.create_transaction(self.headers, self.token["id"])["id"])
        self.assertEqual(first.status_code, 200)
        second = self.sponsor(self.create_transaction(self.headers, self.token["id"])["id"])
        self.assertEqual(second.status_code, 429)
        body = second.json()
        self.assertEqual(body["policy_type"], "rate_limit")
        self.assertEqual(body["policy_id"], created.json()["policy"]["id"])

    def test_amount_limit_policy_returns_403(self):
        self.client.post(
            "/api/gasless/policies",
            json={
                "policy_name": "Small only",
                "policy_type": "amount_limit",
                "policy_config": {"max_amount": 100},
            },
            headers=self.headers,
        )
        ok = self.sponsor(self.create_transaction(self.headers, self.token["id"], amount=100)["id"])
        self.assertEqual(ok.status_code, 200)
        denied = self.sponsor(
            self.create_transaction(self.headers, self.token["id"], amount=101)["id"]
        )
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["policy_type"], "amount_limit")

    def test_disabled_policy_does_not_apply(self):
        created = self.client.post(
            "/api/gasless/policies",
            json={
                "policy_name": "Small only",
                "policy_type": "amount_limit",
                "policy_config": {"max_amount": 1},
            },
            headers=self.headers,
        ).json()["policy"]
        patched = self.client.patch(
            f"/api/gasless/policies/{created['id']}",
            json={"is_active": False},
            headers=self.headers,
        )
        self.assertEqual(patched.status_code, 200)
        self.assertFalse(patched.json()["policy"]["is_active"])
        response = self.sponsor(self.create_transaction(self.headers, self.token["id"])["id"])
        self.assertEqual(response.status_code, 200)

    def test_invalid_policy_config_is_rejected(self):
        response = self.client.post(
            "/api/gasless/policies",
            json={
                "policy_name": "Broken",
                "policy_type": "time_lock",
                "policy_config": {"allowed_hours": [24]},
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)
        missing = self.client.patch(
            "/api/gasless/policies/missing", json={"is_active": False}, headers=self.headers
        )
        self.assertEqual(missing.status_code, 404)

    def test_execute_then_fail_is_rejected(self):
        tx = self.create_transaction(self.headers, self.token["id"])
        sponsorship = self.sponsor(tx["id"]).json()["gasless_transaction"]
        executed = self.client.post(
            f"/api/gasless/transactions/{sponsorship['id']}/execute",
            json={"signature_hash": "sig123"},
            headers=self.headers,
        )
        self.assertEqual(executed.status_code, 200)
        self.assertEqual(executed.json()["gasless_transaction"]["status"], "executed")
        failed = self.client.post(
            f"/api/gasless/transactions/{sponsorship['id']}/fail", headers=self.headers
        )
        self.assertEqual(failed.status_code, 409)

    def test_fail_then_execute_is_rejected(self):
        tx = self.create_transaction(self.headers, self.token["id"])
        sponsorship = self.sponsor(tx["id"]).json()["gasless_transaction"]
        failed = self.client.post(
            f"/api/gasless/transactions/{sponsorship['id']}/fail", headers=self.headers
        )
        self.assertEqual(failed.json()["gasless_transaction"]["status"], "failed")
        executed = self.client.post(
            f"/api/gasless/transactions/{sponsorship['id']}/execute", headers=self.headers
        )
        self.assertEqual(executed.status_code, 409)

    def test_sponsoring_confirmed_transaction_is_rejected(self):
        tx = self.create_transaction(self.headers, self.token["id"])
        self.client.patch(
            f"/api/transactions/{tx['id']}/status",
            json={"status": "confirmed"},
            headers=self.headers,
        )
        self.assertEqual(self.sponsor(tx["id"]).status_code, 409)


class SecurityApiTests(ApiTestCase):
    def wallet_payload(self, **overrides):
        payload = {
            "wallet_name": "Treasury",
            "required_signatures": 2,
            "total_signers": 3,
            "wallet_address": "addr1_multisig_treasury",
            "script_hash": "script_hash_1",
            "signers": [
                {"signer_address": "addr_a", "public_key": "pk_a", "signer_name": "A"},
                {"signer_address": "addr_b", "public_key": "pk_b"},
            ],
        }
        payload.update(overrides)
        return payload

    def test_multisig_wallet_signers(self):
        _, headers = self.signup()
        created = self.client.post(
            "/api/security/multi-sig-wallets", json=self.wallet_payload(), headers=headers
        )
        self.assertEqual(created.status_code, 201, created.text)
        wallet = created.json()["wallet"]
        self.assertEqual(len(wallet["signers"]), 2)

        url = f"/api/security/multi-sig-wallets/{wallet['id']}/signers"
        duplicate = self.client.post(
            url, json={"signer_address": "addr_a", "public_key": "pk_a"}, headers=headers
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(
            duplicate.json()["message"], "This signer address is already added to the wallet"
        )
        added = self.client.post(
            url, json={"signer_address": "addr_c", "public_key": "pk_c"}, headers=headers
        )
        self.assertEqual(added.status_code, 201)
        full = self.client.post(
            url, json={"signer_address": "addr_d", "public_key": "pk_d"}, headers=headers
        )
        self.assertEqual(full.status_code, 409)

        wallets = self.client.get("/api/security/multi-sig-wallets", headers=headers).json()
        self.assertEqual(len(wallets["wallets"][0]["signers"]), 3)

    def test_multisig_threshold_validation(self):
        _, headers = self.signup()
        response = self.client.post(
            "/api/security/multi-sig-wallets",
            json=self.wallet_payload(required_signatures=4),
            headers=headers,
        )
        self.assertEqual(response.status_code, 400)

    def test_other_users_wallet_is_hidden(self):
        _, owner = self.signup()
        wallet = self.client.post(
            "/api/security/multi-sig-wallets", json=self.wallet_payload(), headers=owner
        ).json()["wallet"]
        _, other = self.signup(email="other@example.com")
        response = self.client.post(
            f"/api/security/multi-sig-wallets/{wallet['id']}/signers",
            json={"signer_address": "addr_x", "public_key": "pk_x"},
            headers=other,
        )
        self.assertEqual(response.status_code, 404)

    def test_audit_log_entries(self):
        _, headers = self.signup()
        created = self.client.post(
            "/api/security/audit-logs",
            json={"action": "export", "resource_type": "report", "metadata": {"rows": 3}},
            headers={**headers, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )
        self.assertEqual(created.status_code, 201)
        # The test client is not a trusted proxy, so its own address is recorded.
        self.assertEqual(created.json()["audit_log"]["ip_address"], "testclient")
        filtered = self.client.get(
            "/api/security/audit-logs", params={"action": "export"}, headers=headers
        ).json()
        self.assertEqual(filtered["pagination"]["total"], 1)

    def test_forwarded_address_from_trusted_proxy(self):
        self.build_client(TRUSTED_PROXIES="testclient, 10.0.0.1")
        _, headers = self.signup()
        created = self.client.post(
            "/api/security/audit-logs",
            json={"action": "export", "resource_type": "report"},
            headers={**headers, "X-Forwarded-For": "198.51.100.4, 203.0.113.7, 10.0.0.1"},
        )
        self.assertEqual(created.json()["audit_log"]["ip_address"], "203.0.113.7")


class PaymentApiTests(ApiTestCase):
    def deliver(self, event):
        payload = json.dumps(event).encode("utf-8")
        return self.client.post(
            "/api/payments/webhooks",
            content=payload,
            headers={"stripe-signature": self.services.payments.sign(payload)},
        )

    def test_plans_are_public(self):
        response = self.client.get("/api/payments/plans")
        self.assertEqual(response.status_code, 200)
        prices = [p["stripe_price_id"] for p in response.json()["plans"]]
        self.assertEqual(
            prices, ["price_basic_monthly", "price_pro_monthly", "price_enterprise_monthly"]
        )

    def test_payment_intent_then_webhook(self):
        user, headers = self.signup()
        intent = self.client.post(
            "/api/payments/create-intent", json={"amount": 12.5}, headers=headers
        )
        self.assertEqual(intent.status_code, 200, intent.text)
        intent_id = intent.json()["payment_intent_id"]
        self.assertTrue(intent.json()["client_secret"])

        listing = self.client.get("/api/payments/transactions", headers=headers).json()
        self.assertEqual(listing["transactions"][0]["amount_cents"], 1250)
        self.assertEqual(listing["transactions"][0]["status"], "pending")

        event = {
            "id": "evt_api_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": intent_id, "metadata": {"user_id": user["id"]}}},
        }
        first = self.deliver(event)
        self.assertEqual(first.json(), {"received": True, "duplicate": False})
        replay = self.deliver(event)
        self.assertEqual(replay.json(), {"received": True, "duplicate": True})

        listing = self.client.get("/api/payments/transactions", headers=headers).json()
        self.assertEqual(listing["transactions"][0]["status"], "succeeded")
        self.assertEqual(self.emails[-1][1].subject, "Payment Successful")

    def test_webhook_rejects_bad_signature(self):
        response = self.client.post(
            "/api/payments/webhooks",
            content=b'{"id": "evt", "type": "payment_intent.succeeded"}',
            headers={"stripe-signature": "t=0,v1=bad"},
        )
        self.assertEqual(response.status_code, 401)

    def test_subscription_create_and_cancel(self):
        _, headers = self.signup()
        missing = self.client.post(
            "/api/payments/subscriptions", json={"price_id": "price_unknown"}, headers=headers
        )
        self.assertEqual(missing.status_code, 404)

        created = self.client.post(
            "/api/payments/subscriptions", json={"price_id": "price_pro_monthly"}, headers=headers
        )
        self.assertEqual(created.status_code, 200, created.text)
        subscription_id = created.json()["subscription_id"]

        current = self.client.get("/api/payments/subscriptions", headers=headers).json()
        self.assertEqual(current["subscription"]["status"], "incomplete")
        self.assertEqual(current["subscription"]["plan"]["name"], "Pro Plan")

        cancelled = self.client.post(
            f"/api/payments/subscriptions/{subscription_id}/cancel", headers=headers
        )
        self.assertEqual(cancelled.status_code, 200)
        self.assertTrue(cancelled.json()["subscription"]["cancel_at_period_end"])

        _, other = self.signup(email="other@example.com")
        foreign = self.client.post(
            f"/api/payments/subscriptions/{subscription_id}/cancel", headers=other
        )
        self.assertEqual(foreign.status_code, 404)


class ExchangeRateApiTests(ApiTestCase):
    def test_seeded_rates_are_public(self):
        response = self.client.get("/api/exchange-rates")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual({r["token_symbol"] for r in body["rates"]}, {"ADA", "KEPKA"})
        self.assertIsNotNone(body["last_updated"])

        rate = self.client.get("/api/exchange-rates/kepka")
        self.assertEqual(rate.status_code, 200)
        self.assertEqual(rate.json()["rate"]["price_usd"], 0.5)
        missing = self.client.get("/api/exchange-rates/NOPE")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["message"], "No exchange rate found for symbol: NOPE")

    def test_admin_upserts_by_symbol(self):
        _, admin_headers = self.signup(email="admin@example.com")
        single = self.client.post(
            "/api/exchange-rates",
            json={"token_symbol": "kepka", "price_usd": 0.75, "price_ada": 0.7},
            headers=admin_headers,
        )
        self.assertEqual(single.status_code, 200, single.text)
        self.assertEqual(single.json()["rates"][0]["token_symbol"], "KEPKA")

        batch = self.client.post(
            "/api/exchange-rates",
            json=[
                {"token_symbol": "ADA", "price_usd": 0.9, "price_ada": 1, "change_24h": -3.5},
                {"token_symbol": "LIV", "price_usd": 2, "price_ada": 2.2},
            ],
            headers=admin_headers,
        )
        self.assertEqual(batch.status_code, 200, batch.text)

        rates = self.client.get("/api/exchange-rates").json()["rates"]
        by_symbol = {r["token_symbol"]: r for r in rates}
        self.assertEqual(len(rates), 3)
        self.assertEqual(by_symbol["KEPKA"]["price_usd"], 0.75)
        self.assertEqual(by_symbol["ADA"]["change_24h"], -3.5)
        self.assertEqual(by_symbol["LIV"]["market_cap"], 0)

        logs = self.client.get(
            "/api/security/audit-logs", params={"action": "update"}, headers=admin_headers
        ).json()
        self.assertEqual(logs["pagination"]["total"], 2)

    def test_updates_require_admin_and_valid_prices(self):
        _, user_headers = self.signup()
        forbidden = self.client.post(
            "/api/exchange-rates",
            json={"token_symbol": "ADA", "price_usd": 1, "price_ada": 1},
            headers=user_headers,
        )
        self.assertEqual(forbidden.status_code, 403)

        _, admin_headers = self.signup(email="admin@example.com")
        negative = self.client.post(
            "/api/exchange-rates",
            json={"token_symbol": "ADA", "price_usd": -1, "price_ada": 1},
            headers=admin_headers,
        )
        self.assertEqual(negative.status_code, 400)
        empty = self.client.post("/api/exchange-rates", json=[], headers=admin_headers)
        self.assertEqual(empty.status_code, 400)


class AdminApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin, self.admin_headers = self.signup(email="admin@example.com")
        self.user, self.user_headers = self.signup(email="user@example.com")

    def test_requires_admin(self):
        response = self.client.get("/api/admin/stats", headers=self.user_headers)
        self.assertEqual(response.status_code, 403)

    def test_stats_and_listings(self):
        self.create_token(self.user_headers)
        stats = self.client.get("/api/admin/stats", headers=self.admin_headers).json()["stats"]
        self.assertEqual(stats["total_users"], 2)
        self.assertEqual(stats["total_tokens"], 1)

        users = self.client.get(
            "/api/admin/users", params={"search": "user@"}, headers=self.admin_headers
        ).json()
        self.assertEqual(users["pagination"]["total"], 1)
        tokens = self.client.get("/api/admin/tokens", headers=self.admin_headers).json()
        self.assertEqual(len(tokens["tokens"]), 1)

    def test_suspend_and_unsuspend(self):
        url = f"/api/admin/users/{self.user['id']}"
        suspended = self.client.post(
            f"{url}/suspend", json={"reason": "spam"}, headers=self.admin_headers
        )
        self.assertEqual(suspended.status_code, 200)
        self.assertTrue(suspended.json()["user"]["is_suspended"])
        self.assertEqual(suspended.json()["user"]["suspended_by"], self.admin["id"])
        self.assertEqual(
            self.client.get("/api/users/profile", headers=self.user_headers).status_code, 403
        )
        login = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "password123"}
        )
        self.assertEqual(login.status_code, 403)

        unsuspended = self.client.post(f"{url}/unsuspend", headers=self.admin_headers)
        self.assertFalse(unsuspended.json()["user"]["is_suspended"])
        self.assertEqual(
            self.client.get("/api/users/profile", headers=self.user_headers).status_code, 200
        )

    def test_cannot_suspend_self_or_unknown(self):
        own = self.client.post(
            f"/api/admin/users/{self.admin['id']}/suspend",
            json={"reason": "oops"},
            headers=self.admin_headers,
        )
        self.assertEqual(own.status_code, 400)
        unknown = self.client.post(
            "/api/admin/users/missing/suspend", json={"reason": "x"}, headers=self.admin_headers
        )
        self.assertEqual(unknown.status_code, 404)

    def test_resolve_report(self):
        token = self.create_token(self.user_headers)
        report = self.client.post(
            f"/api/tokens/{token['id']}/reports",
            json={"report_type": "spam", "description": "Spam token"},
            headers=self.admin_headers,
        ).json()["report"]
        pending = self.client.get(
            "/api/admin/reports", params={"status": "pending"}, headers=self.admin_headers
        ).json()
        self.assertEqual(len(pending["reports"]), 1)
        resolved = self.client.post(
            f"/api/admin/reports/{report['id']}/resolve",
            json={"status": "dismissed", "admin_notes": "Not spam"},
            headers=self.admin_headers,
        )
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.json()["report"]["status"], "dismissed")
        invalid = self.client.post(
            f"/api/admin/reports/{report['id']}/resolve",
            json={"status": "pending", "admin_notes": "x"},
            headers=self.admin_headers,
        )
        self.assertEqual(invalid.status_code, 400)

    def test_settings_are_type_checked(self):
        settings = self.client.get("/api/admin/settings", headers=self.admin_headers).json()
        keys = {s["setting_key"] for s in settings["settings"]}
        self.assertIn("maintenance_mode", keys)

        wrong = self.client.put(
            "/api/admin/settings/maintenance_mode",
            json={"setting_value": "yes"},
            headers=self.admin_headers,
        )
        self.assertEqual(wrong.status_code, 400)
        not_a_number = self.client.put(
            "/api/admin/settings/platform_fee_percentage",
            json={"setting_value": True},
            headers=self.admin_headers,
        )
        self.assertEqual(not_a_number.status_code, 400)
        ok = self.client.put(
            "/api/admin/settings/maintenance_mode",
            json={"setting_value": True},
            headers=self.admin_headers,
        )
        self.assertEqual(ok.status_code, 200)
        self.assertIs(ok.json()["setting"]["setting_value"], True)
        missing = self.client.put(
            "/api/admin/settings/nope", json={"setting_value": 1}, headers=self.admin_headers
        )
        self.assertEqual(missing.status_code, 404)


class RealtimeTests(ApiTestCase):
    def test_websocket_requires_valid_token(self):
        with TestClient(self.app) as client:
            with self.assertRaises(WebSocketDisconnect):
                with client.websocket_connect("/api/ws?token=bad") as ws:
                    ws.receive_text()

    def test_websocket_ping_and_events(self):
        user, headers = self.signup()
        token = headers["Authorization"].split(" ", 1)[1]
        with TestClient(self.app) as client:
            with client.websocket_connect(f"/api/ws?token={token}") as ws:
                ws.send_text("ping")
                self.assertEqual(ws.receive_text(), "pong")
                client.post(
                    "/api/tokens",
                    json={
                        "token_name": "Live",
                        "symbol": "LIV",
                        "policy_id": "p",
                        "asset_name": "a",
                    },
                    headers=headers,
                )
                message = ws.receive_json()
                self.assertEqual(message["event"], "token-created")
                self.assertEqual(message["data"]["symbol"], "LIV")

    def test_websocket_authenticates_off_the_event_loop(self):
        _, headers = self.signup()
        token = headers["Authorization"].split(" ", 1)[1]
        with mock.patch("kepka.app.run_in_threadpool", wraps=run_in_threadpool) as offload:
            with TestClient(self.app) as client:
                with client.websocket_connect(f"/api/ws?token={token}") as ws:
                    ws.send_text("ping")
                    self.assertEqual(ws.receive_text(), "pong")
        self.assertIs(offload.call_args[0][0], authenticate)


if __name__ == "__main__":
    unittest.main()
