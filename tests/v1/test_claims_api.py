"""Tests for the claim endpoints."""

from decimal import Decimal

from tests.conftest import make_wallet, seed_balance


class TestClaims:
    """POST /api/v1/claims"""

    def test_claim_and_history(self, client, session_factory):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "10")

        response = client.post("/api/v1/claims", json={"wallet_address": wallet, "amount": "2.5"})

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["amount"]) == Decimal("2.5")
        assert body["settlement_status"] == "pending"

        history = client.get(f"/api/v1/claims/{wallet}")
        assert history.status_code == 200
        assert [row["id"] for row in history.json()] == [body["id"]]

    def test_period_cap_is_409_with_retry_after(self, client, session_factory):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "200")
        client.post("/api/v1/claims", json={"wallet_address": wallet, "amount": "100"})

        response = client.post("/api/v1/claims", json={"wallet_address": wallet, "amount": "1"})

        assert response.status_code == 409
        body = response.json()
        assert body["reason"] == "ClaimLimitExceeded"
        assert int(response.headers["Retry-After"]) == body["retry_after"]

    def test_insufficient_balance_is_409(self, client):
        response = client.post(
            "/api/v1/claims", json={"wallet_address": make_wallet(), "amount": "1"}
        )
        assert response.status_code == 409
        assert response.json()["reason"] == "InsufficientBalance"

    def test_invalid_amount_is_400(self, client, session_factory):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "10")

        response = client.post(
            "/api/v1/claims", json={"wallet_address": wallet, "amount": "0.123456789"}
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "InvalidClaimAmount"

    def test_settlement_report_requires_admin(self, client, session_factory, admin_headers):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "10")
        claim_id = client.post(
            "/api/v1/claims", json={"wallet_address": wallet, "amount": "1"}
        ).json()["id"]

        anonymous = client.post(
            f"/api/v1/claims/{claim_id}/settlement", json={"transaction_hash": "0xabc"}
        )
        assert anonymous.status_code in {401, 403}

        response = client.post(
            f"/api/v1/claims/{claim_id}/settlement",
            json={"transaction_hash": "0xabc"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["settlement_status"] == "settled"
        assert response.json()["transaction_hash"] == "0xabc"

    def test_blank_settlement_hash_is_rejected(self, client, session_factory, admin_headers):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "10")
        claim_id = client.post(
            "/api/v1/claims", json={"wallet_address": wallet, "amount": "1"}
        ).json()["id"]

        response = client.post(
            f"/api/v1/claims/{claim_id}/settlement",
            json={"transaction_hash": "   "},
            headers=admin_headers,
        )

        assert response.status_code == 422
        history = client.get(f"/api/v1/claims/{wallet}").json()
        assert history[0]["settlement_status"] == "pending"
        assert history[0]["transaction_hash"] is None

    def test_settlement_hash_is_trimmed(self, client, session_factory, admin_headers):
        wallet = make_wallet()
        seed_balance(session_factory, wallet, "10")
        claim_id = client.post(
            "/api/v1/claims", json={"wallet_address": wallet, "amount": "1"}
        ).json()["id"]

        response = client.post(
            f"/api/v1/claims/{claim_id}/settlement",
            json={"transaction_hash": "  0xabc  "},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["transaction_hash"] == "0xabc"
