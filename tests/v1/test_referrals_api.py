"""Tests for the referral, reward and review endpoints."""

from decimal import Decimal

from fastapi.testclient import TestClient

from referral_ledger.core.security import create_admin_token
from referral_ledger.main import create_app
from tests.conftest import make_device


def _redeem(client, code, wallet, device):
    return client.post(
        "/api/v1/referrals/redeem",
        json={"referral_code": code, "referred_wallet": wallet, "device_id": device},
    )


class TestRedeem:
    """POST /api/v1/referrals/redeem"""

    def test_redeem_then_balance(self, client, connect, referrer):
        wallet, code = referrer
        device = make_device()
        referred = connect(device=device)

        response = _redeem(client, code, referred, device)

        assert response.status_code == 200
        body = response.json()
        assert body["duplicate"] is False
        assert body["reason"] is None
        assert body["relationship"]["status"] == "validated"

        balance = client.get(f"/api/v1/rewards/{wallet}")
        assert balance.status_code == 200
        assert Decimal(balance.json()["total_accrued"]) == Decimal("1")
        assert balance.json()["tier_level"] == 0

    def test_repeat_redeem_reports_duplicate(self, client, connect, referrer):
        _, code = referrer
        device = make_device()
        referred = connect(device=device)
        first = _redeem(client, code, referred, device).json()

        response = _redeem(client, code, referred, device)

        assert response.status_code == 200
        body = response.json()
        assert body["duplicate"] is True
        assert body["reason"] == "DuplicateReferral"
        assert body["relationship"]["id"] == first["relationship"]["id"]

    def test_unknown_code_is_404(self, client, connect):
        device = make_device()
        referred = connect(device=device)

        response = _redeem(client, "ZZZZZZZZ", referred, device)

        assert response.status_code == 404
        assert response.json()["reason"] == "InvalidReferralCode"

    def test_rate_limit_is_429_with_retry_after(self, ledger_factory, connect):
        strict = ledger_factory(referral_attempts_hard_cap=1)
        referrer_wallet = connect(target=strict)
        code = strict.referrals.issue_code(referrer_wallet).code
        device = make_device()
        referred = connect(device=device, target=strict)

        with TestClient(create_app(ledger=strict), base_url="http://test") as client:
            assert _redeem(client, code, referred, device).status_code == 200
            response = _redeem(client, code, referred, device)

        assert response.status_code == 429
        assert response.json()["reason"] == "RateLimitExceeded"
        assert int(response.headers["Retry-After"]) > 0

    def test_stats(self, client, connect, referrer):
        wallet, code = referrer
        device = make_device()
        _redeem(client, code, connect(device=device), device)

        response = client.get(f"/api/v1/referrals/stats/{wallet}")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == code
        assert body["counts"]["validated"] == 1
        assert body["total"] == 1


class TestCodes:
    def test_issue_and_toggle(self, client, connect):
        wallet = connect()

        issued = client.post(f"/api/v1/referrals/codes/{wallet}")
        assert issued.status_code == 201
        code = issued.json()["code"]

        toggled = client.patch(f"/api/v1/referrals/codes/{wallet}", json={"is_active": False})
        assert toggled.status_code == 200
        assert toggled.json()["code"] == code
        assert toggled.json()["is_active"] is False

    def test_issue_for_unknown_wallet_is_404(self, client):
        response = client.post("/api/v1/referrals/codes/0x" + "ab" * 20)
        assert response.status_code == 404


class TestReview:
    """Admin review endpoints."""

    def _suspicious(self, ledger, connect):
        wallet_a = connect(device="device-d")
        connect(device="device-d")
        wallet_c = connect(device="device-d")
        code = ledger.referrals.issue_code(wallet_a).code
        return wallet_a, ledger.referrals.process_referral(code, wallet_c, "device-d").relationship

    def test_review_requires_token(self, client):
        response = client.get("/api/v1/referrals/review")
        assert response.status_code in {401, 403}

    def test_review_rejects_bad_token(self, client):
        response = client.get(
            "/api/v1/referrals/review",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_non_admin_role_is_rejected(self, client, test_settings):
        token = create_admin_token("someone", test_settings, role="member")
        response = client.get(
            "/api/v1/referrals/review",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    def test_admin_approves_suspicious_referral(self, client, ledger, connect, admin_headers):
        wallet_a, relationship = self._suspicious(ledger, connect)

        pending = client.get("/api/v1/referrals/review", headers=admin_headers)
        assert pending.status_code == 200
        assert [row["id"] for row in pending.json()] == [relationship.id]

        response = client.post(
            f"/api/v1/referrals/{relationship.id}/review",
            json={"approve": True},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "validated"
        balance = client.get(f"/api/v1/rewards/{wallet_a}").json()
        assert Decimal(balance["total_accrued"]) == Decimal("1")

    def test_recompute_matches_incremental_balance(self, client, ledger, connect, admin_headers):
        wallet_a, relationship = self._suspicious(ledger, connect)
        client.post(
            f"/api/v1/referrals/{relationship.id}/review",
            json={"approve": True},
            headers=admin_headers,
        )

        response = client.post(f"/api/v1/rewards/{wallet_a}/recompute")

        assert response.status_code == 200
        assert Decimal(response.json()["total_accrued"]) == Decimal("1")
