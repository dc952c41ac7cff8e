"""Tests for admin tokens and error translation."""

import pytest
from jose import jwt

from referral_ledger.api.v1.errors import STATUS_BY_KIND, error_response, handle_ledger_error
from referral_ledger.core.errors import ClaimError, ErrorKind, RateLimitError
from referral_ledger.core.security import TokenError, create_admin_token, decode_admin_token


class TestAdminToken:
    def test_round_trip(self, test_settings):
        token = create_admin_token("reviewer", test_settings)
        claims = decode_admin_token(token, test_settings)
        assert claims["sub"] == "reviewer"
        assert claims["role"] == "admin"

    def test_wrong_key_is_rejected(self, test_settings):
        token = jwt.encode({"sub": "x", "role": "admin"}, "other-key", algorithm="HS256")
        with pytest.raises(TokenError):
            decode_admin_token(token, test_settings)

    def test_missing_secret_is_rejected(self, test_settings):
        unconfigured = test_settings.model_copy(update={"secret_key": None})
        with pytest.raises(TokenError):
            create_admin_token("reviewer", unconfigured)


class TestErrorResponses:
    def test_every_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)

    def test_retry_after_header(self):
        response = error_response(RateLimitError("slow down", retry_after=12))
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"

    @pytest.mark.asyncio
    async def test_handler_renders_reason(self, mocker):
        request = mocker.MagicMock()
        request.method = "POST"
        request.url.path = "/api/v1/claims"
        exc = ClaimError(ErrorKind.INSUFFICIENT_BALANCE, "not enough", context={"wallet": "0xabc"})

        response = await handle_ledger_error(request, exc)

        assert response.status_code == 409
        assert b'"reason":"InsufficientBalance"' in response.body
        assert "Retry-After" not in response.headers
