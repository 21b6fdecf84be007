"""Tests for the 2FA router endpoints."""

import time

import pyotp
from fastapi.testclient import TestClient

import repositories.db_models as db_models
from authentication.auth import create_access_token
from services.two_factor_service import TwoFactorService


def bearer(user: db_models.User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


def wrong_code(secret: str) -> str:
    now = time.time()
    valid = {pyotp.TOTP(secret).at(now + offset * 30) for offset in (-1, 0, 1)}
    return next(c for c in ("000000", "111111", "222222", "333333") if c not in valid)


class TestSetupEndpoint:
    """POST /api/2fa/setup"""

    def test_requires_auth(self, client: TestClient) -> None:
        response = client.post("/api/2fa/setup")

        assert response.status_code == 401
        body = response.json()
        assert body["type"] == "not_authorized"
        assert body["message"] == "Not authorized"
        assert body["correlation_id"]

    def test_returns_camel_case_fields(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        response = client.post("/api/2fa/setup", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"secret", "qrCode", "provisioningUri"}
        assert data["qrCode"].startswith("data:image/png;base64,")
        assert response.headers["Cache-Control"].startswith("no-store")

    def test_temp_token_is_not_a_session(
        self, client: TestClient, test_user: db_models.User
    ) -> None:
        temp_token = TwoFactorService.create_temp_token(str(test_user.id))

        response = client.post(
            "/api/2fa/setup", headers={"Authorization": f"Bearer {temp_token}"}
        )

        assert response.status_code == 401


class TestVerifyAndEnableEndpoint:
    """POST /api/2fa/verify-and-enable"""

    def test_enables_with_valid_code(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        secret = client.post("/api/2fa/setup", headers=auth_headers).json()["secret"]

        response = client.post(
            "/api/2fa/verify-and-enable",
            json={"token": pyotp.TOTP(secret).now()},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "2FA enabled successfully"
        assert len(data["recoveryCodes"]) == 10

    def test_invalid_code_is_400(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        secret = client.post("/api/2fa/setup", headers=auth_headers).json()["secret"]

        response = client.post(
            "/api/2fa/verify-and-enable",
            json={"token": wrong_code(secret)},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid 2FA code"
        assert response.json()["type"] == "2fa_invalid_code"

    def test_not_set_up_is_400(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/2fa/verify-and-enable", json={"token": "123456"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["message"] == "2FA not set up"

    def test_missing_token_is_422(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        response = client.post("/api/2fa/verify-and-enable", json={}, headers=auth_headers)
        assert response.status_code == 422


class TestVerifyTokenEndpoint:
    """POST /api/2fa/verify-token"""

    def test_valid_code_without_temp_token(
        self, client: TestClient, enrolled_user
    ) -> None:
        user, secret, _ = enrolled_user

        response = client.post(
            "/api/2fa/verify-token",
            json={"userId": str(user.id), "token": pyotp.TOTP(secret).now()},
        )

        assert response.status_code == 200
        assert response.json() == {"verified": True}

    def test_valid_code_with_temp_token_returns_session(
        self, client: TestClient, enrolled_user
    ) -> None:
        user, secret, _ = enrolled_user
        temp_token = TwoFactorService.create_temp_token(str(user.id))

        response = client.post(
            "/api/2fa/verify-token",
            json={
                "userId": str(user.id),
                "token": pyotp.TOTP(secret).now(),
                "tempToken": temp_token,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["verified"] is True
        assert data["token_type"] == "bearer"

        me = client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert me.status_code == 200
        assert me.json()["totp_enabled"] is True

    def test_reused_temp_token_is_401(self, client: TestClient, enrolled_user) -> None:
        user, secret, codes = enrolled_user
        temp_token = TwoFactorService.create_temp_token(str(user.id))

        first = client.post(
            "/api/2fa/verify-recovery",
            json={"userId": str(user.id), "code": codes[0], "tempToken": temp_token},
        )
        assert first.status_code == 200

        second = client.post(
            "/api/2fa/verify-token",
            json={
                "userId": str(user.id),
                "token": pyotp.TOTP(secret).now(),
                "tempToken": temp_token,
            },
        )

        assert second.status_code == 401
        assert second.json()["type"] == "2fa_temp_token_expired"
        assert "access_token" not in second.json()

    def test_bad_temp_token_is_401(self, client: TestClient, enrolled_user) -> None:
        user, secret, _ = enrolled_user

        response = client.post(
            "/api/2fa/verify-token",
            json={
                "userId": str(user.id),
                "token": pyotp.TOTP(secret).now(),
                "tempToken": "garbage",
            },
        )

        assert response.status_code == 401
        assert response.json()["type"] == "2fa_temp_token_expired"

    def test_unknown_user_is_404(self, client: TestClient) -> None:
        response = client.post(
            "/api/2fa/verify-token", json={"userId": "missing", "token": "123456"}
        )

        assert response.status_code == 404
        assert response.json()["message"] == "User not found"

    def test_not_enabled_is_400(
        self, client: TestClient, test_user: db_models.User
    ) -> None:
        response = client.post(
            "/api/2fa/verify-token", json={"userId": str(test_user.id), "token": "123456"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "2FA not enabled"

    def test_account_lockout_is_429(self, client: TestClient, enrolled_user) -> None:
        user, secret, _ = enrolled_user
        bad = wrong_code(secret)

        for _ in range(5):
            response = client.post(
                "/api/2fa/verify-token", json={"userId": str(user.id), "token": bad}
            )
            assert response.status_code == 400

        response = client.post(
            "/api/2fa/verify-token",
            json={"userId": str(user.id), "token": pyotp.TOTP(secret).now()},
        )

        assert response.status_code == 429
        assert response.json()["type"] == "rate_limited"
        assert int(response.headers["Retry-After"]) > 0

    def test_lockout_is_scoped_to_guessing_address(
        self, client: TestClient, enrolled_user
    ) -> None:
        user, secret, codes = enrolled_user
        bad = wrong_code(secret)
        attacker = {"X-Forwarded-For": "203.0.113.9"}

        for _ in range(5):
            response = client.post(
                "/api/2fa/verify-token",
                json={"userId": str(user.id), "token": bad},
                headers=attacker,
            )
            assert response.status_code == 400
        locked = client.post(
            "/api/2fa/verify-recovery",
            json={"userId": str(user.id), "code": codes[0]},
            headers=attacker,
        )
        assert locked.status_code == 429

        owner = client.post(
            "/api/2fa/verify-recovery",
            json={"userId": str(user.id), "code": codes[0]},
            headers={"X-Forwarded-For": "198.51.100.4"},
        )

        assert owner.status_code == 200
        assert owner.json() == {"verified": True}

    def test_ip_rate_limit_is_429(self, client: TestClient) -> None:
        for _ in range(10):
            response = client.post(
                "/api/2fa/verify-token", json={"userId": "missing", "token": "123456"}
            )
            assert response.status_code == 404

        response = client.post(
            "/api/2fa/verify-token", json={"userId": "missing", "token": "123456"}
        )

        assert response.status_code == 429
        assert response.json()["type"] == "rate_limited"
        assert "Retry-After" in response.headers


class TestVerifyRecoveryEndpoint:
    """POST /api/2fa/verify-recovery"""

    def test_code_works_once(self, client: TestClient, enrolled_user) -> None:
        user, _, codes = enrolled_user
        body = {"userId": str(user.id), "code": codes[0]}

        first = client.post("/api/2fa/verify-recovery", json=body)
        second = client.post("/api/2fa/verify-recovery", json=body)

        assert first.status_code == 200
        assert first.json() == {"verified": True}
        assert second.status_code == 400
        assert second.json()["message"] == "Invalid recovery code"


class TestDisableEndpoint:
    """POST /api/2fa/disable"""

    def test_disables_with_valid_code(self, client: TestClient, enrolled_user) -> None:
        user, secret, _ = enrolled_user

        response = client.post(
            "/api/2fa/disable",
            json={"token": pyotp.TOTP(secret).now()},
            headers=bearer(user),
        )

        assert response.status_code == 200
        assert response.json() == {"message": "2FA disabled successfully"}

        status = client.get("/api/2fa/status", headers=bearer(user)).json()
        assert status == {"enabled": False, "pending": False, "recoveryCodesRemaining": 0}

    def test_invalid_code_is_400(self, client: TestClient, enrolled_user) -> None:
        user, secret, _ = enrolled_user

        response = client.post(
            "/api/2fa/disable", json={"token": wrong_code(secret)}, headers=bearer(user)
        )

        assert response.status_code == 400
        status = client.get("/api/2fa/status", headers=bearer(user)).json()
        assert status["enabled"] is True


class TestStatusEndpoint:
    """GET /api/2fa/status"""

    def test_enabled_status(self, client: TestClient, enrolled_user) -> None:
        user, _, _ = enrolled_user

        response = client.get("/api/2fa/status", headers=bearer(user))

        assert response.status_code == 200
        assert response.json() == {
            "enabled": True,
            "pending": False,
            "recoveryCodesRemaining": 10,
        }


class TestRegenerateEndpoint:
    """POST /api/2fa/recovery-codes/regenerate"""

    def test_returns_new_codes(self, client: TestClient, enrolled_user) -> None:
        user, secret, _ = enrolled_user

        response = client.post(
            "/api/2fa/recovery-codes/regenerate",
            json={"token": pyotp.TOTP(secret).now()},
            headers=bearer(user),
        )

        assert response.status_code == 200
        assert len(response.json()["recoveryCodes"]) == 10
        assert response.headers["Cache-Control"].startswith("no-store")
