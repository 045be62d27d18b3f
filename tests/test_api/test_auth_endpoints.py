"""End-to-end tests for /api/auth: enrollment, login, devices and sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from neosynth.api.middleware.cookies import sign_value
from neosynth.utils.totp import totp_at

if TYPE_CHECKING:
    from fastapi.testclient import TestClient

PASSWORD = "correct horse battery"


def _step1(client: TestClient, username: str, fingerprint: str, password: str = PASSWORD):
    return client.post(
        "/api/auth/auth-step1",
        json={"username": username, "password": password, "deviceFingerprint": fingerprint},
    )


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


class TestEnrollment:
    def test_first_time_setup(self, client: TestClient, register) -> None:
        before = client.get("/api/auth/first-time-setup").json()
        assert before["isFirstTimeSetup"] is True
        assert before["willCreateAdmin"] is True
        register()
        after = client.get("/api/auth/first-time-setup").json()
        assert after["isFirstTimeSetup"] is False
        assert after["adminCount"] == 1

    def test_setup_and_verify_totp(self, client: TestClient) -> None:
        resp = client.post("/api/auth/setup-totp", json={"username": "alice"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["otpauthUrl"].startswith("otpauth://totp/")
        assert body["qrCodeUrl"].startswith("data:image/png;base64,")

        ok = client.post(
            "/api/auth/verify-totp", json={"secret": body["secret"], "token": totp_at(body["secret"])}
        )
        assert ok.status_code == 200
        assert ok.json() == {"verified": True}

        bad = client.post("/api/auth/verify-totp", json={"secret": body["secret"], "token": "12"})
        assert bad.status_code == 400

    def test_setup_totp_is_throttled_per_ip(self, client: TestClient) -> None:
        for i in range(5):
            assert client.post("/api/auth/setup-totp", json={"username": f"u{i}"}).status_code == 200
        resp = client.post("/api/auth/setup-totp", json={"username": "u6"})
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) > 0
        assert resp.json()["code"] == "rate-limited"

    def test_register_sets_signed_cookie(self, client: TestClient, register) -> None:
        body = register(keep_cookie=True)
        assert body["userId"] == "alice"
        assert body["sessionToken"].startswith("nss_")
        assert body["deviceToken"]
        cookie = client.cookies.get("sessionToken")
        assert cookie is not None
        assert cookie.startswith("s:")
        assert client.get("/api/auth/session-status").json()["userId"] == "alice"

    def test_register_duplicate(self, client: TestClient, register) -> None:
        register("alice")
        resp = client.post(
            "/api/auth/register",
            json={
                "username": "Alice",
                "password": PASSWORD,
                "totpSecret": "JBSWY3DPEHPK3PXP",
                "backupCodes": ["X"],
                "deviceFingerprint": "fp",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "user-already-exists"

    def test_register_missing_fields(self, client: TestClient) -> None:
        resp = client.post("/api/auth/register", json={"username": "alice"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "missing-fields"


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_trusted_device_skips_second_factor(self, client: TestClient, register) -> None:
        register(fingerprint="fp-browser")
        resp = _step1(client, "alice", "fp-browser")
        assert resp.status_code == 200
        body = resp.json()
        assert body["requiresStep2"] is False
        assert body["user"] == {"userId": "alice", "username": "alice", "isAdmin": True}
        assert "stepToken" not in body
        assert client.cookies.get("sessionToken")

    def test_new_device_two_step_flow(self, client: TestClient, register) -> None:
        user = register(fingerprint="fp-browser")
        step1 = _step1(client, "alice", "fp-phone").json()
        assert step1["requiresStep2"] is True
        assert step1["availableMethods"] == ["totp", "backup"]
        assert step1["expiresIn"] == 300
        assert not client.cookies.get("sessionToken")

        wrong = client.post(
            "/api/auth/auth-step2", json={"stepToken": step1["stepToken"], "backupCode": "NOPE"}
        )
        assert wrong.status_code == 401
        assert wrong.json()["stepToken"] == step1["stepToken"]

        no_factor = client.post("/api/auth/auth-step2", json={"stepToken": step1["stepToken"]})
        assert no_factor.status_code == 401
        assert no_factor.json()["stepToken"] == step1["stepToken"]

        done = client.post(
            "/api/auth/auth-step2",
            json={"stepToken": step1["stepToken"], "totpToken": totp_at(user["secret"])},
        )
        assert done.status_code == 200, done.text
        body = done.json()
        assert body["authMethod"] == "totp"
        assert body["deviceToken"]
        assert client.cookies.get("sessionToken")

        client.cookies.clear()
        again = _step1(client, "alice", "fp-phone").json()
        assert again["requiresStep2"] is False

    def test_backup_code_burns(self, client: TestClient, register) -> None:
        user = register()
        code = user["backupCodes"][0]
        first = _step1(client, "alice", "fp-a").json()
        ok = client.post(
            "/api/auth/auth-step2", json={"stepToken": first["stepToken"], "backupCode": code}
        )
        assert ok.json()["authMethod"] == "backupCode"

        client.cookies.clear()
        second = _step1(client, "alice", "fp-b").json()
        replay = client.post(
            "/api/auth/auth-step2", json={"stepToken": second["stepToken"], "backupCode": code}
        )
        assert replay.status_code == 401

    def test_invalid_credentials_are_uniform(self, client: TestClient, register) -> None:
        register()
        wrong = _step1(client, "alice", "fp-browser", password="nope nope nope")
        unknown = _step1(client, "mallory", "fp-browser")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_step2_with_unknown_token(self, client: TestClient) -> None:
        resp = client.post("/api/auth/auth-step2", json={"stepToken": "x", "totpToken": "123456"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "step-token-invalid"

    def test_temp_code_from_trusted_device(self, client: TestClient, register) -> None:
        user = register()
        issued = client.post(
            "/api/auth/generate-temp-code",
            json={"userId": user["userId"], "deviceToken": user["deviceToken"]},
        )
        assert issued.status_code == 200
        temp_code = issued.json()["tempCode"]
        assert len(temp_code) == 6

        step1 = _step1(client, "alice", "fp-tv").json()
        assert "tempCode" in step1["availableMethods"]
        done = client.post(
            "/api/auth/auth-step2", json={"stepToken": step1["stepToken"], "tempCode": temp_code}
        )
        assert done.json()["authMethod"] == "tempCode"

    def test_temp_code_requires_trusted_device(self, client: TestClient, register) -> None:
        user = register()
        resp = client.post(
            "/api/auth/generate-temp-code",
            json={"userId": user["userId"], "deviceToken": "0" * 64},
        )
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    def test_session_token_sources(self, client: TestClient, register) -> None:
        user = register()
        token = user["sessionToken"]
        assert client.get("/api/auth/session-status", headers={"x-session-token": token}).status_code == 200
        assert (
            client.get("/api/auth/session-status", headers={"authorization": f"Bearer {token}"}).status_code
            == 200
        )
        assert client.get("/api/auth/session-status").status_code == 401

    def test_tampered_cookie_rejected(self, client: TestClient, register) -> None:
        user = register()
        client.cookies.set("sessionToken", sign_value(user["sessionToken"], "wrong-secret"))
        resp = client.get("/api/auth/session-status")
        assert resp.status_code == 401
        assert resp.json() == {"code": "unauthorized", "message": "Unauthorized"}

    def test_session_info(self, client: TestClient, register) -> None:
        user = register()
        resp = client.get("/api/auth/session-info", headers={"x-session-token": user["sessionToken"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["timeRemaining"] > 0
        assert body["hoursRemaining"] >= 89 * 24
        assert body["isExpiringSoon"] is False
        assert set(body["deviceInfo"]) == {"userAgent", "ip", "platform"}

    def test_logout_revokes(self, client: TestClient, register) -> None:
        register(keep_cookie=True)
        assert client.get("/api/auth/session-status").status_code == 200
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert not client.cookies.get("sessionToken")
        assert client.get("/api/auth/session-status").status_code == 401

    def test_logged_out_token_stays_dead(self, client: TestClient, register) -> None:
        user = register()
        headers = {"x-session-token": user["sessionToken"]}
        client.post("/api/auth/logout", headers=headers)
        assert client.get("/api/auth/session-status", headers=headers).status_code == 401

    def test_reset_password(self, client: TestClient, register) -> None:
        user = register()
        headers = {"x-session-token": user["sessionToken"]}
        wrong = client.post(
            "/api/auth/reset-password",
            json={"currentPassword": "not mine at all", "newPassword": "another long one"},
            headers=headers,
        )
        assert wrong.status_code == 401
        # The session survives a wrong current password.
        assert client.get("/api/auth/session-status", headers=headers).status_code == 200

        ok = client.post(
            "/api/auth/reset-password",
            json={"currentPassword": PASSWORD, "newPassword": "another long one"},
            headers=headers,
        )
        assert ok.status_code == 200
        assert _step1(client, "alice", "fp-browser", password="another long one").status_code == 200


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


class TestDevices:
    def test_list_and_remove_own_devices(self, client: TestClient, register) -> None:
        user = register()
        headers = {"x-session-token": user["sessionToken"]}
        listed = client.get("/api/auth/devices/alice", headers=headers)
        assert listed.status_code == 200
        devices = listed.json()["devices"]
        assert [d["fingerprint"] for d in devices] == ["fp-browser"]
        assert "deviceToken" not in devices[0]

        removed = client.delete("/api/auth/devices/alice/fp-browser", headers=headers)
        assert removed.status_code == 200
        assert client.get("/api/auth/devices/alice", headers=headers).json()["devices"] == []

    def test_other_users_devices_forbidden(self, client: TestClient, register) -> None:
        register("alice")
        bob = register("bob", fingerprint="fp-bob")
        resp = client.get("/api/auth/devices/alice", headers={"x-session-token": bob["sessionToken"]})
        assert resp.status_code == 403

    def test_admin_may_list_any_devices(self, client: TestClient, register) -> None:
        admin = register("alice")
        register("bob", fingerprint="fp-bob")
        resp = client.get("/api/auth/devices/bob", headers={"x-session-token": admin["sessionToken"]})
        assert resp.status_code == 200
        assert len(resp.json()["devices"]) == 1
