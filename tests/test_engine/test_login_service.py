"""Tests for the two-step login protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from neosynth.engine.services.login_service import LoginState
from neosynth.engine.services.second_factor_service import SecondFactor, SecondFactorMethod
from neosynth.engine.services.session_service import DeviceInfo
from neosynth.errors.neosynth_errors import NeoSynthError, StepTwoRejected
from neosynth.utils.totp import totp_at

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine

CHROME_MAC = DeviceInfo(
    user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X) Chrome/120.0", ip="10.0.0.2"
)


class TestStepOne:
    async def test_trusted_device_completes(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        result = await engine.logins.step1(user.username, user.password, user.fingerprint)
        assert result.state == LoginState.COMPLETED
        assert not result.requires_step2
        assert result.session is not None
        assert result.step_token is None
        assert result.user.last_login is not None

    async def test_new_device_requires_step_two(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        result = await engine.logins.step1(user.username, user.password, "fp-new")
        assert result.requires_step2
        assert result.session is None
        assert result.step_token
        assert result.available_methods == ["totp", "backup"]
        assert result.expires_in == 300

    async def test_username_is_normalized(self, engine: AuthEngine, enroll) -> None:
        await enroll("Alice.Smith")
        result = await engine.logins.step1("alice smith", "correct horse battery", "fp-registered")
        assert result.state == LoginState.COMPLETED

    async def test_wrong_password_and_unknown_user_are_uniform(
        self, engine: AuthEngine, enroll
    ) -> None:
        user = await enroll()
        with pytest.raises(NeoSynthError) as wrong:
            await engine.logins.step1(user.username, "wrong password", user.fingerprint)
        with pytest.raises(NeoSynthError) as unknown:
            await engine.logins.step1("nobody", "wrong password", user.fingerprint)
        assert wrong.value.status_code == unknown.value.status_code == 401
        assert wrong.value.message == unknown.value.message

    async def test_missing_fields(self, engine: AuthEngine) -> None:
        with pytest.raises(NeoSynthError) as exc_info:
            await engine.logins.step1("alice", "", "fp")
        assert exc_info.value.status_code == 400


class TestStepTwo:
    async def test_totp_completes_and_trusts_device(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        result = await engine.logins.step2(
            step1.step_token, SecondFactor(totp_token=totp_at(user.totp_secret)), device=CHROME_MAC
        )
        assert result.state == LoginState.COMPLETED
        assert result.auth_method == SecondFactorMethod.TOTP
        assert result.session is not None
        assert result.device_token

        trusted = await engine.devices.is_trusted(user.user_id, "fp-new")
        assert trusted is not None
        assert trusted.device_info == "Chrome on Mac"

        again = await engine.logins.step1(user.username, user.password, "fp-new")
        assert again.state == LoginState.COMPLETED

    async def test_step_token_is_single_use(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        await engine.logins.step2(step1.step_token, SecondFactor(backup_code=user.backup_codes[0]))
        with pytest.raises(NeoSynthError) as exc_info:
            await engine.logins.step2(
                step1.step_token, SecondFactor(backup_code=user.backup_codes[1])
            )
        assert exc_info.value.code == "step-token-invalid"

    async def test_mismatch_keeps_token_for_retry(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        with pytest.raises(StepTwoRejected) as exc_info:
            await engine.logins.step2(step1.step_token, SecondFactor(backup_code="NOTACODE"))
        assert exc_info.value.step_token == step1.step_token
        assert exc_info.value.to_dict()["stepToken"] == step1.step_token

        result = await engine.logins.step2(
            step1.step_token, SecondFactor(backup_code=user.backup_codes[0])
        )
        assert result.auth_method == SecondFactorMethod.BACKUP_CODE

    async def test_unknown_token(self, engine: AuthEngine) -> None:
        with pytest.raises(NeoSynthError) as exc_info:
            await engine.logins.step2("deadbeef", SecondFactor(totp_token="123456"))
        assert exc_info.value.status_code == 401

    async def test_missing_factor(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        with pytest.raises(StepTwoRejected) as exc_info:
            await engine.logins.step2(step1.step_token, SecondFactor())
        assert exc_info.value.status_code == 401
        assert exc_info.value.step_token == step1.step_token
        # The token survives, so the client can retry with a factor.
        result = await engine.logins.step2(
            step1.step_token, SecondFactor(backup_code=user.backup_codes[0])
        )
        assert result.auth_method == SecondFactorMethod.BACKUP_CODE

    async def test_expired_token(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        engine.step_tokens.discard(step1.step_token)
        with pytest.raises(NeoSynthError) as exc_info:
            await engine.logins.step2(
                step1.step_token, SecondFactor(totp_token=totp_at(user.totp_secret))
            )
        assert exc_info.value.code == "step-token-invalid"

    async def test_temp_code_login(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        code, _ = await engine.second_factor.issue_temp_code(user.user_id)
        step1 = await engine.logins.step1(user.username, user.password, "fp-new")
        assert "tempCode" in step1.available_methods
        result = await engine.logins.step2(step1.step_token, SecondFactor(temp_code=code))
        assert result.auth_method == SecondFactorMethod.TEMP_CODE

    async def test_admin_flag_carried_to_session(self, engine: AuthEngine, enroll) -> None:
        admin = await enroll("admin")
        assert admin.is_admin
        step1 = await engine.logins.step1(admin.username, admin.password, "fp-new")
        result = await engine.logins.step2(
            step1.step_token, SecondFactor(totp_token=totp_at(admin.totp_secret))
        )
        assert result.session.is_admin
