"""Tests for RFC 6238 TOTP generation and verification."""

from __future__ import annotations

import base64
from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from neosynth.utils.totp import (
    TOTP_PERIOD,
    generate_secret,
    provisioning_uri,
    qr_data_url,
    totp_at,
    verify_totp,
)

# RFC 6238 appendix B seed ("12345678901234567890"), base32.
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


class TestGeneration:
    @pytest.mark.parametrize(
        ("timestamp", "expected"),
        [(59, "287082"), (1111111109, "081804"), (1234567890, "005924")],
    )
    def test_rfc_vectors(self, timestamp: int, expected: str) -> None:
        assert totp_at(RFC_SECRET, timestamp) == expected

    def test_secret_is_base32(self) -> None:
        secret = generate_secret()
        assert secret == secret.upper()
        assert "=" not in secret
        assert generate_secret() != secret

    def test_secret_length(self) -> None:
        secret = generate_secret()
        assert len(secret) == 32
        assert len(base64.b32decode(secret)) == 20

    def test_agrees_with_authenticator_clock(self) -> None:
        secret = generate_secret()
        assert verify_totp(secret, pyotp.TOTP(secret).now())


class TestVerify:
    def test_current_step(self) -> None:
        assert verify_totp(RFC_SECRET, "081804", timestamp=1111111109)

    def test_adjacent_steps_within_window(self) -> None:
        now = 1111111109
        previous = totp_at(RFC_SECRET, now - TOTP_PERIOD)
        following = totp_at(RFC_SECRET, now + TOTP_PERIOD)
        assert verify_totp(RFC_SECRET, previous, timestamp=now)
        assert verify_totp(RFC_SECRET, following, timestamp=now)

    def test_outside_window(self) -> None:
        now = 1111111109
        stale = totp_at(RFC_SECRET, now - 3 * TOTP_PERIOD)
        assert not verify_totp(RFC_SECRET, stale, timestamp=now)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    def test_malformed_codes(self, code: str) -> None:
        assert not verify_totp(RFC_SECRET, code, timestamp=59)

    def test_malformed_secret(self) -> None:
        assert not verify_totp("not base32!", "123456")


class TestProvisioningUri:
    def test_contents(self) -> None:
        uri = provisioning_uri("SECRET", "alice")
        parsed = urlparse(uri)
        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert "alice" in parsed.path
        params = parse_qs(parsed.query)
        assert params["secret"] == ["SECRET"]
        assert params["issuer"] == ["NeoSynth Neural System"]
        # Defaults (SHA1, 6 digits, 30 s) are implied when omitted.
        assert params.get("digits", ["6"]) == ["6"]
        assert parsed.path.startswith("/NeoSynth")


class TestQrDataUrl:
    def test_png_data_url(self) -> None:
        url = qr_data_url(provisioning_uri("SECRET", "alice"))
        prefix = "data:image/png;base64,"
        assert url.startswith(prefix)
        assert base64.b64decode(url[len(prefix) :]).startswith(b"\x89PNG")
