"""Time-based one-time passwords (SHA-1, 6 digits, 30 s step) via pyotp."""

from __future__ import annotations

import base64
import binascii
import io

import pyotp
import qrcode
from qrcode.image.pil import PilImage

TOTP_DIGITS = 6
TOTP_PERIOD = 30
TOTP_WINDOW = 1  # steps of drift tolerated either side
TOTP_ISSUER = "NeoSynth Neural System"


def generate_secret(length: int = 32) -> str:
    """Generate a random base32 secret of *length* characters."""
    return pyotp.random_base32(length)


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD)


def totp_at(secret: str, timestamp: float | None = None) -> str:
    """Return the code valid at *timestamp* (defaults to now)."""
    if timestamp is None:
        return _totp(secret).now()
    return _totp(secret).at(int(timestamp))


def verify_totp(
    secret: str,
    code: str,
    *,
    timestamp: float | None = None,
    window: int = TOTP_WINDOW,
) -> bool:
    """Check *code* against the previous, current and next time steps.

    A malformed secret or a code that is not all digits never verifies.
    """
    code = code.strip()
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    for_time = None if timestamp is None else int(timestamp)
    try:
        return _totp(secret).verify(code, for_time=for_time, valid_window=window)
    except (binascii.Error, ValueError):
        return False


def provisioning_uri(secret: str, username: str, *, issuer: str = TOTP_ISSUER) -> str:
    """Build the ``otpauth://`` URI an authenticator app scans."""
    return _totp(secret).provisioning_uri(name=username, issuer_name=issuer)


def qr_data_url(data: str) -> str:
    """Render *data* (usually a provisioning URI) as a PNG ``data:`` URL."""
    img = qrcode.make(data, image_factory=PilImage, box_size=8, border=2)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
