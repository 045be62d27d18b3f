"""NeoSynthError: base exception class for all auth service errors."""

from __future__ import annotations


class NeoSynthError(Exception):
    """Base error for all NeoSynth auth operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "neosynth-error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def to_dict(self) -> dict[str, object]:
        """Render the JSON body returned to clients."""
        return {"code": self.code, "message": self.message}


class RateLimitedError(NeoSynthError):
    """Raised when an API key exceeds one of its sliding windows."""

    def __init__(self, reset_time: int, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, status_code=429, code="rate-limited")
        self.reset_time = reset_time

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "resetTime": self.reset_time}


class MisconfiguredError(NeoSynthError):
    """Raised at startup when a required server secret is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500, code="misconfigured")


class StepTwoRejected(NeoSynthError):
    """Second factor mismatch; carries the step token so the client can retry."""

    def __init__(self, step_token: str, message: str = "Invalid 2FA code") -> None:
        super().__init__(message, status_code=401, code="invalid-2fa")
        self.step_token = step_token

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "stepToken": self.step_token}
