"""Ephemeral step tokens bridging password verification and the second factor.

Tokens live only in this process. A restart drops in-flight logins and the
user simply starts again at step 1. In a multi-process deployment both login
steps must reach the same process (sticky sessions) or this store must be
replaced by a shared one.
"""

from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

DEFAULT_STEP_TOKEN_TTL = 300


@dataclass(frozen=True)
class StepToken:
    """A password-verified login waiting for its second factor."""

    token: str
    user_id: str
    device_fingerprint: str
    is_admin: bool
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class StepTokenStore:
    """Process-local table of step tokens with a fixed TTL.

    A token's expiry is set once at issue; failed step-2 attempts never
    extend it.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_STEP_TOKEN_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._tokens: dict[str, StepToken] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def issue(self, user_id: str, device_fingerprint: str, *, is_admin: bool) -> StepToken:
        """Mint a fresh token for a user who just passed step 1."""
        step = StepToken(
            token=secrets.token_hex(32),
            user_id=user_id,
            device_fingerprint=device_fingerprint,
            is_admin=is_admin,
            expires_at=self._clock() + self._ttl,
        )
        with self._lock:
            self._tokens[step.token] = step
        return step

    def get(self, token: str) -> StepToken | None:
        """Return the live token, deleting it if it has expired."""
        with self._lock:
            step = self._tokens.get(token)
            if step is None:
                return None
            if step.is_expired(self._clock()):
                del self._tokens[token]
                return None
            return step

    def consume(self, token: str) -> StepToken | None:
        """Atomically remove and return a live token.

        Of two concurrent callers only one gets the token back.
        """
        with self._lock:
            step = self._tokens.pop(token, None)
        if step is None or step.is_expired(self._clock()):
            return None
        return step

    def discard(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def sweep(self) -> int:
        """Delete every expired token and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [t for t, step in self._tokens.items() if step.is_expired(now)]
            for token in expired:
                del self._tokens[token]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
