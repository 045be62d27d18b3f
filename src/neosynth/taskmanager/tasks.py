"""Expiry sweeps standing in for store-level TTL indexes.

- ``task_sweep_sessions``: hard-delete sessions past ``expires_at``
- ``task_sweep_step_tokens``: drop expired in-memory step tokens and idle
  rate-limit windows
- ``task_sweep_temp_codes``: delete used or expired temporary codes
- ``task_sweep_api_keys``: delete API keys past ``expires_at``

Failures propagate to the ``TaskManager``, which logs and records them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine

logger = logging.getLogger(__name__)


def _count(engine: AuthEngine, entity: str, removed: int) -> None:
    if removed and engine.metrics is not None:
        engine.metrics.swept.labels(entity=entity).inc(removed)
    if removed:
        logger.info("Swept %d expired %s", removed, entity.replace("_", " "))


async def task_sweep_sessions(engine: AuthEngine) -> None:
    _count(engine, "sessions", await engine.sessions.sweep_expired())


async def task_sweep_step_tokens(engine: AuthEngine) -> None:
    """In-memory only; never touches the datastore."""
    _count(engine, "step_tokens", engine.step_tokens.sweep())
    drained = engine.rate_limiter.sweep()
    if drained:
        logger.debug("Dropped %d idle rate-limit keys", drained)


async def task_sweep_temp_codes(engine: AuthEngine) -> None:
    _count(engine, "temp_codes", await engine.second_factor.sweep_expired_temp_codes())


async def task_sweep_api_keys(engine: AuthEngine) -> None:
    _count(engine, "api_keys", await engine.api_keys.sweep_expired())
