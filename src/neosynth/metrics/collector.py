"""Auth-specific Prometheus series.

Each ``AuthMetrics`` owns its own ``CollectorRegistry`` so several apps (or
tests) can live in one process without duplicate-series errors.

- ``neosynth_auth_logins_total{step,outcome}``
- ``neosynth_auth_gate_rejections_total{reason}``
- ``neosynth_auth_rate_limited_total{scope}``
- ``neosynth_auth_usage_record_failures_total``
- ``neosynth_auth_swept_total{entity}``
- ``neosynth_auth_cron_histogram{job_name}``
- ``neosynth_auth_cron_last_execution_gauge{job_name}``
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

NAMESPACE = "neosynth_auth"


class AuthMetrics:
    """Login outcomes, gate decisions, rate limiting and background sweeps."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        reg = self.registry

        self.logins = Counter(
            "logins", "Login protocol steps by outcome", ("step", "outcome"),
            namespace=NAMESPACE, registry=reg,
        )
        self.gate_rejections = Counter(
            "gate_rejections", "Requests rejected by the request gate", ("reason",),
            namespace=NAMESPACE, registry=reg,
        )
        self.rate_limited = Counter(
            "rate_limited", "Requests rejected by a rate limiter", ("scope",),
            namespace=NAMESPACE, registry=reg,
        )
        self.usage_record_failures = Counter(
            "usage_record_failures", "API key usage updates that failed in the background",
            namespace=NAMESPACE, registry=reg,
        )
        self.swept = Counter(
            "swept", "Expired records removed by background sweeps", ("entity",),
            namespace=NAMESPACE, registry=reg,
        )
        self._cron_duration = Histogram(
            "cron_histogram", "Duration of sweep job executions", ("job_name",),
            namespace=NAMESPACE, registry=reg,
        )
        self._cron_last = Gauge(
            "cron_last_execution_gauge", "Unix time a sweep job last finished", ("job_name",),
            namespace=NAMESPACE, registry=reg,
        )

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Time a sweep run; recorded whether or not the body raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_duration.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
