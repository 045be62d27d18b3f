"""Prometheus metrics for the auth service."""

from __future__ import annotations

from neosynth.metrics.collector import AuthMetrics
from neosynth.metrics.middleware import PrometheusMiddleware

__all__ = ["AuthMetrics", "PrometheusMiddleware"]
