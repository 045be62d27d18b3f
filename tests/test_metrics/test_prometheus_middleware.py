"""Tests for the HTTP metrics middleware and the auth metrics collector."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from neosynth.metrics.collector import AuthMetrics
from neosynth.metrics.middleware import PrometheusMiddleware

_APP = "neosynth-auth"


def _app(metrics: AuthMetrics) -> FastAPI:
    app = FastAPI()
    app.add_middleware(PrometheusMiddleware, registry=metrics.registry)

    @app.get("/users/{userId}")
    async def user(userId: str) -> dict:  # noqa: N803
        return {"userId": userId}

    return app


class TestPrometheusMiddleware:
    def test_counts_by_route_template(self) -> None:
        metrics = AuthMetrics()
        client = TestClient(_app(metrics))
        client.get("/users/alice")
        client.get("/users/bob")

        labels = {"method": "GET", "path": "/users/{userId}", "status_code": "200", "app": _APP}
        assert metrics.registry.get_sample_value("http_request_total", labels) == 2
        assert metrics.registry.get_sample_value("http_request_total", {**labels, "path": "/users/alice"}) is None

    def test_records_duration(self) -> None:
        metrics = AuthMetrics()
        TestClient(_app(metrics)).get("/users/alice")
        count = metrics.registry.get_sample_value(
            "http_request_duration_seconds_count",
            {"method": "GET", "path": "/users/{userId}", "app": _APP},
        )
        assert count == 1

    def test_unmatched_route(self) -> None:
        metrics = AuthMetrics()
        TestClient(_app(metrics)).get("/nowhere")
        labels = {"method": "GET", "path": "unmatched", "status_code": "404", "app": _APP}
        assert metrics.registry.get_sample_value("http_request_total", labels) == 1


class TestAuthMetrics:
    def test_registries_are_isolated(self) -> None:
        first, second = AuthMetrics(), AuthMetrics()
        first.logins.labels(step="step1", outcome="success").inc()
        assert second.registry.get_sample_value(
            "neosynth_auth_logins_total", {"step": "step1", "outcome": "success"}
        ) is None

    def test_track_cron_records_on_failure(self) -> None:
        metrics = AuthMetrics()
        with pytest.raises(RuntimeError), metrics.track_cron("sweep"):
            raise RuntimeError("boom")
        assert metrics.registry.get_sample_value(
            "neosynth_auth_cron_histogram_count", {"job_name": "sweep"}
        ) == 1
        assert metrics.registry.get_sample_value(
            "neosynth_auth_cron_last_execution_gauge", {"job_name": "sweep"}
        ) > 0


class TestPrometheusMiddlewareFailures:
    def test_unhandled_error_recorded_as_500(self) -> None:
        metrics = AuthMetrics()
        app = _app(metrics)

        @app.get("/broken")
        async def broken() -> dict:
            raise RuntimeError("boom")

        resp = TestClient(app, raise_server_exceptions=False).get("/broken")
        assert resp.status_code == 500
        labels = {"method": "GET", "path": "/broken", "status_code": "500", "app": _APP}
        assert metrics.registry.get_sample_value("http_request_total", labels) == 1

    def test_in_flight_returns_to_zero(self) -> None:
        metrics = AuthMetrics()
        TestClient(_app(metrics)).get("/users/alice")
        assert metrics.registry.get_sample_value("http_requests_in_flight", {"app": _APP}) == 0
