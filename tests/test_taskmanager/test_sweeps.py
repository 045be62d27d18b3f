"""Tests for the TaskManager and the expiry sweep jobs."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from functools import partial
from typing import TYPE_CHECKING

from sqlalchemy import update

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.session import UserSession
from neosynth.engine.ratelimit import MINUTE, WindowLimit
from neosynth.metrics.collector import AuthMetrics
from neosynth.taskmanager.manager import CronJob, TaskManager
from neosynth.taskmanager.tasks import (
    task_sweep_api_keys,
    task_sweep_sessions,
    task_sweep_step_tokens,
    task_sweep_temp_codes,
)

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine


class TestCronJob:
    def test_default_name(self) -> None:
        async def _handler() -> None:
            pass

        job = CronJob(handler=_handler, period=5.0)
        assert job.name == ""
        assert not job.run_on_start


class TestTaskManager:
    async def test_start_stop(self) -> None:
        tm = TaskManager()
        assert not tm.is_running
        await tm.start()
        assert tm.is_running
        await tm.stop()
        assert not tm.is_running

    async def test_jobs_run_periodically(self) -> None:
        counter = {"value": 0}

        async def _handler() -> None:
            counter["value"] += 1

        tm = TaskManager()
        tm.register("tick", CronJob(handler=_handler, period=0.05))
        await tm.start()
        await asyncio.sleep(0.2)
        await tm.stop()
        assert counter["value"] >= 1

    async def test_failing_job_keeps_running(self) -> None:
        calls = {"value": 0}

        async def _handler() -> None:
            calls["value"] += 1
            raise ValueError("boom")

        tm = TaskManager()
        tm.register("flaky", CronJob(handler=_handler, period=0.02))
        await tm.start()
        await asyncio.sleep(0.15)
        await tm.stop()
        assert calls["value"] >= 2
        status = tm.status("flaky")
        assert status.failures == status.runs
        assert status.last_error == "ValueError: boom"

    async def test_run_on_start(self) -> None:
        ran = asyncio.Event()

        async def _handler() -> None:
            ran.set()

        tm = TaskManager()
        tm.register("startup", CronJob(handler=_handler, period=3600, run_on_start=True))
        await tm.start()
        await asyncio.wait_for(ran.wait(), timeout=2)
        await tm.stop()
        assert tm.status("startup").runs == 1
        assert tm.jobs["startup"].name == "startup"

    async def test_recovery_clears_error(self) -> None:
        fail = {"value": True}

        async def _handler() -> None:
            if fail["value"]:
                raise RuntimeError("down")

        tm = TaskManager()
        tm.register("retry", CronJob(handler=_handler, period=3600))
        assert await tm.run_once("retry") is False
        assert not tm.healthy
        fail["value"] = False
        assert await tm.run_once("retry") is True
        assert tm.healthy
        assert tm.status("retry").runs == 2
        assert tm.status("retry").failures == 1

    async def test_run_once_tracks_metrics(self) -> None:
        metrics = AuthMetrics()
        ran = []

        async def _handler() -> None:
            ran.append(True)

        tm = TaskManager(metrics=metrics)
        tm.register("once", CronJob(handler=_handler, period=3600))
        await tm.run_once("once")
        assert ran == [True]
        assert metrics.registry.get_sample_value(
            "neosynth_auth_cron_histogram_count", {"job_name": "once"}
        ) == 1.0


class TestSweeps:
    async def test_session_sweep(self, engine: AuthEngine) -> None:
        row = await engine.sessions.create("alice")
        async with engine.datastore.session() as session:
            await session.execute(
                update(UserSession)
                .where(UserSession.token == row.token)
                .values(expires_at=utcnow() - timedelta(minutes=1))
            )
            await session.commit()
        await task_sweep_sessions(engine)
        assert await engine.sessions.list_for_user("alice") == []
        assert engine.metrics.registry.get_sample_value(
            "neosynth_auth_swept_total", {"entity": "sessions"}
        ) == 1.0

    async def test_step_token_sweep(self, engine: AuthEngine) -> None:
        engine.rate_limiter.check("idle", [WindowLimit(5, MINUTE)])
        await task_sweep_step_tokens(engine)
        # Nothing has expired yet.
        assert len(engine.step_tokens) == 0
        assert len(engine.rate_limiter) == 1

    async def test_temp_code_sweep(self, engine: AuthEngine, enroll) -> None:
        user = await enroll()
        code, _ = await engine.second_factor.issue_temp_code(user.user_id)
        await engine.second_factor.consume_temp_code(user.user_id, code)
        await task_sweep_temp_codes(engine)
        assert "tempCode" not in await engine.second_factor.available_methods(user.user_id)

    async def test_api_key_sweep_with_nothing_expired(self, engine: AuthEngine) -> None:
        await engine.api_keys.create_api_key(owner_id="alice", owner_is_admin=False, name="k")
        await task_sweep_api_keys(engine)
        assert len(await engine.api_keys.list_for_user("alice")) == 1

    async def test_sweep_failure_is_contained(self, engine: AuthEngine) -> None:
        await engine.datastore.close()
        tm = TaskManager()
        tm.register("session_sweep", CronJob(handler=partial(task_sweep_sessions, engine), period=60))
        assert await tm.run_once("session_sweep") is False
        status = tm.status("session_sweep")
        assert status.failures == 1
        assert status.last_error.startswith("RuntimeError")
        assert not tm.healthy
