"""Tests for the periodic pass scheduler."""

import logging
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

import kubepulse.scheduler as sched_mod
from kubepulse.scheduler import (
    _scheduled_analysis_job,
    _scheduled_monitor_job,
    start_scheduler,
    stop_scheduler,
)


@pytest.fixture(autouse=True)
def _clean_scheduler(mock_settings: Any) -> Any:
    stop_scheduler()
    yield
    stop_scheduler()


class TestStartStop:
    async def test_both_jobs(self, mock_settings: Any) -> None:
        mock_settings.monitor_interval_seconds = 60
        mock_settings.analysis_interval_seconds = 300

        scheduler = start_scheduler()

        assert scheduler is not None
        assert sched_mod._scheduler is scheduler
        assert {job.id for job in scheduler.get_jobs()} == {"monitor_pass", "analysis_pass"}
        stop_scheduler()
        assert sched_mod._scheduler is None

    async def test_zero_interval_disables_one_job(self, mock_settings: Any) -> None:
        mock_settings.monitor_interval_seconds = 30

        scheduler = start_scheduler()

        assert scheduler is not None
        assert [job.id for job in scheduler.get_jobs()] == ["monitor_pass"]

    async def test_no_intervals_is_noop(self) -> None:
        assert start_scheduler() is None
        assert sched_mod._scheduler is None

    def test_stop_without_start(self) -> None:
        stop_scheduler()
        assert sched_mod._scheduler is None


class TestJobs:
    async def test_monitor_job_runs_scheduled_pass(self) -> None:
        with patch("kubepulse.scheduler.run_monitoring_pass", new_callable=AsyncMock) as mock_pass:
            await _scheduled_monitor_job()
        mock_pass.assert_awaited_once()
        assert mock_pass.call_args.kwargs == {"trigger": "scheduled"}

    async def test_analysis_job_runs_scheduled_pass(self) -> None:
        with patch("kubepulse.scheduler.run_analysis_pass", new_callable=AsyncMock) as mock_pass:
            await _scheduled_analysis_job()
        mock_pass.assert_awaited_once()
        assert mock_pass.call_args.kwargs == {"trigger": "scheduled"}

    async def test_job_failure_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        with (
            caplog.at_level(logging.ERROR, logger="kubepulse.scheduler"),
            patch("kubepulse.scheduler.run_monitoring_pass", side_effect=RuntimeError("store gone")),
        ):
            await _scheduled_monitor_job()
        assert "Scheduled monitoring pass failed" in caplog.text

    async def test_connection_failure_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        with (
            caplog.at_level(logging.ERROR, logger="kubepulse.scheduler"),
            patch("kubepulse.scheduler.get_initialized_connection", side_effect=ValueError("Store not configured")),
        ):
            await _scheduled_analysis_job()
        assert "Scheduled analysis pass failed" in caplog.text
