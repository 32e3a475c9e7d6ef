"""Shared pytest configuration and fixtures."""

import sqlite3
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from helpers import NOW, StubOracle

from kubepulse.config import Settings, get_settings
from kubepulse.store.clusters import save_cluster
from kubepulse.store.db import get_initialized_connection, utc_iso
from kubepulse.store.metrics import save_metric_samples
from kubepulse.store.models import ClusterRecord, MetricSampleRecord


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so tests that forget mock_settings fail locally, not just in CI.

    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    Tests that forget it hit a validation error on DATABASE_PATH.
    """
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings(tmp_path: Path) -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "database_path": str(tmp_path / "kubepulse.db"),
            "llm_provider": "openai",
            "openai_api_key": "",
            "openai_model": "gpt-4o-mini",
            "openai_base_url": "",
            "anthropic_api_key": "",
            "anthropic_model": "claude-sonnet-4-20250514",
            "prometheus_timeout_seconds": 5.0,
            "kubernetes_timeout_seconds": 5.0,
            "oracle_timeout_seconds": 5.0,
            "notification_timeout_seconds": 5.0,
            "threshold_refresh_on_duplicate": True,
            # Scheduler off unless a test turns it on
            "monitor_interval_seconds": 0,
            "analysis_interval_seconds": 0,
            "dashboard_url": "https://dashboard.test",
            # SMTP / Email
            "smtp_host": "smtp.test.com",
            "smtp_port": 587,
            "smtp_username": "test@test.com",
            "smtp_password": "test-password",
            "smtp_sender": "kubepulse@test.com",
            "log_level": "INFO",
        },
    )()
    with (
        patch("kubepulse.config.get_settings", return_value=fake_settings),
        patch("kubepulse.store.db.get_settings", return_value=fake_settings),
        patch("kubepulse.monitoring.thresholds.get_settings", return_value=fake_settings),
        patch("kubepulse.notify.dispatcher.get_settings", return_value=fake_settings),
        patch("kubepulse.notify.email.get_settings", return_value=fake_settings),
        patch("kubepulse.analysis.correlation.get_settings", return_value=fake_settings),
        patch("kubepulse.analysis.trends.get_settings", return_value=fake_settings),
        patch("kubepulse.analysis.suggestions.get_settings", return_value=fake_settings),
        patch("kubepulse.pipeline.get_settings", return_value=fake_settings),
        patch("kubepulse.scheduler.get_settings", return_value=fake_settings),
        patch("kubepulse.api.main.get_settings", return_value=fake_settings),
        patch("kubepulse.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest.fixture
def db() -> Generator[sqlite3.Connection]:
    """Fresh in-memory store with the schema applied."""
    conn = get_initialized_connection(":memory:")
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def cluster(db: sqlite3.Connection) -> ClusterRecord:
    """A registered, active cluster owned by ``ops``."""
    cluster_id = save_cluster(
        db, name="prod", owner="ops", endpoint="https://k8s.test:6443", token="fake-token", namespace="default"
    )
    return ClusterRecord(
        id=cluster_id,
        name="prod",
        owner="ops",
        endpoint="https://k8s.test:6443",
        token="fake-token",
        ca_data=None,
        namespace="default",
        is_active=True,
        created_at=utc_iso(NOW),
    )


@pytest.fixture
def add_samples(db: sqlite3.Connection) -> Callable[..., None]:
    """Insert metric samples: ``add_samples(cluster_id, [(metric_type, value, node), ...], at=..., unit=...)``.

    Percentage rows are stored as node series, anything else as pod series.
    """

    def _add(
        cluster_id: int,
        rows: list[tuple[str, float, str | None]],
        at: datetime = NOW,
        unit: str = "percentage",
    ) -> None:
        scope = "node" if unit == "percentage" else "pod"
        save_metric_samples(
            db,
            [
                MetricSampleRecord(
                    id=0,
                    cluster_id=cluster_id,
                    metric_type=metric_type,
                    metric_name=f"{scope}_{metric_type}_usage",
                    value=value,
                    unit=unit,
                    node_name=node,
                    namespace=None,
                    resource_name=None,
                    labels={"instance": node} if node else {},
                    timestamp=utc_iso(at),
                )
                for metric_type, value, node in rows
            ],
        )

    return _add


@pytest.fixture
def stub_oracle() -> StubOracle:
    return StubOracle()
