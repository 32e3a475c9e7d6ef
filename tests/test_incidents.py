"""Tests for the incident workflow and its notifications."""

import json
import sqlite3
from typing import Any

import httpx
import pytest
import respx

from kubepulse.monitoring.incidents import (
    IncidentNotFoundError,
    open_incident,
    resolve_incident,
    update_incident_details,
)
from kubepulse.store.models import ClusterRecord
from kubepulse.store.notifications import get_incident, save_channel

HOOK = "https://hooks.slack.test/services/incidents"


@pytest.fixture(autouse=True)
def _use_mock_settings(mock_settings: Any) -> None:
    """Automatically use mock settings for all tests in this module."""


@pytest.fixture
def slack_channel(db: sqlite3.Connection, cluster: ClusterRecord) -> int:
    return save_channel(db, owner=cluster["owner"], kind="slack", name="incidents", target=HOOK)


def _header(route: respx.Route, call: int) -> str:
    payload = json.loads(route.calls[call].request.content)
    return payload["blocks"][0]["text"]["text"]


@pytest.mark.integration
class TestIncidentWorkflow:
    @respx.mock
    async def test_open_notifies_and_records_timeline(
        self, db: sqlite3.Connection, cluster: ClusterRecord, slack_channel: int
    ) -> None:
        route = respx.post(HOOK).mock(return_value=httpx.Response(200, text="ok"))

        incident, notified = await open_incident(
            db, cluster_id=cluster["id"], title="API returning 502s", severity="high", description="since 11:40"
        )

        assert notified == {"sent": 1, "failed": 0}
        assert incident["owner"] == "ops"
        assert incident["status"] == "open"
        assert [e["action"] for e in incident["timeline_events"]] == ["opened", "notification"]
        assert "ALERT" in _header(route, 0)

    @respx.mock
    async def test_update_then_resolve(self, db: sqlite3.Connection, cluster: ClusterRecord, slack_channel: int) -> None:
        route = respx.post(HOOK).mock(return_value=httpx.Response(200, text="ok"))
        incident, _ = await open_incident(db, cluster_id=cluster["id"], title="Disk filling", severity="medium")

        updated, _ = await update_incident_details(db, incident["id"], status="investigating", severity="critical")
        assert updated["status"] == "investigating"
        assert updated["severity"] == "critical"
        assert "UPDATED" in _header(route, 1)

        resolved, notified = await resolve_incident(db, incident["id"])
        assert notified["sent"] == 1
        assert resolved["status"] == "resolved"
        assert resolved["resolved_at"] is not None
        assert "RESOLVED" in _header(route, 2)

        timeline = [e["action"] for e in resolved["timeline_events"]]
        assert timeline == ["opened", "notification", "updated", "notification", "updated", "notification"]
        assert resolved["timeline_events"][2]["details"] == "status: open -> investigating, severity: medium -> critical"

    async def test_no_channels_still_records(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        incident, notified = await open_incident(db, cluster_id=cluster["id"], title="Quiet", severity="low")
        assert notified == {"sent": 0, "failed": 0}
        stored = get_incident(db, incident["id"])
        assert stored is not None
        assert stored["timeline_events"][-1]["details"] == "Notification sent to 0 channel(s)"


class TestIncidentValidation:
    async def test_invalid_severity(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        with pytest.raises(ValueError, match="severity"):
            await open_incident(db, cluster_id=cluster["id"], title="x", severity="warning")

    async def test_unknown_cluster(self, db: sqlite3.Connection) -> None:
        with pytest.raises(LookupError):
            await open_incident(db, cluster_id=404, title="x", severity="low")

    async def test_invalid_status(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        incident, _ = await open_incident(db, cluster_id=cluster["id"], title="x", severity="low")
        with pytest.raises(ValueError, match="status"):
            await update_incident_details(db, incident["id"], status="done")

    async def test_unknown_incident(self, db: sqlite3.Connection) -> None:
        with pytest.raises(IncidentNotFoundError):
            await resolve_incident(db, 404)
