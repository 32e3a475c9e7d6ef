"""Smart alert detection from pod runtime state and probe events."""

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import TypedDict

from kubepulse.observability.metrics import ALERTS_OPENED_TOTAL
from kubepulse.store.alerts import upsert_smart_alert
from kubepulse.store.db import utc_iso
from kubepulse.store.pods import get_events_since, get_oom_killed_since, get_pods_with_restarts

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(minutes=5)
CRASH_LOOP_RESTARTS = 5
PROBE_FAILURE_REASONS = ("Unhealthy", "ProbeWarning")

OOM_SUGGESTION = (
    "Consider increasing memory limits in your deployment configuration. Check actual memory usage patterns."
)
CRASH_LOOP_SUGGESTION = (
    "Check application logs and configuration. "
    "Common issues: wrong command, missing dependencies, configuration errors."
)
PROBE_SUGGESTION = (
    "Check if your application is responding on the health check endpoint. "
    "Verify probe configuration and timeouts."
)


class SmartAlertChange(TypedDict):
    alert_id: int
    alert_type: str
    severity: str
    title: str
    resource_name: str


class PatternResult(TypedDict):
    created: int
    refreshed: int
    changes: list[SmartAlertChange]  # newly opened alerts only


def detect_pod_patterns(conn: sqlite3.Connection, cluster_id: int, *, now: datetime | None = None) -> PatternResult:
    """Open or refresh oomkill, crash_loop and liveness_failed smart alerts."""
    now = now or datetime.now(UTC)
    ts = utc_iso(now)
    since = utc_iso(now - RECENT_WINDOW)
    result = PatternResult(created=0, refreshed=0, changes=[])

    def _record(alert_type: str, severity: str, resource_name: str, title: str, **fields: object) -> None:
        alert_id, created = upsert_smart_alert(
            conn,
            cluster_id=cluster_id,
            alert_type=alert_type,
            severity=severity,
            resource_type="pod",
            resource_name=resource_name,
            title=title,
            now=ts,
            **fields,  # pyright: ignore[reportArgumentType]
        )
        if not created:
            result["refreshed"] += 1
            return
        ALERTS_OPENED_TOTAL.labels(alert_type=alert_type, severity=severity).inc()
        logger.info("Opened smart alert %d: %s", alert_id, title)
        result["created"] += 1
        result["changes"].append(
            SmartAlertChange(
                alert_id=alert_id, alert_type=alert_type, severity=severity, title=title, resource_name=resource_name
            )
        )

    for pod in get_oom_killed_since(conn, cluster_id, since):
        _record(
            "oomkill",
            "critical",
            pod["pod_name"],
            f"Pod OOMKilled: {pod['pod_name']}",
            namespace=pod["namespace"],
            description=f'Container "{pod["container_name"]}" was killed due to out of memory.',
            suggestion=OOM_SUGGESTION,
            related_events={"pod_data": dict(pod)},
        )

    for pod in get_pods_with_restarts(conn, cluster_id, CRASH_LOOP_RESTARTS):
        _record(
            "crash_loop",
            "critical",
            pod["pod_name"],
            f"Crash Loop Detected: {pod['pod_name']}",
            namespace=pod["namespace"],
            description=(
                f"Pod has restarted {pod['restart_count']} times. "
                f"Exit code: {pod['exit_code']}, Reason: {pod['exit_reason']}"
            ),
            suggestion=CRASH_LOOP_SUGGESTION,
            related_events={"pod_data": dict(pod)},
        )

    for event in get_events_since(conn, cluster_id, since, reasons=PROBE_FAILURE_REASONS):
        _record(
            "liveness_failed",
            "warning",
            event["name"],
            f"Health Check Failed: {event['name']}",
            namespace=event["namespace"],
            description=event["message"],
            suggestion=PROBE_SUGGESTION,
            related_events={"event_data": dict(event)},
        )

    return result
