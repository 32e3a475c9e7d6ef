"""ThresholdMonitor: static warning/critical thresholds over fresh metric samples.

At most one unresolved alert exists per (cluster, alert_type, node).  A
re-triggered key either leaves the open alert alone or, with refresh enabled,
overwrites its live values from the newest violating sample of the pass.
"""

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import TypedDict

from kubepulse.config import get_settings
from kubepulse.observability.metrics import ALERTS_OPENED_TOTAL
from kubepulse.store.alerts import create_alert, find_open_alert, refresh_alert
from kubepulse.store.db import utc_iso
from kubepulse.store.metrics import get_metrics_since

logger = logging.getLogger(__name__)

CHECK_WINDOW = timedelta(minutes=2)

# metric_type -> {severity: threshold}; critical is checked first
THRESHOLDS: dict[str, dict[str, float]] = {
    "cpu": {"critical": 90.0, "warning": 80.0},
    "memory": {"critical": 95.0, "warning": 85.0},
    "disk": {"critical": 95.0, "warning": 90.0},
}


class AlertChange(TypedDict):
    alert_id: int
    action: str  # create | update
    alert_type: str
    severity: str
    message: str
    node_name: str | None


class ThresholdResult(TypedDict):
    created: int
    refreshed: int
    changes: list[AlertChange]


def classify(metric_type: str, value: float) -> tuple[str, float] | None:
    """Highest severity whose threshold ``value`` meets, with that threshold."""
    table = THRESHOLDS.get(metric_type)
    if table is None:
        return None
    if value >= table["critical"]:
        return "critical", table["critical"]
    if value >= table["warning"]:
        return "warning", table["warning"]
    return None


def format_message(metric_type: str, value: float, severity: str, threshold: float, node_name: str | None) -> str:
    return (
        f"{metric_type.upper()} usage {value:.1f}% exceeds {severity} threshold "
        f"of {threshold:g}% on {node_name or 'cluster'}"
    )


def check_thresholds(
    conn: sqlite3.Connection,
    cluster_id: int,
    *,
    now: datetime | None = None,
    refresh_on_duplicate: bool | None = None,
) -> ThresholdResult:
    """Evaluate samples from the last two minutes and open or refresh alerts.

    Raises:
        sqlite3.IntegrityError: If an open alert appears for a key between the
            lookup and the insert (storage conflict).
    """
    if refresh_on_duplicate is None:
        refresh_on_duplicate = get_settings().threshold_refresh_on_duplicate
    now = now or datetime.now(UTC)
    ts = utc_iso(now)

    # Newest first, so the first violating sample seen per key is the newest
    samples = get_metrics_since(conn, cluster_id, utc_iso(now - CHECK_WINDOW))

    handled: set[tuple[str, str]] = set()
    result = ThresholdResult(created=0, refreshed=0, changes=[])
    for sample in samples:
        # Thresholds only apply to percentage series
        if sample["unit"] != "percentage":
            continue
        verdict = classify(sample["metric_type"], sample["value"])
        if verdict is None:
            continue
        severity, threshold = verdict
        alert_type = f"{sample['metric_type']}_pressure"
        key = (alert_type, sample["node_name"] or "")
        if key in handled:
            continue
        handled.add(key)

        message = format_message(sample["metric_type"], sample["value"], severity, threshold, sample["node_name"])
        existing = find_open_alert(conn, cluster_id, alert_type, sample["node_name"])

        if existing is None:
            alert_id = create_alert(
                conn,
                cluster_id=cluster_id,
                alert_type=alert_type,
                severity=severity,
                threshold_value=threshold,
                current_value=sample["value"],
                message=message,
                node_name=sample["node_name"],
                resource_name=sample["resource_name"],
                created_at=ts,
            )
            ALERTS_OPENED_TOTAL.labels(alert_type=alert_type, severity=severity).inc()
            logger.info("Opened %s alert %d: %s", severity, alert_id, message)
            result["created"] += 1
            result["changes"].append(
                AlertChange(
                    alert_id=alert_id,
                    action="create",
                    alert_type=alert_type,
                    severity=severity,
                    message=message,
                    node_name=sample["node_name"],
                )
            )
            continue

        if not refresh_on_duplicate:
            continue

        refresh_alert(
            conn,
            existing["id"],
            severity=severity,
            threshold_value=threshold,
            current_value=sample["value"],
            message=message,
            updated_at=ts,
        )
        result["refreshed"] += 1
        if existing["severity"] != severity:
            logger.info("Alert %d severity %s -> %s", existing["id"], existing["severity"], severity)
            result["changes"].append(
                AlertChange(
                    alert_id=existing["id"],
                    action="update",
                    alert_type=alert_type,
                    severity=severity,
                    message=message,
                    node_name=sample["node_name"],
                )
            )

    return result
