"""HealthScorer: rolls recent metrics and pod state up into 0-100 scores.

Component formula, per metric type with alert threshold ``t`` and recent
average ``avg``::

    avg >= t  ->  max(0, 100 - (avg - t) * 10)
    avg <  t  ->  max(0, 100 - avg / t * 50)

The network component has no real computation yet and is a fixed 95.
Node counts are approximated from the node names seen in metrics; every
reporting node counts as healthy.  Only percentage series are scored, so pod
byte counts, CPU cores and load averages never reach the formula.
"""

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import TypedDict

from kubepulse.observability.metrics import HEALTH_SCORE
from kubepulse.store.db import utc_iso
from kubepulse.store.metrics import get_metrics_since, save_health_score
from kubepulse.store.models import HealthScoreRecord, MetricSampleRecord
from kubepulse.store.pods import get_pod_health

logger = logging.getLogger(__name__)

SCORE_WINDOW = timedelta(minutes=5)

# Alert threshold per scored metric type
COMPONENT_THRESHOLDS: dict[str, float] = {"cpu": 80.0, "memory": 85.0, "disk": 90.0}
NETWORK_SCORE = 95.0

WEIGHTS: dict[str, float] = {
    "cpu": 0.25,
    "memory": 0.25,
    "disk": 0.20,
    "network": 0.10,
    "pod_health": 0.20,
}


class HealthScoreError(TypedDict):
    error: str


def component_score(avg: float, threshold: float) -> float:
    if avg >= threshold:
        return max(0.0, 100 - (avg - threshold) * 10)
    return max(0.0, 100 - avg / threshold * 50)


def _type_score(samples: list[MetricSampleRecord], metric_type: str) -> float:
    values = [s["value"] for s in samples if s["metric_type"] == metric_type and s["unit"] == "percentage"]
    if not values:
        return 100.0
    return component_score(sum(values) / len(values), COMPONENT_THRESHOLDS[metric_type])


def calculate_health_score(
    conn: sqlite3.Connection,
    cluster_id: int,
    *,
    now: datetime | None = None,
    cluster_name: str | None = None,
) -> HealthScoreRecord | HealthScoreError:
    """Score a cluster from the last five minutes of metrics and store the result.

    Returns the stored record, or ``{"error": ...}`` when no recent metrics exist.
    """
    now = now or datetime.now(UTC)
    calculated_at = utc_iso(now)
    since = utc_iso(now - SCORE_WINDOW)
    samples = get_metrics_since(conn, cluster_id, since)
    if not samples:
        logger.info("No recent metrics for cluster %d, skipping health score", cluster_id)
        return HealthScoreError(error="No recent metrics available")

    cpu = _type_score(samples, "cpu")
    memory = _type_score(samples, "memory")
    disk = _type_score(samples, "disk")

    pods = get_pod_health(conn, cluster_id)
    total_pods = len(pods)
    healthy_pods = sum(1 for p in pods if p["status"] == "Running")
    pod_health = healthy_pods / total_pods * 100 if total_pods > 0 else 100.0

    node_count = len({s["node_name"] for s in samples if s["node_name"]}) or 1

    overall = (
        cpu * WEIGHTS["cpu"]
        + memory * WEIGHTS["memory"]
        + disk * WEIGHTS["disk"]
        + NETWORK_SCORE * WEIGHTS["network"]
        + pod_health * WEIGHTS["pod_health"]
    )

    record = HealthScoreRecord(
        cluster_id=cluster_id,
        overall_score=round(overall, 2),
        cpu_score=round(cpu, 2),
        memory_score=round(memory, 2),
        disk_score=round(disk, 2),
        network_score=round(NETWORK_SCORE, 2),
        pod_health_score=round(pod_health, 2),
        node_count=node_count,
        healthy_nodes=node_count,
        total_pods=total_pods,
        healthy_pods=healthy_pods,
        calculated_at=calculated_at,
    )
    save_health_score(conn, record)
    HEALTH_SCORE.labels(cluster=cluster_name or str(cluster_id)).set(record["overall_score"])
    logger.info("Cluster %d health score: %.2f", cluster_id, record["overall_score"])
    return record
