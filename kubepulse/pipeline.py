"""Monitoring and analysis passes over every active cluster.

Clusters are processed one after another and independently: any failure
inside one cluster's unit of work is logged, recorded in that cluster's
outcome and counted, and the pass moves on to the next cluster.  Within a
cluster the stages run in a fixed order, ingestion first.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypedDict

from kubepulse.analysis.correlation import correlate_events
from kubepulse.analysis.oracle import Oracle, build_oracle
from kubepulse.analysis.suggestions import generate_suggestions
from kubepulse.analysis.trends import analyze_restart_trends
from kubepulse.collector.kubernetes import ClusterRuntime, KubernetesRuntime
from kubepulse.collector.prometheus import collect_cluster_metrics
from kubepulse.config import get_settings
from kubepulse.monitoring.health import calculate_health_score
from kubepulse.monitoring.patterns import SmartAlertChange, detect_pod_patterns
from kubepulse.monitoring.pods import ingest_events, track_pod_health
from kubepulse.monitoring.thresholds import AlertChange, check_thresholds
from kubepulse.notify.dispatcher import NotificationEvent, dispatch, to_channel_severity
from kubepulse.observability.metrics import CLUSTER_ERRORS_TOTAL, PASS_DURATION, PASSES_TOTAL
from kubepulse.store.clusters import get_active_clusters, get_enabled_targets
from kubepulse.store.models import ClusterRecord

logger = logging.getLogger(__name__)


class PassResult(TypedDict):
    pass_type: str
    started_at: str
    duration_seconds: float
    clusters: list[dict[str, object]]
    failed_clusters: int


def _stage_error(outcome: dict[str, object], stage: str, exc: BaseException, cluster: ClusterRecord) -> None:
    CLUSTER_ERRORS_TOTAL.labels(stage=stage).inc()
    logger.warning("Stage %s failed for cluster %s: %s", stage, cluster["name"], exc)
    errors = outcome.setdefault("stage_errors", {})
    if isinstance(errors, dict):
        errors[stage] = str(exc)


async def _notify_changes(
    conn: sqlite3.Connection,
    cluster: ClusterRecord,
    alert_changes: list[AlertChange],
    smart_changes: list[SmartAlertChange],
) -> dict[str, int]:
    events = [
        NotificationEvent(
            owner=cluster["owner"],
            cluster_id=cluster["id"],
            cluster_name=cluster["name"],
            message=c["message"],
            severity=to_channel_severity(c["severity"]),
            action=c["action"],
            resource_name=c["node_name"],
            incident_id=None,
        )
        for c in alert_changes
    ] + [
        NotificationEvent(
            owner=cluster["owner"],
            cluster_id=cluster["id"],
            cluster_name=cluster["name"],
            message=c["title"],
            severity=to_channel_severity(c["severity"]),
            action="create",
            resource_name=c["resource_name"],
            incident_id=None,
        )
        for c in smart_changes
    ]
    totals = {"sent": 0, "failed": 0}
    for event in events:
        result = await dispatch(conn, event)
        totals["sent"] += result["sent"]
        totals["failed"] += result["failed"]
    return totals


async def monitor_cluster(
    conn: sqlite3.Connection,
    cluster: ClusterRecord,
    runtime: ClusterRuntime,
    *,
    now: datetime | None = None,
) -> dict[str, object]:
    """Ingest, score and alert for one cluster."""
    settings = get_settings()
    now = now or datetime.now(UTC)
    outcome: dict[str, object] = {"cluster_id": cluster["id"], "cluster_name": cluster["name"]}

    collections = await collect_cluster_metrics(
        conn,
        cluster["id"],
        get_enabled_targets(conn, cluster["id"]),
        timeout=settings.prometheus_timeout_seconds,
        now=now,
    )
    outcome["metrics"] = {
        "targets": len(collections),
        "collected": sum(c["collected"] for c in collections),
        "failed_queries": sum(len(c["failed_queries"]) for c in collections),
    }

    pods, events = await asyncio.gather(runtime.list_pods(cluster), runtime.list_events(cluster), return_exceptions=True)
    if isinstance(pods, BaseException):
        _stage_error(outcome, "pods", pods, cluster)
    else:
        outcome["pods"] = track_pod_health(conn, cluster["id"], pods, now=now)
    if isinstance(events, BaseException):
        _stage_error(outcome, "events", events, cluster)
    else:
        outcome["events"] = ingest_events(conn, cluster["id"], events, now=now)

    patterns = detect_pod_patterns(conn, cluster["id"], now=now)
    outcome["smart_alerts"] = {"created": patterns["created"], "refreshed": patterns["refreshed"]}

    outcome["health"] = calculate_health_score(conn, cluster["id"], now=now, cluster_name=cluster["name"])

    thresholds = check_thresholds(conn, cluster["id"], now=now)
    outcome["alerts"] = {"created": thresholds["created"], "refreshed": thresholds["refreshed"]}

    outcome["notifications"] = await _notify_changes(conn, cluster, thresholds["changes"], patterns["changes"])
    return outcome


async def analyze_cluster(
    conn: sqlite3.Connection,
    cluster: ClusterRecord,
    oracle: Oracle,
    *,
    now: datetime | None = None,
) -> dict[str, object]:
    """Correlate events, analyze restart trends and generate suggestions for one cluster."""
    timeout = get_settings().oracle_timeout_seconds
    return {
        "cluster_id": cluster["id"],
        "cluster_name": cluster["name"],
        "correlations": await correlate_events(conn, cluster["id"], oracle, now=now, timeout=timeout),
        "trends": await analyze_restart_trends(conn, cluster["id"], oracle, now=now, timeout=timeout),
        "suggestions": await generate_suggestions(conn, cluster, oracle, now=now, timeout=timeout),
    }


async def _run_pass(
    pass_type: str,
    conn: sqlite3.Connection,
    work: Callable[[ClusterRecord], Awaitable[dict[str, object]]],
    trigger: str,
) -> PassResult:
    start = time.monotonic()
    started_at = datetime.now(UTC).isoformat()
    outcomes: list[dict[str, object]] = []
    failed = 0

    for cluster in get_active_clusters(conn):
        try:
            outcomes.append(await work(cluster))
        except Exception as exc:
            failed += 1
            CLUSTER_ERRORS_TOTAL.labels(stage=pass_type).inc()
            logger.exception("%s pass failed for cluster %s", pass_type.capitalize(), cluster["name"])
            outcomes.append({"cluster_id": cluster["id"], "cluster_name": cluster["name"], "error": str(exc)})

    duration = time.monotonic() - start
    PASSES_TOTAL.labels(pass_type=pass_type, trigger=trigger, status="partial" if failed else "success").inc()
    PASS_DURATION.labels(pass_type=pass_type).observe(duration)
    logger.info(
        "%s pass finished: %d cluster(s), %d failed, %.1fs",
        pass_type.capitalize(),
        len(outcomes),
        failed,
        duration,
    )
    return PassResult(
        pass_type=pass_type,
        started_at=started_at,
        duration_seconds=round(duration, 3),
        clusters=outcomes,
        failed_clusters=failed,
    )


async def run_monitoring_pass(
    conn: sqlite3.Connection,
    *,
    runtime: ClusterRuntime | None = None,
    now: datetime | None = None,
    trigger: str = "manual",
) -> PassResult:
    """Collect, track, score and alert for every active cluster."""
    if runtime is None:
        runtime = KubernetesRuntime(timeout=get_settings().kubernetes_timeout_seconds)
    resolved_runtime = runtime

    async def _work(cluster: ClusterRecord) -> dict[str, object]:
        return await monitor_cluster(conn, cluster, resolved_runtime, now=now)

    return await _run_pass("monitor", conn, _work, trigger)


async def run_analysis_pass(
    conn: sqlite3.Connection,
    *,
    oracle: Oracle | None = None,
    now: datetime | None = None,
    trigger: str = "manual",
) -> PassResult:
    """Run the second-stage analyzers for every active cluster."""
    resolved_oracle = oracle if oracle is not None else build_oracle(get_settings())

    async def _work(cluster: ClusterRecord) -> dict[str, object]:
        return await analyze_cluster(conn, cluster, resolved_oracle, now=now)

    return await _run_pass("analysis", conn, _work, trigger)
