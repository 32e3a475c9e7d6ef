"""MetricStore: append-only metric samples and per-calculation health scores."""

import sqlite3

from kubepulse.store.db import dumps, loads, upsert
from kubepulse.store.models import HealthScoreRecord, MetricSampleRecord


def save_metric_samples(conn: sqlite3.Connection, samples: list[MetricSampleRecord]) -> int:
    """Bulk-append metric samples. The ``id`` field of each sample is ignored."""
    conn.executemany(
        """INSERT INTO cluster_metrics
           (cluster_id, metric_type, metric_name, value, unit, node_name,
            namespace, resource_name, labels, timestamp)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                s["cluster_id"],
                s["metric_type"],
                s["metric_name"],
                s["value"],
                s["unit"],
                s["node_name"],
                s["namespace"],
                s["resource_name"],
                dumps(s["labels"]),
                s["timestamp"],
            )
            for s in samples
        ],
    )
    conn.commit()
    return len(samples)


def get_metrics_since(
    conn: sqlite3.Connection,
    cluster_id: int,
    since: str,
    *,
    metric_type: str | None = None,
) -> list[MetricSampleRecord]:
    """Samples for a cluster with timestamp >= ``since``, newest first."""
    sql = "SELECT * FROM cluster_metrics WHERE cluster_id = ? AND timestamp >= ?"
    params: list[object] = [cluster_id, since]
    if metric_type is not None:
        sql += " AND metric_type = ?"
        params.append(metric_type)
    rows = conn.execute(sql + " ORDER BY timestamp DESC, id DESC", params).fetchall()
    return [_row_to_sample(r) for r in rows]


def _row_to_sample(row: sqlite3.Row) -> MetricSampleRecord:
    labels = loads(row["labels"], {})
    return MetricSampleRecord(
        id=row["id"],
        cluster_id=row["cluster_id"],
        metric_type=row["metric_type"],
        metric_name=row["metric_name"],
        value=row["value"],
        unit=row["unit"],
        node_name=row["node_name"],
        namespace=row["namespace"],
        resource_name=row["resource_name"],
        labels=labels if isinstance(labels, dict) else {},
        timestamp=row["timestamp"],
    )


# ---------------------------------------------------------------------------
# Health scores
# ---------------------------------------------------------------------------


def save_health_score(conn: sqlite3.Connection, score: HealthScoreRecord) -> None:
    """Store a health score, keyed by (cluster_id, calculated_at)."""
    upsert(conn, "cluster_health_scores", dict(score), ("cluster_id", "calculated_at"))
    conn.commit()


def get_latest_health_score(conn: sqlite3.Connection, cluster_id: int) -> HealthScoreRecord | None:
    """The current score is the most recently calculated one."""
    row = conn.execute(
        "SELECT * FROM cluster_health_scores WHERE cluster_id = ? ORDER BY calculated_at DESC LIMIT 1",
        (cluster_id,),
    ).fetchone()
    if row is None:
        return None
    return HealthScoreRecord(
        cluster_id=row["cluster_id"],
        overall_score=row["overall_score"],
        cpu_score=row["cpu_score"],
        memory_score=row["memory_score"],
        disk_score=row["disk_score"],
        network_score=row["network_score"],
        pod_health_score=row["pod_health_score"],
        node_count=row["node_count"],
        healthy_nodes=row["healthy_nodes"],
        total_pods=row["total_pods"],
        healthy_pods=row["healthy_pods"],
        calculated_at=row["calculated_at"],
    )


def count_health_scores(conn: sqlite3.Connection, cluster_id: int) -> int:
    row = conn.execute("SELECT COUNT(*) FROM cluster_health_scores WHERE cluster_id = ?", (cluster_id,)).fetchone()
    return int(row[0])
