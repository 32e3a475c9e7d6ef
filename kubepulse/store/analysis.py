"""Second-stage analysis records: event correlations, restart trends, suggestions."""

import sqlite3

from kubepulse.store.db import dumps, loads, upsert
from kubepulse.store.models import EventCorrelationRecord, PodRestartTrendRecord, SuggestionRecord

# ---------------------------------------------------------------------------
# Event correlations
# ---------------------------------------------------------------------------


def save_correlation(conn: sqlite3.Connection, correlation: EventCorrelationRecord) -> int:
    """Insert a correlation record. Returns the new row ID.

    Raises:
        sqlite3.IntegrityError: If the correlation_id is already used in the cluster.
    """
    cursor = conn.execute(
        """INSERT INTO event_correlations
           (cluster_id, correlation_id, primary_event_id, related_event_ids, root_cause_analysis,
            confidence_score, correlation_type, affected_resources, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            correlation["cluster_id"],
            correlation["correlation_id"],
            correlation["primary_event_id"],
            dumps(correlation["related_event_ids"]),
            correlation["root_cause_analysis"],
            correlation["confidence_score"],
            correlation["correlation_type"],
            dumps(correlation["affected_resources"]),
            correlation["created_at"],
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_correlations(conn: sqlite3.Connection, cluster_id: int, limit: int = 50) -> list[EventCorrelationRecord]:
    rows = conn.execute(
        "SELECT * FROM event_correlations WHERE cluster_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
        (cluster_id, limit),
    ).fetchall()
    results: list[EventCorrelationRecord] = []
    for r in rows:
        related = loads(r["related_event_ids"], [])
        affected = loads(r["affected_resources"], [])
        results.append(
            EventCorrelationRecord(
                id=r["id"],
                cluster_id=r["cluster_id"],
                correlation_id=r["correlation_id"],
                primary_event_id=r["primary_event_id"],
                related_event_ids=related if isinstance(related, list) else [],
                root_cause_analysis=r["root_cause_analysis"],
                confidence_score=r["confidence_score"],
                correlation_type=r["correlation_type"],
                affected_resources=affected if isinstance(affected, list) else [],
                created_at=r["created_at"],
            )
        )
    return results


# ---------------------------------------------------------------------------
# Pod restart trends
# ---------------------------------------------------------------------------


def upsert_restart_trend(conn: sqlite3.Connection, trend: PodRestartTrendRecord) -> None:
    """One row per (cluster, pod, namespace, hour bucket); later passes overwrite."""
    upsert(conn, "pod_restart_trends", dict(trend), ("cluster_id", "pod_name", "namespace", "time_window"))
    conn.commit()


def get_restart_trends(conn: sqlite3.Connection, cluster_id: int, since: str | None = None) -> list[PodRestartTrendRecord]:
    sql = "SELECT * FROM pod_restart_trends WHERE cluster_id = ?"
    params: list[object] = [cluster_id]
    if since is not None:
        sql += " AND time_window >= ?"
        params.append(since)
    rows = conn.execute(sql + " ORDER BY time_window DESC, trend_score DESC", params).fetchall()
    return [
        PodRestartTrendRecord(
            cluster_id=r["cluster_id"],
            pod_name=r["pod_name"],
            namespace=r["namespace"],
            time_window=r["time_window"],
            restart_count=r["restart_count"],
            avg_restart_interval=r["avg_restart_interval"],
            trend_direction=r["trend_direction"],
            trend_score=r["trend_score"],
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def count_suggestions(conn: sqlite3.Connection, alert_id: int) -> int:
    row = conn.execute("SELECT COUNT(*) FROM intelligent_suggestions WHERE alert_id = ?", (alert_id,)).fetchone()
    return int(row[0])


def save_suggestions(conn: sqlite3.Connection, suggestions: list[SuggestionRecord]) -> int:
    """Bulk-insert suggestions for an alert in one transaction. ``id`` is ignored."""
    conn.executemany(
        """INSERT INTO intelligent_suggestions
           (alert_id, suggestion_type, priority, title, description, action_steps,
            estimated_impact, implementation_difficulty, ai_confidence, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                s["alert_id"],
                s["suggestion_type"],
                s["priority"],
                s["title"],
                s["description"],
                dumps(s["action_steps"]),
                s["estimated_impact"],
                s["implementation_difficulty"],
                s["ai_confidence"],
                s["created_at"],
            )
            for s in suggestions
        ],
    )
    conn.commit()
    return len(suggestions)


def get_suggestions(conn: sqlite3.Connection, alert_id: int) -> list[SuggestionRecord]:
    """Suggestions for an alert, highest priority (lowest number) first."""
    rows = conn.execute(
        "SELECT * FROM intelligent_suggestions WHERE alert_id = ? ORDER BY priority, id",
        (alert_id,),
    ).fetchall()
    results: list[SuggestionRecord] = []
    for r in rows:
        steps = loads(r["action_steps"], [])
        results.append(
            SuggestionRecord(
                id=r["id"],
                alert_id=r["alert_id"],
                suggestion_type=r["suggestion_type"],
                priority=r["priority"],
                title=r["title"],
                description=r["description"],
                action_steps=[str(s) for s in steps] if isinstance(steps, list) else [],
                estimated_impact=r["estimated_impact"],
                implementation_difficulty=r["implementation_difficulty"],
                ai_confidence=r["ai_confidence"],
                created_at=r["created_at"],
            )
        )
    return results
