"""Pod health snapshots, the append-only pod health sample log, and cluster events."""

import sqlite3

from kubepulse.store.db import upsert
from kubepulse.store.models import ClusterEventRecord, PodHealthRecord, PodHealthSampleRecord

_POD_KEY = ("cluster_id", "pod_name", "namespace", "container_name")

# Columns whose change is worth a row in the sample log
_SAMPLED_FIELDS = ("restart_count", "status", "exit_reason")


def upsert_pod_health(conn: sqlite3.Connection, record: PodHealthRecord) -> bool:
    """Overwrite the snapshot for one container and log it if its state changed.

    Returns True when a row was appended to ``pod_health_samples`` (new
    container, or restart_count/status/exit_reason differ from the stored row).
    """
    previous = conn.execute(
        f"SELECT {', '.join(_SAMPLED_FIELDS)} FROM pod_health "
        "WHERE cluster_id = ? AND pod_name = ? AND namespace = ? AND container_name = ?",
        tuple(record[k] for k in _POD_KEY),
    ).fetchone()

    row = dict(record)
    row["oom_killed"] = int(record["oom_killed"])
    upsert(conn, "pod_health", row, _POD_KEY)

    changed = previous is None or any(previous[f] != record[f] for f in _SAMPLED_FIELDS)
    if changed:
        conn.execute(
            """INSERT INTO pod_health_samples
               (cluster_id, pod_name, namespace, container_name, restart_count,
                exit_code, exit_reason, status, observed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record["cluster_id"],
                record["pod_name"],
                record["namespace"],
                record["container_name"],
                record["restart_count"],
                record["exit_code"],
                record["exit_reason"],
                record["status"],
                record["updated_at"],
            ),
        )
    conn.commit()
    return changed


def get_pod_health(conn: sqlite3.Connection, cluster_id: int) -> list[PodHealthRecord]:
    """Latest snapshot of every tracked container in a cluster."""
    rows = conn.execute(
        "SELECT * FROM pod_health WHERE cluster_id = ? ORDER BY namespace, pod_name, container_name",
        (cluster_id,),
    ).fetchall()
    return [_row_to_pod_health(r) for r in rows]


def get_oom_killed_since(conn: sqlite3.Connection, cluster_id: int, since: str) -> list[PodHealthRecord]:
    rows = conn.execute(
        "SELECT * FROM pod_health WHERE cluster_id = ? AND oom_killed = 1 AND updated_at >= ?",
        (cluster_id, since),
    ).fetchall()
    return [_row_to_pod_health(r) for r in rows]


def get_pods_with_restarts(conn: sqlite3.Connection, cluster_id: int, min_restarts: int) -> list[PodHealthRecord]:
    rows = conn.execute(
        "SELECT * FROM pod_health WHERE cluster_id = ? AND restart_count >= ? ORDER BY restart_count DESC",
        (cluster_id, min_restarts),
    ).fetchall()
    return [_row_to_pod_health(r) for r in rows]


def _row_to_pod_health(row: sqlite3.Row) -> PodHealthRecord:
    return PodHealthRecord(
        cluster_id=row["cluster_id"],
        pod_name=row["pod_name"],
        namespace=row["namespace"],
        container_name=row["container_name"],
        restart_count=row["restart_count"],
        last_restart_time=row["last_restart_time"],
        exit_code=row["exit_code"],
        exit_reason=row["exit_reason"],
        oom_killed=bool(row["oom_killed"]),
        status=row["status"],
        updated_at=row["updated_at"],
    )


def get_pod_samples_since(conn: sqlite3.Connection, cluster_id: int, since: str) -> list[PodHealthSampleRecord]:
    """Pod health samples observed at or after ``since``, oldest first."""
    rows = conn.execute(
        "SELECT * FROM pod_health_samples WHERE cluster_id = ? AND observed_at >= ? ORDER BY observed_at, id",
        (cluster_id, since),
    ).fetchall()
    return [
        PodHealthSampleRecord(
            id=r["id"],
            cluster_id=r["cluster_id"],
            pod_name=r["pod_name"],
            namespace=r["namespace"],
            container_name=r["container_name"],
            restart_count=r["restart_count"],
            exit_code=r["exit_code"],
            exit_reason=r["exit_reason"],
            status=r["status"],
            observed_at=r["observed_at"],
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Cluster events
# ---------------------------------------------------------------------------

# Event time used for windowing: the latest observation the API reported.
_EVENT_TIME = "COALESCE(last_timestamp, first_timestamp, created_at)"


def upsert_cluster_event(conn: sqlite3.Connection, event: ClusterEventRecord) -> None:
    """Insert an event or merge a repeat observation of the same uid.

    count and last_timestamp only ever grow; created_at keeps the first sighting.
    """
    row = {k: v for k, v in event.items() if k != "id"}
    update = {c: f"excluded.{c}" for c in row if c not in ("cluster_id", "event_uid", "created_at")}
    update["count"] = "MAX(count, excluded.count)"
    update["last_timestamp"] = (
        "CASE WHEN last_timestamp IS NULL THEN excluded.last_timestamp"
        " WHEN excluded.last_timestamp IS NULL THEN last_timestamp"
        " ELSE MAX(last_timestamp, excluded.last_timestamp) END"
    )
    update["first_timestamp"] = "COALESCE(first_timestamp, excluded.first_timestamp)"
    upsert(conn, "cluster_events", row, ("cluster_id", "event_uid"), update=update)
    conn.commit()


def get_events_since(
    conn: sqlite3.Connection,
    cluster_id: int,
    since: str,
    *,
    reasons: tuple[str, ...] | None = None,
    limit: int = 100,
) -> list[ClusterEventRecord]:
    """The newest ``limit`` events with event time at or after ``since``, returned oldest first."""
    sql = f"SELECT *, {_EVENT_TIME} AS event_time FROM cluster_events WHERE cluster_id = ? AND {_EVENT_TIME} >= ?"
    params: list[object] = [cluster_id, since]
    if reasons:
        sql += f" AND reason IN ({', '.join('?' for _ in reasons)})"
        params.extend(reasons)
    sql = f"SELECT * FROM ({sql} ORDER BY event_time DESC, id DESC LIMIT ?) ORDER BY event_time, id"
    params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    return [_row_to_event(r) for r in rows]


def get_event(conn: sqlite3.Connection, cluster_id: int, event_uid: str) -> ClusterEventRecord | None:
    row = conn.execute(
        "SELECT * FROM cluster_events WHERE cluster_id = ? AND event_uid = ?", (cluster_id, event_uid)
    ).fetchone()
    return _row_to_event(row) if row is not None else None


def event_time(event: ClusterEventRecord) -> str:
    """Python-side twin of the SQL event-time expression."""
    return event["last_timestamp"] or event["first_timestamp"] or event["created_at"]


def _row_to_event(row: sqlite3.Row) -> ClusterEventRecord:
    return ClusterEventRecord(
        id=row["id"],
        cluster_id=row["cluster_id"],
        event_uid=row["event_uid"],
        namespace=row["namespace"],
        name=row["name"],
        kind=row["kind"],
        reason=row["reason"],
        message=row["message"],
        type=row["type"],
        source_component=row["source_component"],
        source_host=row["source_host"],
        first_timestamp=row["first_timestamp"],
        last_timestamp=row["last_timestamp"],
        count=row["count"],
        created_at=row["created_at"],
    )
