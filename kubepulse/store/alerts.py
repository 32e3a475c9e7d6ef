"""Threshold alerts and pattern (smart) alerts.

Both tables hold at most one unresolved row per dedup key; the partial unique
indexes in the schema reject a second one. State transitions are monotonic:
nothing here ever clears ``acknowledged`` or ``resolved``.
"""

import sqlite3

from kubepulse.store.db import dumps, loads, utc_iso
from kubepulse.store.models import AlertRecord, SmartAlertRecord

# ---------------------------------------------------------------------------
# Threshold alerts
# ---------------------------------------------------------------------------


def find_open_alert(
    conn: sqlite3.Connection,
    cluster_id: int,
    alert_type: str,
    node_name: str | None,
) -> AlertRecord | None:
    """Look up the unresolved alert for (cluster_id, alert_type, node_name), if any."""
    row = conn.execute(
        """SELECT * FROM monitoring_alerts
           WHERE cluster_id = ? AND alert_type = ? AND IFNULL(node_name, '') = ? AND resolved = 0""",
        (cluster_id, alert_type, node_name or ""),
    ).fetchone()
    return _row_to_alert(row) if row is not None else None


def create_alert(
    conn: sqlite3.Connection,
    *,
    cluster_id: int,
    alert_type: str,
    severity: str,
    threshold_value: float,
    current_value: float,
    message: str,
    node_name: str | None = None,
    resource_name: str | None = None,
    created_at: str | None = None,
) -> int:
    """Insert a new unresolved alert. Returns the new row ID.

    Raises:
        sqlite3.IntegrityError: If an unresolved alert already exists for the key.
    """
    now = created_at or utc_iso()
    cursor = conn.execute(
        """INSERT INTO monitoring_alerts
           (cluster_id, alert_type, severity, threshold_value, current_value,
            node_name, resource_name, message, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (cluster_id, alert_type, severity, threshold_value, current_value, node_name, resource_name, message, now, now),
    )
    conn.commit()
    return cursor.lastrowid or 0


def refresh_alert(
    conn: sqlite3.Connection,
    alert_id: int,
    *,
    severity: str,
    threshold_value: float,
    current_value: float,
    message: str,
    updated_at: str | None = None,
) -> None:
    """Overwrite the live values of an unresolved alert after a re-trigger."""
    conn.execute(
        """UPDATE monitoring_alerts
           SET severity = ?, threshold_value = ?, current_value = ?, message = ?, updated_at = ?
           WHERE id = ? AND resolved = 0""",
        (severity, threshold_value, current_value, message, updated_at or utc_iso(), alert_id),
    )
    conn.commit()


def acknowledge_alert(conn: sqlite3.Connection, alert_id: int, *, now: str | None = None) -> AlertRecord | None:
    """Mark an alert acknowledged. Returns the updated alert, or None if unknown."""
    conn.execute(
        "UPDATE monitoring_alerts SET acknowledged = 1, updated_at = ? WHERE id = ?",
        (now or utc_iso(), alert_id),
    )
    conn.commit()
    return get_alert(conn, alert_id)


def resolve_alert(conn: sqlite3.Connection, alert_id: int, *, now: str | None = None) -> AlertRecord | None:
    """Mark an alert resolved. Resolving twice keeps the first resolved_at."""
    ts = now or utc_iso()
    conn.execute(
        """UPDATE monitoring_alerts
           SET resolved = 1, resolved_at = COALESCE(resolved_at, ?), updated_at = ?
           WHERE id = ?""",
        (ts, ts, alert_id),
    )
    conn.commit()
    return get_alert(conn, alert_id)


def get_alert(conn: sqlite3.Connection, alert_id: int) -> AlertRecord | None:
    row = conn.execute("SELECT * FROM monitoring_alerts WHERE id = ?", (alert_id,)).fetchone()
    return _row_to_alert(row) if row is not None else None


def get_alerts(
    conn: sqlite3.Connection,
    cluster_id: int,
    *,
    include_resolved: bool = False,
    limit: int = 100,
) -> list[AlertRecord]:
    """Alerts for a cluster, most recently updated first."""
    where = "cluster_id = ?" if include_resolved else "cluster_id = ? AND resolved = 0"
    rows = conn.execute(
        f"SELECT * FROM monitoring_alerts WHERE {where} ORDER BY updated_at DESC, id DESC LIMIT ?",
        (cluster_id, limit),
    ).fetchall()
    return [_row_to_alert(r) for r in rows]


def _row_to_alert(row: sqlite3.Row) -> AlertRecord:
    return AlertRecord(
        id=row["id"],
        cluster_id=row["cluster_id"],
        alert_type=row["alert_type"],
        severity=row["severity"],
        threshold_value=row["threshold_value"],
        current_value=row["current_value"],
        node_name=row["node_name"],
        resource_name=row["resource_name"],
        message=row["message"],
        acknowledged=bool(row["acknowledged"]),
        resolved=bool(row["resolved"]),
        resolved_at=row["resolved_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------------
# Smart alerts
# ---------------------------------------------------------------------------


def find_open_smart_alert(
    conn: sqlite3.Connection,
    cluster_id: int,
    alert_type: str,
    resource_name: str,
) -> SmartAlertRecord | None:
    row = conn.execute(
        """SELECT * FROM smart_alerts
           WHERE cluster_id = ? AND alert_type = ? AND resource_name = ? AND is_resolved = 0""",
        (cluster_id, alert_type, resource_name),
    ).fetchone()
    return _row_to_smart_alert(row) if row is not None else None


def upsert_smart_alert(
    conn: sqlite3.Connection,
    *,
    cluster_id: int,
    alert_type: str,
    severity: str,
    resource_type: str,
    resource_name: str,
    title: str,
    description: str,
    namespace: str | None = None,
    suggestion: str | None = None,
    related_events: dict[str, object] | None = None,
    now: str | None = None,
) -> tuple[int, bool]:
    """Create a smart alert, or refresh the open one sharing its dedup key.

    Returns:
        (alert_id, created), where created is False when an open alert was refreshed.
    """
    ts = now or utc_iso()
    existing = find_open_smart_alert(conn, cluster_id, alert_type, resource_name)
    if existing is not None:
        conn.execute(
            "UPDATE smart_alerts SET description = ?, related_events = ?, updated_at = ? WHERE id = ?",
            (description, dumps(related_events or {}), ts, existing["id"]),
        )
        conn.commit()
        return existing["id"], False

    cursor = conn.execute(
        """INSERT INTO smart_alerts
           (cluster_id, alert_type, severity, resource_type, resource_name, namespace,
            title, description, suggestion, related_events, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            cluster_id,
            alert_type,
            severity,
            resource_type,
            resource_name,
            namespace,
            title,
            description,
            suggestion,
            dumps(related_events or {}),
            ts,
            ts,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0, True


def get_smart_alert(conn: sqlite3.Connection, alert_id: int) -> SmartAlertRecord | None:
    row = conn.execute("SELECT * FROM smart_alerts WHERE id = ?", (alert_id,)).fetchone()
    return _row_to_smart_alert(row) if row is not None else None


def get_open_smart_alerts(conn: sqlite3.Connection, cluster_id: int) -> list[SmartAlertRecord]:
    """Unresolved smart alerts for a cluster, newest first."""
    rows = conn.execute(
        "SELECT * FROM smart_alerts WHERE cluster_id = ? AND is_resolved = 0 ORDER BY created_at DESC, id DESC",
        (cluster_id,),
    ).fetchall()
    return [_row_to_smart_alert(r) for r in rows]


def resolve_smart_alert(conn: sqlite3.Connection, alert_id: int, *, now: str | None = None) -> SmartAlertRecord | None:
    ts = now or utc_iso()
    conn.execute(
        """UPDATE smart_alerts
           SET is_resolved = 1, resolved_at = COALESCE(resolved_at, ?), updated_at = ?
           WHERE id = ?""",
        (ts, ts, alert_id),
    )
    conn.commit()
    return get_smart_alert(conn, alert_id)


def _row_to_smart_alert(row: sqlite3.Row) -> SmartAlertRecord:
    related = loads(row["related_events"], {})
    return SmartAlertRecord(
        id=row["id"],
        cluster_id=row["cluster_id"],
        alert_type=row["alert_type"],
        severity=row["severity"],
        resource_type=row["resource_type"],
        resource_name=row["resource_name"],
        namespace=row["namespace"],
        title=row["title"],
        description=row["description"],
        suggestion=row["suggestion"],
        related_events=related if isinstance(related, dict) else {},
        is_resolved=bool(row["is_resolved"]),
        resolved_at=row["resolved_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
