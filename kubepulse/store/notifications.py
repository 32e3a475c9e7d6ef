"""Outbound notification channels and incident timelines."""

import sqlite3

from kubepulse.store.db import dumps, loads, utc_iso
from kubepulse.store.models import ChannelRecord, IncidentRecord

# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


def save_channel(
    conn: sqlite3.Connection,
    *,
    owner: str,
    kind: str,
    name: str,
    target: str,
    cluster_id: int | None = None,
    severity_threshold: str | None = None,
    enabled: bool = True,
) -> int:
    """Register an outbound channel. Returns the new row ID."""
    cursor = conn.execute(
        """INSERT INTO notification_channels (owner, cluster_id, kind, name, target, severity_threshold, enabled)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (owner, cluster_id, kind, name, target, severity_threshold, int(enabled)),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_enabled_channels(conn: sqlite3.Connection, owner: str, cluster_id: int | None = None) -> list[ChannelRecord]:
    """Enabled channels of an owner that apply to ``cluster_id``.

    Channels with no cluster apply to every cluster of the owner.
    """
    sql = "SELECT * FROM notification_channels WHERE owner = ? AND enabled = 1"
    params: list[object] = [owner]
    if cluster_id is not None:
        sql += " AND (cluster_id IS NULL OR cluster_id = ?)"
        params.append(cluster_id)
    rows = conn.execute(sql + " ORDER BY id", params).fetchall()
    return [
        ChannelRecord(
            id=r["id"],
            owner=r["owner"],
            cluster_id=r["cluster_id"],
            kind=r["kind"],
            name=r["name"],
            target=r["target"],
            severity_threshold=r["severity_threshold"],
            enabled=bool(r["enabled"]),
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------


def save_incident(
    conn: sqlite3.Connection,
    *,
    owner: str,
    cluster_id: int,
    title: str,
    severity: str,
    description: str = "",
) -> int:
    """Open a new incident. Returns the new row ID."""
    now = utc_iso()
    opened = {"timestamp": now, "action": "opened", "details": title}
    cursor = conn.execute(
        """INSERT INTO incidents
           (owner, cluster_id, title, description, severity, status, timeline_events, started_at, updated_at)
           VALUES (?, ?, ?, ?, ?, 'open', ?, ?, ?)""",
        (owner, cluster_id, title, description, severity, dumps([opened]), now, now),
    )
    conn.commit()
    return cursor.lastrowid or 0


def update_incident(
    conn: sqlite3.Connection,
    incident_id: int,
    *,
    status: str | None = None,
    severity: str | None = None,
    description: str | None = None,
) -> None:
    """Update fields on an existing incident. Moving to resolved/closed stamps resolved_at once."""
    updates: list[str] = []
    params: list[object] = []
    now = utc_iso()
    if status is not None:
        updates.append("status = ?")
        params.append(status)
        if status in ("resolved", "closed"):
            updates.append("resolved_at = COALESCE(resolved_at, ?)")
            params.append(now)
    if severity is not None:
        updates.append("severity = ?")
        params.append(severity)
    if description is not None:
        updates.append("description = ?")
        params.append(description)
    if not updates:
        return
    updates.append("updated_at = ?")
    params.append(now)
    params.append(incident_id)
    conn.execute(f"UPDATE incidents SET {', '.join(updates)} WHERE id = ?", params)
    conn.commit()


def append_timeline_event(conn: sqlite3.Connection, incident_id: int, event: dict[str, object]) -> None:
    """Append one entry to an incident's timeline."""
    incident = get_incident(conn, incident_id)
    if incident is None:
        return
    timeline = [*incident["timeline_events"], event]
    conn.execute(
        "UPDATE incidents SET timeline_events = ?, updated_at = ? WHERE id = ?",
        (dumps(timeline), utc_iso(), incident_id),
    )
    conn.commit()


def get_incident(conn: sqlite3.Connection, incident_id: int) -> IncidentRecord | None:
    row = conn.execute("SELECT * FROM incidents WHERE id = ?", (incident_id,)).fetchone()
    return _row_to_incident(row) if row is not None else None


def get_open_incidents(conn: sqlite3.Connection, cluster_id: int | None = None) -> list[IncidentRecord]:
    """Incidents not yet resolved or closed, most recent first."""
    sql = "SELECT * FROM incidents WHERE status IN ('open', 'investigating')"
    params: list[object] = []
    if cluster_id is not None:
        sql += " AND cluster_id = ?"
        params.append(cluster_id)
    rows = conn.execute(sql + " ORDER BY started_at DESC", params).fetchall()
    return [_row_to_incident(r) for r in rows]


def _row_to_incident(row: sqlite3.Row) -> IncidentRecord:
    timeline = loads(row["timeline_events"], [])
    return IncidentRecord(
        id=row["id"],
        owner=row["owner"],
        cluster_id=row["cluster_id"],
        title=row["title"],
        description=row["description"],
        severity=row["severity"],
        status=row["status"],
        timeline_events=timeline if isinstance(timeline, list) else [],
        started_at=row["started_at"],
        resolved_at=row["resolved_at"],
        updated_at=row["updated_at"],
    )
