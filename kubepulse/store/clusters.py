"""Cluster registry and metric-source (Prometheus target) records."""

import sqlite3

from kubepulse.store.db import utc_iso
from kubepulse.store.models import ClusterRecord, PrometheusTargetRecord


def save_cluster(
    conn: sqlite3.Connection,
    *,
    name: str,
    owner: str,
    endpoint: str,
    token: str,
    ca_data: str | None = None,
    namespace: str = "default",
    is_active: bool = True,
) -> int:
    """Register a cluster. Returns the new row ID."""
    cursor = conn.execute(
        """INSERT INTO clusters (name, owner, endpoint, token, ca_data, namespace, is_active, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (name, owner, endpoint, token, ca_data, namespace, int(is_active), utc_iso()),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_cluster(conn: sqlite3.Connection, cluster_id: int) -> ClusterRecord | None:
    row = conn.execute("SELECT * FROM clusters WHERE id = ?", (cluster_id,)).fetchone()
    return _row_to_cluster(row) if row is not None else None


def get_active_clusters(conn: sqlite3.Connection) -> list[ClusterRecord]:
    """All clusters flagged active, oldest first."""
    rows = conn.execute("SELECT * FROM clusters WHERE is_active = 1 ORDER BY id").fetchall()
    return [_row_to_cluster(r) for r in rows]


def _row_to_cluster(row: sqlite3.Row) -> ClusterRecord:
    return ClusterRecord(
        id=row["id"],
        name=row["name"],
        owner=row["owner"],
        endpoint=row["endpoint"],
        token=row["token"],
        ca_data=row["ca_data"],
        namespace=row["namespace"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Prometheus targets
# ---------------------------------------------------------------------------


def save_prometheus_target(
    conn: sqlite3.Connection,
    *,
    cluster_id: int,
    name: str,
    endpoint: str,
    auth_token: str | None = None,
    enabled: bool = True,
) -> int:
    """Attach a Prometheus-compatible query endpoint to a cluster. Returns the new row ID."""
    cursor = conn.execute(
        "INSERT INTO prometheus_targets (cluster_id, name, endpoint, auth_token, enabled) VALUES (?, ?, ?, ?, ?)",
        (cluster_id, name, endpoint.rstrip("/"), auth_token, int(enabled)),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_enabled_targets(conn: sqlite3.Connection, cluster_id: int) -> list[PrometheusTargetRecord]:
    rows = conn.execute(
        "SELECT * FROM prometheus_targets WHERE cluster_id = ? AND enabled = 1 ORDER BY id",
        (cluster_id,),
    ).fetchall()
    return [_row_to_target(r) for r in rows]


def get_target(conn: sqlite3.Connection, target_id: int) -> PrometheusTargetRecord | None:
    row = conn.execute("SELECT * FROM prometheus_targets WHERE id = ?", (target_id,)).fetchone()
    return _row_to_target(row) if row is not None else None


def mark_target_scraped(conn: sqlite3.Connection, target_id: int, scraped_at: str) -> None:
    conn.execute("UPDATE prometheus_targets SET last_scrape_at = ? WHERE id = ?", (scraped_at, target_id))
    conn.commit()


def _row_to_target(row: sqlite3.Row) -> PrometheusTargetRecord:
    return PrometheusTargetRecord(
        id=row["id"],
        cluster_id=row["cluster_id"],
        name=row["name"],
        endpoint=row["endpoint"],
        auth_token=row["auth_token"],
        enabled=bool(row["enabled"]),
        last_scrape_at=row["last_scrape_at"],
    )
