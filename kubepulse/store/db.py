"""SQLite-backed store: connection management, schema init and keyed upserts.

All database operations use parameterized queries. Connections are created
per-pass with check_same_thread=False for async compatibility. The schema is
auto-created via CREATE TABLE IF NOT EXISTS (idempotent).

Natural uniqueness keys are enforced by the schema itself: plain UNIQUE
constraints for keyed-upsert tables and partial unique indexes for the
"at most one unresolved alert per key" invariants.
"""

import json
import logging
import sqlite3
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from kubepulse.config import get_settings

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS clusters (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    owner       TEXT NOT NULL,
    endpoint    TEXT NOT NULL,
    token       TEXT NOT NULL,
    ca_data     TEXT,
    namespace   TEXT NOT NULL DEFAULT 'default',
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS prometheus_targets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id      INTEGER NOT NULL REFERENCES clusters(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    endpoint        TEXT NOT NULL,
    auth_token      TEXT,
    enabled         INTEGER NOT NULL DEFAULT 1,
    last_scrape_at  TEXT
);

CREATE TABLE IF NOT EXISTS cluster_metrics (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id     INTEGER NOT NULL,
    metric_type    TEXT NOT NULL,
    metric_name    TEXT NOT NULL,
    value          REAL NOT NULL,
    unit           TEXT NOT NULL,
    node_name      TEXT,
    namespace      TEXT,
    resource_name  TEXT,
    labels         TEXT NOT NULL DEFAULT '{}',
    timestamp      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_metrics_cluster_time ON cluster_metrics(cluster_id, timestamp);

CREATE TABLE IF NOT EXISTS cluster_health_scores (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id        INTEGER NOT NULL,
    overall_score     REAL NOT NULL,
    cpu_score         REAL NOT NULL,
    memory_score      REAL NOT NULL,
    disk_score        REAL NOT NULL,
    network_score     REAL NOT NULL,
    pod_health_score  REAL NOT NULL,
    node_count        INTEGER NOT NULL,
    healthy_nodes     INTEGER NOT NULL,
    total_pods        INTEGER NOT NULL,
    healthy_pods      INTEGER NOT NULL,
    calculated_at     TEXT NOT NULL,
    UNIQUE(cluster_id, calculated_at)
);

CREATE TABLE IF NOT EXISTS monitoring_alerts (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id       INTEGER NOT NULL,
    alert_type       TEXT NOT NULL,
    severity         TEXT NOT NULL,
    threshold_value  REAL NOT NULL,
    current_value    REAL NOT NULL,
    node_name        TEXT,
    resource_name    TEXT,
    message          TEXT NOT NULL,
    acknowledged     INTEGER NOT NULL DEFAULT 0,
    resolved         INTEGER NOT NULL DEFAULT 0,
    resolved_at      TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open_key
    ON monitoring_alerts(cluster_id, alert_type, IFNULL(node_name, '')) WHERE resolved = 0;

CREATE TABLE IF NOT EXISTS smart_alerts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id      INTEGER NOT NULL,
    alert_type      TEXT NOT NULL,
    severity        TEXT NOT NULL,
    resource_type   TEXT NOT NULL,
    resource_name   TEXT NOT NULL,
    namespace       TEXT,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL,
    suggestion      TEXT,
    related_events  TEXT NOT NULL DEFAULT '{}',
    is_resolved     INTEGER NOT NULL DEFAULT 0,
    resolved_at     TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_smart_alerts_open_key
    ON smart_alerts(cluster_id, alert_type, resource_name) WHERE is_resolved = 0;

CREATE TABLE IF NOT EXISTS pod_health (
    cluster_id         INTEGER NOT NULL,
    pod_name           TEXT NOT NULL,
    namespace          TEXT NOT NULL,
    container_name     TEXT NOT NULL,
    restart_count      INTEGER NOT NULL DEFAULT 0,
    last_restart_time  TEXT,
    exit_code          INTEGER,
    exit_reason        TEXT,
    oom_killed         INTEGER NOT NULL DEFAULT 0,
    status             TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    UNIQUE(cluster_id, pod_name, namespace, container_name)
);

CREATE TABLE IF NOT EXISTS pod_health_samples (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id      INTEGER NOT NULL,
    pod_name        TEXT NOT NULL,
    namespace       TEXT NOT NULL,
    container_name  TEXT NOT NULL,
    restart_count   INTEGER NOT NULL,
    exit_code       INTEGER,
    exit_reason     TEXT,
    status          TEXT NOT NULL,
    observed_at     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pod_samples_lookup ON pod_health_samples(cluster_id, observed_at);

CREATE TABLE IF NOT EXISTS cluster_events (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id        INTEGER NOT NULL,
    event_uid         TEXT NOT NULL,
    namespace         TEXT NOT NULL,
    name              TEXT NOT NULL,
    kind              TEXT NOT NULL,
    reason            TEXT NOT NULL,
    message           TEXT NOT NULL,
    type              TEXT NOT NULL,
    source_component  TEXT,
    source_host       TEXT,
    first_timestamp   TEXT,
    last_timestamp    TEXT,
    count             INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL,
    UNIQUE(cluster_id, event_uid)
);
CREATE INDEX IF NOT EXISTS idx_events_reason ON cluster_events(cluster_id, reason);

CREATE TABLE IF NOT EXISTS event_correlations (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id           INTEGER NOT NULL,
    correlation_id       TEXT NOT NULL,
    primary_event_id     INTEGER NOT NULL,
    related_event_ids    TEXT NOT NULL,
    root_cause_analysis  TEXT NOT NULL,
    confidence_score     REAL NOT NULL,
    correlation_type     TEXT NOT NULL,
    affected_resources   TEXT NOT NULL,
    created_at           TEXT NOT NULL,
    UNIQUE(cluster_id, correlation_id)
);

CREATE TABLE IF NOT EXISTS pod_restart_trends (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_id            INTEGER NOT NULL,
    pod_name              TEXT NOT NULL,
    namespace             TEXT NOT NULL,
    time_window           TEXT NOT NULL,
    restart_count         INTEGER NOT NULL,
    avg_restart_interval  REAL NOT NULL,
    trend_direction       TEXT NOT NULL,
    trend_score           REAL NOT NULL,
    UNIQUE(cluster_id, pod_name, namespace, time_window)
);

CREATE TABLE IF NOT EXISTS intelligent_suggestions (
    id                         INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_id                   INTEGER NOT NULL REFERENCES smart_alerts(id) ON DELETE CASCADE,
    suggestion_type            TEXT NOT NULL,
    priority                   INTEGER NOT NULL,
    title                      TEXT NOT NULL,
    description                TEXT NOT NULL,
    action_steps               TEXT NOT NULL,
    estimated_impact           TEXT NOT NULL,
    implementation_difficulty  TEXT NOT NULL,
    ai_confidence              REAL NOT NULL,
    created_at                 TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_suggestions_alert ON intelligent_suggestions(alert_id, priority);

CREATE TABLE IF NOT EXISTS notification_channels (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    owner               TEXT NOT NULL,
    cluster_id          INTEGER,
    kind                TEXT NOT NULL,
    name                TEXT NOT NULL,
    target              TEXT NOT NULL,
    severity_threshold  TEXT,
    enabled             INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS incidents (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    owner            TEXT NOT NULL,
    cluster_id       INTEGER NOT NULL,
    title            TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    severity         TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'open',
    timeline_events  TEXT NOT NULL DEFAULT '[]',
    started_at       TEXT NOT NULL,
    resolved_at      TEXT,
    updated_at       TEXT NOT NULL
);
"""


def utc_iso(dt: datetime | None = None) -> str:
    """Format a timestamp as a fixed-width UTC ISO 8601 string.

    Fixed microsecond precision keeps lexicographic order equal to time order,
    which the window queries rely on. Naive datetimes are taken as UTC.
    """
    if dt is None:
        dt = datetime.now(UTC)
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_ts(ts: str) -> datetime:
    """Parse an ISO 8601 / RFC3339 timestamp into an aware UTC datetime."""
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.

    Raises:
        ValueError: If the database path is empty.
    """
    if db_path is None:
        db_path = get_settings().database_path
    if not db_path:
        msg = "Store not configured (DATABASE_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a connection and make sure the schema exists."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


def upsert(
    conn: sqlite3.Connection,
    table: str,
    row: Mapping[str, object],
    key: Sequence[str],
    *,
    update: Mapping[str, str] | None = None,
) -> None:
    """Insert ``row`` or replace the non-key columns of the row sharing ``key``.

    ``key`` must match a UNIQUE constraint of ``table``. ``update`` maps column
    names to SQL expressions for the conflict branch; by default every non-key
    column takes the incoming value (``excluded.<col>``).
    """
    columns = list(row)
    if update is None:
        update = {c: f"excluded.{c}" for c in columns if c not in key}
    assignments = ", ".join(f"{col} = {expr}" for col, expr in update.items())
    sql = (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)}) "
        f"ON CONFLICT({', '.join(key)}) DO UPDATE SET {assignments}"
    )
    conn.execute(sql, [row[c] for c in columns])


def dumps(value: object) -> str:
    """Serialize a JSON column value."""
    return json.dumps(value, default=str)


def loads(raw: str | None, default: object) -> object:
    """Deserialize a JSON column, falling back to ``default`` on empty/corrupt data."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON column value: %.80s", raw)
        return default
