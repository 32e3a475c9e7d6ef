"""EventCorrelator: groups recent events into 5-minute buckets and asks the oracle.

Buckets are fixed and non-overlapping (``floor(event_time / 300s)``).  Only
buckets holding two or more events are scored, and only verdicts strictly
above the confidence cutoff are stored.  Re-running over the same window
stores the same correlation again under a new id.
"""

import logging
import secrets
import sqlite3
import string
from datetime import UTC, datetime, timedelta

from kubepulse.analysis.oracle import ZERO_CORRELATION, Oracle, consult
from kubepulse.config import get_settings
from kubepulse.store.analysis import save_correlation
from kubepulse.store.db import parse_ts, utc_iso
from kubepulse.store.models import ClusterEventRecord, EventCorrelationRecord
from kubepulse.store.pods import event_time, get_events_since

logger = logging.getLogger(__name__)

CORRELATION_WINDOW = timedelta(hours=2)
BUCKET_SECONDS = 300
MAX_EVENTS = 100
CONFIDENCE_CUTOFF = 0.7

_ID_ALPHABET = string.ascii_lowercase + string.digits


def bucket_events(events: list[ClusterEventRecord]) -> list[list[ClusterEventRecord]]:
    """Split events into time buckets, preserving order within each, earliest bucket first."""
    buckets: dict[int, list[ClusterEventRecord]] = {}
    for event in events:
        key = int(parse_ts(event_time(event)).timestamp() // BUCKET_SECONDS)
        buckets.setdefault(key, []).append(event)
    return [buckets[k] for k in sorted(buckets)]


def new_correlation_id(cluster_id: int, now: datetime) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"corr_{cluster_id}_{int(now.timestamp() * 1000)}_{suffix}"


async def correlate_events(
    conn: sqlite3.Connection,
    cluster_id: int,
    oracle: Oracle,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
) -> int:
    """Score every multi-event bucket of the last two hours. Returns correlations stored."""
    now = now or datetime.now(UTC)
    if timeout is None:
        timeout = get_settings().oracle_timeout_seconds

    events = get_events_since(conn, cluster_id, utc_iso(now - CORRELATION_WINDOW), limit=MAX_EVENTS)
    stored = 0
    for bucket in bucket_events(events):
        if len(bucket) < 2:
            continue
        verdict = await consult("correlation", oracle.score_correlation(bucket), ZERO_CORRELATION, timeout)
        if verdict.confidence <= CONFIDENCE_CUTOFF:
            continue

        primary, *related = bucket
        save_correlation(
            conn,
            EventCorrelationRecord(
                id=0,
                cluster_id=cluster_id,
                correlation_id=new_correlation_id(cluster_id, now),
                primary_event_id=primary["id"],
                related_event_ids=[e["id"] for e in related],
                root_cause_analysis=verdict.root_cause,
                confidence_score=verdict.confidence,
                correlation_type=verdict.correlation_type,
                affected_resources=[{"name": e["name"], "kind": e["kind"], "namespace": e["namespace"]} for e in bucket],
                created_at=utc_iso(now),
            ),
        )
        stored += 1
        logger.info(
            "Correlated %d events on cluster %d (%s, confidence %.2f)",
            len(bucket),
            cluster_id,
            verdict.correlation_type,
            verdict.confidence,
        )
    return stored
