"""PodHealthTracker and event ingestion: turn runtime status into stored state."""

import logging
import sqlite3
from datetime import datetime

from kubepulse.collector.kubernetes import PodStatus, RawEvent
from kubepulse.store.db import utc_iso
from kubepulse.store.models import ClusterEventRecord, PodHealthRecord
from kubepulse.store.pods import upsert_cluster_event, upsert_pod_health

logger = logging.getLogger(__name__)

OOM_REASON = "OOMKilled"


def to_pod_health(cluster_id: int, pod: PodStatus, observed_at: str) -> PodHealthRecord:
    return PodHealthRecord(
        cluster_id=cluster_id,
        pod_name=pod["pod_name"],
        namespace=pod["namespace"],
        container_name=pod["container_name"],
        restart_count=pod["restart_count"],
        last_restart_time=pod["last_finished_at"],
        exit_code=pod["exit_code"],
        exit_reason=pod["last_termination_reason"],
        oom_killed=pod["last_termination_reason"] == OOM_REASON,
        status=pod["phase"],
        updated_at=observed_at,
    )


def track_pod_health(
    conn: sqlite3.Connection,
    cluster_id: int,
    pods: list[PodStatus],
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Overwrite the snapshot of every reported container.

    Returns counts of containers written and history samples appended.
    """
    observed_at = utc_iso(now)
    sampled = 0
    for pod in pods:
        if upsert_pod_health(conn, to_pod_health(cluster_id, pod, observed_at)):
            sampled += 1
    logger.info("Tracked %d container(s) for cluster %d (%d changed)", len(pods), cluster_id, sampled)
    return {"containers": len(pods), "samples": sampled}


def ingest_events(
    conn: sqlite3.Connection,
    cluster_id: int,
    events: list[RawEvent],
    *,
    now: datetime | None = None,
) -> int:
    """Upsert raw events by uid. Returns the number processed."""
    created_at = utc_iso(now)
    for event in events:
        upsert_cluster_event(
            conn,
            ClusterEventRecord(
                id=0,
                cluster_id=cluster_id,
                event_uid=event["uid"],
                namespace=event["namespace"],
                name=event["name"],
                kind=event["kind"],
                reason=event["reason"],
                message=event["message"],
                type=event["type"],
                source_component=event["source_component"],
                source_host=event["source_host"],
                first_timestamp=event["first_timestamp"],
                last_timestamp=event["last_timestamp"],
                count=event["count"],
                created_at=created_at,
            ),
        )
    return len(events)
