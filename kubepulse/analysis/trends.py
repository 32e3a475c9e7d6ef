"""TrendAnalyzer: restart history per pod over the last day, judged by the oracle."""

import logging
import sqlite3
from datetime import UTC, datetime, timedelta

from kubepulse.analysis.oracle import ZERO_TREND, Oracle, consult
from kubepulse.config import get_settings
from kubepulse.store.analysis import upsert_restart_trend
from kubepulse.store.db import parse_ts, utc_iso
from kubepulse.store.models import PodHealthSampleRecord, PodRestartTrendRecord
from kubepulse.store.pods import get_pod_samples_since

logger = logging.getLogger(__name__)

TREND_WINDOW = timedelta(hours=24)
SIGNIFICANCE_CUTOFF = 0.5


def hour_bucket(now: datetime) -> str:
    """Start of the UTC hour containing ``now``."""
    return utc_iso(now.astimezone(UTC).replace(minute=0, second=0, microsecond=0))


def average_interval(samples: list[PodHealthSampleRecord]) -> float:
    """Mean gap in seconds between successive samples (0.0 with fewer than two)."""
    times = [parse_ts(s["observed_at"]) for s in samples]
    deltas = [(b - a).total_seconds() for a, b in zip(times, times[1:], strict=False)]
    return sum(deltas) / len(deltas) if deltas else 0.0


def group_by_pod(samples: list[PodHealthSampleRecord]) -> dict[tuple[str, str], list[PodHealthSampleRecord]]:
    groups: dict[tuple[str, str], list[PodHealthSampleRecord]] = {}
    for sample in samples:
        groups.setdefault((sample["pod_name"], sample["namespace"]), []).append(sample)
    return groups


async def analyze_restart_trends(
    conn: sqlite3.Connection,
    cluster_id: int,
    oracle: Oracle,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
) -> int:
    """Store a trend row for every pod whose history the oracle finds significant.

    Returns the number of trend rows written.
    """
    now = now or datetime.now(UTC)
    if timeout is None:
        timeout = get_settings().oracle_timeout_seconds

    samples = get_pod_samples_since(conn, cluster_id, utc_iso(now - TREND_WINDOW))
    window = hour_bucket(now)
    written = 0
    for (pod_name, namespace), history in group_by_pod(samples).items():
        if len(history) < 2:
            continue
        verdict = await consult("trend", oracle.score_trend(history), ZERO_TREND, timeout)
        if verdict.significance <= SIGNIFICANCE_CUTOFF:
            continue

        upsert_restart_trend(
            conn,
            PodRestartTrendRecord(
                cluster_id=cluster_id,
                pod_name=pod_name,
                namespace=namespace,
                time_window=window,
                restart_count=history[-1]["restart_count"],
                avg_restart_interval=average_interval(history),
                trend_direction=verdict.direction,
                trend_score=verdict.score,
            ),
        )
        written += 1
        logger.info("Restart trend for %s/%s: %s (%.2f)", namespace, pod_name, verdict.direction, verdict.score)
    return written
