"""SuggestionEngine: ranked remediation steps for open smart alerts.

Suggestions are generated once per alert.  An alert that already has any
suggestion is skipped without consulting the oracle.
"""

import logging
import sqlite3
from datetime import UTC, datetime

from kubepulse.analysis.oracle import Oracle, SuggestionDraft, consult
from kubepulse.config import get_settings
from kubepulse.store.alerts import get_open_smart_alerts
from kubepulse.store.analysis import count_suggestions, save_suggestions
from kubepulse.store.db import utc_iso
from kubepulse.store.models import ClusterRecord, SuggestionRecord

logger = logging.getLogger(__name__)


def to_records(alert_id: int, drafts: list[SuggestionDraft], created_at: str) -> list[SuggestionRecord]:
    return [
        SuggestionRecord(
            id=0,
            alert_id=alert_id,
            suggestion_type=d.type,
            priority=d.priority,
            title=d.title,
            description=d.description,
            action_steps=d.action_steps,
            estimated_impact=d.estimated_impact,
            implementation_difficulty=d.difficulty,
            ai_confidence=d.confidence,
            created_at=created_at,
        )
        for d in drafts
    ]


async def generate_suggestions(
    conn: sqlite3.Connection,
    cluster: ClusterRecord,
    oracle: Oracle,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
) -> int:
    """Fill in suggestions for every open smart alert that has none. Returns rows stored."""
    now = now or datetime.now(UTC)
    if timeout is None:
        timeout = get_settings().oracle_timeout_seconds

    stored = 0
    for alert in get_open_smart_alerts(conn, cluster["id"]):
        if count_suggestions(conn, alert["id"]) > 0:
            continue
        empty: list[SuggestionDraft] = []
        drafts = await consult("suggestions", oracle.generate_suggestions(alert, cluster), empty, timeout)
        if not drafts:
            continue
        ranked = sorted(drafts, key=lambda d: d.priority)
        stored += save_suggestions(conn, to_records(alert["id"], ranked, utc_iso(now)))
        logger.info("Stored %d suggestion(s) for smart alert %d", len(ranked), alert["id"])
    return stored
