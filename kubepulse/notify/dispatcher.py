"""NotificationDispatcher: severity-filtered fan-out to outbound channels.

Every surviving channel is delivered to independently, each under its own
timeout; one channel failing never blocks or fails another.  Delivery is
at-most-once: nothing is retried.
"""

import asyncio
import logging
import sqlite3
from typing import TypedDict

import httpx

from kubepulse.config import get_settings
from kubepulse.notify.email import format_email, send_email
from kubepulse.notify.slack import build_slack_payload, post_slack_webhook
from kubepulse.observability.metrics import NOTIFICATIONS_TOTAL
from kubepulse.store.db import utc_iso
from kubepulse.store.models import ChannelRecord
from kubepulse.store.notifications import append_timeline_event, get_enabled_channels

logger = logging.getLogger(__name__)

SEVERITY_SCALE = ("low", "medium", "high", "critical")

# Alert severities expressed on the channel scale
ALERT_SEVERITY_MAP = {"info": "low", "warning": "medium", "critical": "critical"}


class NotificationEvent(TypedDict):
    owner: str
    cluster_id: int
    cluster_name: str
    message: str
    severity: str  # low | medium | high | critical
    action: str  # create | update | resolve
    resource_name: str | None
    incident_id: int | None


class DispatchResult(TypedDict):
    sent: int
    failed: int


def to_channel_severity(alert_severity: str) -> str:
    return ALERT_SEVERITY_MAP.get(alert_severity, alert_severity)


def severity_allows(event_severity: str, threshold: str | None) -> bool:
    """True when a channel with ``threshold`` should receive an event of ``event_severity``.

    Channels without a threshold (or with one outside the scale) receive everything.
    """
    if threshold is None or threshold not in SEVERITY_SCALE:
        return True
    if event_severity not in SEVERITY_SCALE:
        return False
    return SEVERITY_SCALE.index(event_severity) >= SEVERITY_SCALE.index(threshold)


async def _deliver(client: httpx.AsyncClient, channel: ChannelRecord, event: NotificationEvent) -> bool:
    if channel["kind"] == "slack":
        payload = build_slack_payload(event, get_settings().dashboard_url)
        return await post_slack_webhook(client, channel["target"], payload)
    if channel["kind"] == "email":
        subject, body = format_email(event)
        return await asyncio.to_thread(send_email, channel["target"], subject, body)
    msg = f"Unknown channel kind: {channel['kind']}"
    raise ValueError(msg)


async def dispatch(
    conn: sqlite3.Connection,
    event: NotificationEvent,
    *,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> DispatchResult:
    """Send ``event`` to every enabled channel of its owner that accepts its severity."""
    if client is None:
        async with httpx.AsyncClient() as owned:
            return await dispatch(conn, event, timeout=timeout, client=owned)

    if timeout is None:
        timeout = get_settings().notification_timeout_seconds

    channels = [
        c
        for c in get_enabled_channels(conn, event["owner"], event["cluster_id"])
        if severity_allows(event["severity"], c["severity_threshold"])
    ]

    results = await asyncio.gather(
        *[asyncio.wait_for(_deliver(client, c, event), timeout) for c in channels],
        return_exceptions=True,
    )

    sent = 0
    failed = 0
    for channel, result in zip(channels, results, strict=True):
        if result is True:
            sent += 1
            NOTIFICATIONS_TOTAL.labels(channel_kind=channel["kind"], status="success").inc()
            continue
        failed += 1
        NOTIFICATIONS_TOTAL.labels(channel_kind=channel["kind"], status="error").inc()
        if isinstance(result, BaseException):
            logger.warning("Notification to channel %s (%s) failed: %r", channel["name"], channel["kind"], result)
        else:
            logger.warning("Notification to channel %s (%s) was not delivered", channel["name"], channel["kind"])

    if channels:
        logger.info("Notifications sent: %d successful, %d failed", sent, failed)

    if event["incident_id"] is not None:
        append_timeline_event(
            conn,
            event["incident_id"],
            {
                "timestamp": utc_iso(),
                "action": "notification",
                "details": f"Notification sent to {sent} channel(s)",
            },
        )

    return DispatchResult(sent=sent, failed=failed)
