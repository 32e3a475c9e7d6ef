"""Slack incoming-webhook payloads (Block Kit) and delivery."""

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from kubepulse.notify.dispatcher import NotificationEvent

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    "low": "🟢",
    "medium": "🟡",
    "high": "🟠",
    "critical": "🔴",
}

_ACTION_TEXT = {"create": "ALERT", "update": "UPDATED", "resolve": "RESOLVED"}


def build_slack_payload(event: "NotificationEvent", dashboard_url: str = "") -> dict[str, object]:
    """Format a notification as a Slack message.

    The dashboard button is left out for resolutions and when no URL is configured.
    """
    emoji = SEVERITY_EMOJI.get(event["severity"], "⚪")
    action = _ACTION_TEXT.get(event["action"], "ALERT")

    fields: list[dict[str, str]] = [
        {"type": "mrkdwn", "text": f"*Severity:* {event['severity'].upper()}"},
        {"type": "mrkdwn", "text": f"*Cluster:* {event['cluster_name']}"},
    ]
    if event["resource_name"]:
        fields.append({"type": "mrkdwn", "text": f"*Resource:* {event['resource_name']}"})

    blocks: list[dict[str, object]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"{emoji} Kubernetes {action}"}},
        {"type": "section", "fields": fields},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Message:* {event['message']}"}},
    ]
    if event["action"] != "resolve" and dashboard_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View in Dashboard"},
                        "url": dashboard_url,
                        "style": "primary",
                    }
                ],
            }
        )

    return {"text": f"{emoji} {action}: {event['message']}", "blocks": blocks}


async def post_slack_webhook(client: httpx.AsyncClient, webhook_url: str, payload: dict[str, object]) -> bool:
    """POST a payload to an incoming webhook.

    Raises:
        httpx.HTTPStatusError: If Slack answers with a non-2xx status.
    """
    response = await client.post(webhook_url, json=payload)
    _ = response.raise_for_status()
    return True
