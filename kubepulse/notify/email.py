"""Email channel delivery.

Uses stdlib smtplib with STARTTLS.  Sending never raises: it returns a
success boolean and logs the error, and callers count a False as a failure.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from kubepulse.config import get_settings

if TYPE_CHECKING:
    from kubepulse.notify.dispatcher import NotificationEvent

logger = logging.getLogger(__name__)


def is_email_configured() -> bool:
    """Check whether the SMTP settings needed to send are present."""
    settings = get_settings()
    return bool(settings.smtp_host and (settings.smtp_sender or settings.smtp_username))


def format_email(event: "NotificationEvent") -> tuple[str, str]:
    """Build (subject, body) for a notification."""
    action = {"resolve": "Resolved", "update": "Updated"}.get(event["action"], "Alert")
    subject = f"[{event['severity'].upper()}] {action}: {event['cluster_name']}"
    lines = [
        f"Severity: {event['severity'].upper()}",
        f"Cluster: {event['cluster_name']}",
    ]
    if event["resource_name"]:
        lines.append(f"Resource: {event['resource_name']}")
    lines += ["", event["message"]]
    dashboard_url = get_settings().dashboard_url
    if dashboard_url and event["action"] != "resolve":
        lines += ["", f"Dashboard: {dashboard_url}"]
    return subject, "\n".join(lines)


def send_email(recipient: str, subject: str, body: str) -> bool:
    """Send a plain-text email via SMTP with STARTTLS.

    Returns:
        True if the email was sent successfully, False otherwise.
    """
    settings = get_settings()

    if not is_email_configured():
        logger.warning("Email not configured, skipping send to %s", recipient)
        return False

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_sender or settings.smtp_username
    msg["To"] = recipient

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            _ = server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
        logger.info("Notification email sent to %s", recipient)
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send notification email to %s", recipient)
        return False
