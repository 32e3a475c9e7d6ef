"""Tests for notification formatting, severity filtering and channel fan-out."""

import sqlite3
import time
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from kubepulse.notify.dispatcher import NotificationEvent, dispatch, severity_allows, to_channel_severity
from kubepulse.notify.email import format_email, is_email_configured, send_email
from kubepulse.notify.slack import build_slack_payload
from kubepulse.store.notifications import save_channel

HOOK_HIGH = "https://hooks.slack.test/services/high"
HOOK_ALL = "https://hooks.slack.test/services/all"


def _event(severity: str = "medium", action: str = "create", resource: str | None = "node-1") -> NotificationEvent:
    return NotificationEvent(
        owner="ops",
        cluster_id=1,
        cluster_name="prod",
        message="CPU usage 85.0% exceeds warning threshold of 80% on node-1",
        severity=severity,
        action=action,
        resource_name=resource,
        incident_id=None,
    )


class TestSeverityAllows:
    @pytest.mark.parametrize(
        ("severity", "expected"),
        [("low", False), ("medium", False), ("high", True), ("critical", True)],
    )
    def test_high_threshold(self, severity: str, expected: bool) -> None:
        assert severity_allows(severity, "high") is expected

    @pytest.mark.parametrize("severity", ["low", "medium", "high", "critical"])
    def test_no_threshold_receives_everything(self, severity: str) -> None:
        assert severity_allows(severity, None) is True

    def test_alert_severity_mapping(self) -> None:
        assert to_channel_severity("warning") == "medium"
        assert to_channel_severity("critical") == "critical"
        assert to_channel_severity("info") == "low"
        assert to_channel_severity("high") == "high"


class TestSlackPayload:
    def test_alert_with_dashboard(self) -> None:
        payload = build_slack_payload(_event(severity="critical"), "https://dashboard.test")
        blocks = payload["blocks"]
        assert isinstance(blocks, list)
        assert blocks[0]["text"]["text"] == "🔴 Kubernetes ALERT"
        fields = [f["text"] for f in blocks[1]["fields"]]
        assert "*Resource:* node-1" in fields
        assert blocks[-1]["type"] == "actions"
        assert blocks[-1]["elements"][0]["url"] == "https://dashboard.test"
        assert "CPU usage" in str(payload["text"])

    def test_resolve_has_no_button(self) -> None:
        payload = build_slack_payload(_event(action="resolve"), "https://dashboard.test")
        blocks = payload["blocks"]
        assert isinstance(blocks, list)
        assert "RESOLVED" in blocks[0]["text"]["text"]
        assert all(b["type"] != "actions" for b in blocks)

    def test_no_dashboard_no_button(self) -> None:
        blocks = build_slack_payload(_event(resource=None), "")["blocks"]
        assert isinstance(blocks, list)
        assert all(b["type"] != "actions" for b in blocks)
        assert len(blocks[1]["fields"]) == 2


class TestEmail:
    def test_format(self, mock_settings: Any) -> None:
        subject, body = format_email(_event(severity="high", action="update"))
        assert subject == "[HIGH] Updated: prod"
        assert "Resource: node-1" in body
        assert "Dashboard: https://dashboard.test" in body

    def test_send_success(self, mock_settings: Any) -> None:
        with patch("kubepulse.notify.email.smtplib.SMTP") as mock_smtp_cls:
            mock_server = MagicMock()
            mock_smtp_cls.return_value.__enter__ = MagicMock(return_value=mock_server)
            mock_smtp_cls.return_value.__exit__ = MagicMock(return_value=False)

            result = send_email("oncall@test.com", "subject", "body")

        assert result is True
        mock_server.starttls.assert_called_once()
        mock_server.login.assert_called_once_with("test@test.com", "test-password")
        sent = mock_server.send_message.call_args.args[0]
        assert sent["To"] == "oncall@test.com"
        assert sent["From"] == "kubepulse@test.com"

    def test_send_failure(self, mock_settings: Any) -> None:
        with patch("kubepulse.notify.email.smtplib.SMTP") as mock_smtp_cls:
            mock_smtp_cls.return_value.__enter__ = MagicMock(side_effect=ConnectionError("SMTP down"))

            result = send_email("oncall@test.com", "subject", "body")

        assert result is False

    def test_not_configured(self, mock_settings: Any) -> None:
        mock_settings.smtp_host = ""
        assert is_email_configured() is False
        assert send_email("oncall@test.com", "subject", "body") is False


@pytest.mark.integration
class TestDispatch:
    @pytest.fixture(autouse=True)
    def _channels(self, db: sqlite3.Connection, mock_settings: Any) -> None:
        save_channel(db, owner="ops", kind="slack", name="pager", target=HOOK_HIGH, severity_threshold="high")
        save_channel(db, owner="ops", kind="slack", name="firehose", target=HOOK_ALL)
        save_channel(db, owner="ops", kind="email", name="mail", target="oncall@test.com", severity_threshold="medium")
        save_channel(db, owner="someone-else", kind="slack", name="other", target=HOOK_ALL)

    async def test_medium_event_skips_high_channel(self, db: sqlite3.Connection) -> None:
        with respx.mock(assert_all_called=False) as router:
            high = router.post(HOOK_HIGH).mock(return_value=httpx.Response(200, text="ok"))
            all_route = router.post(HOOK_ALL).mock(return_value=httpx.Response(200, text="ok"))
            with patch("kubepulse.notify.dispatcher.send_email", return_value=True) as mock_send:
                result = await dispatch(db, _event(severity="medium"))

            assert not high.called
            assert all_route.call_count == 1
        assert result == {"sent": 2, "failed": 0}
        mock_send.assert_called_once()
        assert mock_send.call_args.args[0] == "oncall@test.com"

    @respx.mock
    async def test_critical_event_reaches_everyone(self, db: sqlite3.Connection) -> None:
        respx.post(HOOK_HIGH).mock(return_value=httpx.Response(200, text="ok"))
        respx.post(HOOK_ALL).mock(return_value=httpx.Response(200, text="ok"))
        with patch("kubepulse.notify.dispatcher.send_email", return_value=True):
            result = await dispatch(db, _event(severity="critical"))
        assert result == {"sent": 3, "failed": 0}

    @respx.mock
    async def test_one_failing_channel_does_not_block_others(self, db: sqlite3.Connection) -> None:
        respx.post(HOOK_HIGH).mock(return_value=httpx.Response(500, text="no"))
        respx.post(HOOK_ALL).mock(return_value=httpx.Response(200, text="ok"))
        with patch("kubepulse.notify.dispatcher.send_email", return_value=False):
            result = await dispatch(db, _event(severity="critical"))
        assert result == {"sent": 1, "failed": 2}

    @respx.mock
    async def test_slow_channel_times_out(self, db: sqlite3.Connection) -> None:
        respx.post(HOOK_ALL).mock(return_value=httpx.Response(200, text="ok"))

        def _slow_send(*_args: object) -> bool:
            time.sleep(0.5)
            return True

        with patch("kubepulse.notify.dispatcher.send_email", side_effect=_slow_send):
            result = await dispatch(db, _event(severity="medium"), timeout=0.05)
        assert result == {"sent": 1, "failed": 1}

    async def test_low_event_only_to_unfiltered(self, db: sqlite3.Connection) -> None:
        with respx.mock:
            route = respx.post(HOOK_ALL).mock(return_value=httpx.Response(200, text="ok"))
            with patch("kubepulse.notify.dispatcher.send_email") as mock_send:
                result = await dispatch(db, _event(severity="low"))
            assert route.call_count == 1
        assert result == {"sent": 1, "failed": 0}
        mock_send.assert_not_called()

    async def test_unknown_channel_kind_counts_as_failure(self, db: sqlite3.Connection) -> None:
        save_channel(db, owner="pagers", kind="pagerduty", name="pd", target="svc-key")
        result = await dispatch(db, {**_event(), "owner": "pagers"})  # type: ignore[typeddict-item]
        assert result == {"sent": 0, "failed": 1}
