"""Tests for alert dispatch and delivery."""

from __future__ import annotations

import logging
import smtplib
from unittest.mock import patch

import httpx
import pytest

from sitemonitor.alerts import (
    AlertContext,
    AlertDispatcher,
    LogOnlyNotifier,
    MailgunNotifier,
    NotificationError,
    SmtpNotifier,
    create_notifier,
)
from sitemonitor.config import MailConfig
from sitemonitor.state import SiteHealthState
from sitemonitor.types import OutcomeKind
from tests.helpers import make_record, make_site
from tests.mocks import RecordingNotifier


def slow_state(threshold: int = 2, streak: int = 2, emails=("ops@example.com",)) -> SiteHealthState:
    state = SiteHealthState.initial(make_site(alert_threshold=threshold, alert_emails=emails))
    for _ in range(streak):
        state.record(make_record(outcome=OutcomeKind.LATENCY_EXCEEDED, elapsed=2.5))
    return state


def make_context() -> AlertContext:
    return AlertContext.from_state(slow_state())


class TestAlertContext:
    """Tests for alert message rendering."""

    def test_subject_names_the_site(self) -> None:
        assert make_context().subject == "Site monitor alert from alpha"

    def test_text_body_describes_streak(self) -> None:
        body = make_context().text_body()

        assert "alpha" in body
        assert "2 times in a row" in body
        assert "2500ms" in body

    def test_html_body_escapes(self) -> None:
        context = AlertContext(
            site_name="<b>x</b>",
            url="https://x.example.com/",
            consecutive_failures=3,
            alert_threshold=3,
            alert_load_time=1.0,
        )

        assert "<b>x</b>" not in context.html_body()
        assert "&lt;b&gt;x&lt;/b&gt;" in context.html_body()


class TestAlertDispatcher:
    """Tests for AlertDispatcher.maybe_dispatch."""

    def test_below_threshold_does_nothing(self) -> None:
        notifier = RecordingNotifier()
        dispatcher = AlertDispatcher(notifier)
        state = slow_state(threshold=3, streak=2)

        fired = dispatcher.maybe_dispatch(state)
        dispatcher.shutdown()

        assert fired is False
        assert state.alert_armed is False
        assert notifier.calls == []

    def test_fires_once_per_streak(self) -> None:
        notifier = RecordingNotifier()
        dispatcher = AlertDispatcher(notifier)
        state = slow_state()

        first = dispatcher.maybe_dispatch(state)
        second = dispatcher.maybe_dispatch(state)
        dispatcher.shutdown()

        assert (first, second) == (True, False)
        assert state.alert_armed is True
        assert len(notifier.calls) == 1
        assert notifier.calls[0].destinations == ["ops@example.com"]
        assert dispatcher.alerts_sent == 1

    def test_delivery_failure_keeps_state_armed(self, caplog) -> None:
        """A failed delivery is logged and not retried for the same streak."""
        notifier = RecordingNotifier(fail=True)
        dispatcher = AlertDispatcher(notifier)
        state = slow_state()

        with caplog.at_level(logging.ERROR):
            dispatcher.maybe_dispatch(state)
            dispatcher.shutdown()

        assert state.alert_armed is True
        assert dispatcher.alerts_failed == 1
        assert dispatcher.maybe_dispatch(state) is False
        assert "not delivered" in caplog.text

    def test_no_destinations_arms_without_delivery(self) -> None:
        notifier = RecordingNotifier()
        dispatcher = AlertDispatcher(notifier)
        state = slow_state(emails=())

        fired = dispatcher.maybe_dispatch(state)
        dispatcher.shutdown()

        assert fired is True
        assert state.alert_armed is True
        assert notifier.calls == []

    def test_after_shutdown_alert_is_dropped(self) -> None:
        notifier = RecordingNotifier()
        dispatcher = AlertDispatcher(notifier)
        dispatcher.shutdown()
        state = slow_state()

        assert dispatcher.maybe_dispatch(state) is True
        assert notifier.calls == []

    def test_shutdown_is_idempotent(self) -> None:
        dispatcher = AlertDispatcher(RecordingNotifier())

        dispatcher.shutdown()
        dispatcher.shutdown()


class TestMailgunNotifier:
    """Tests for Mailgun delivery."""

    def test_posts_message(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "<1@mg>", "message": "Queued"})

        notifier = MailgunNotifier(
            api_key="key-123",
            domain="mg.example.com",
            sender="monitor@example.com",
            transport=httpx.MockTransport(handler),
        )
        notifier.notify("alpha", ["a@example.com", "b@example.com"], make_context())
        notifier.close()

        request = requests[0]
        assert str(request.url) == "https://api.mailgun.net/v3/mg.example.com/messages"
        assert request.headers["Authorization"].startswith("Basic ")
        form = request.content.decode()
        assert "to=a%40example.com" in form
        assert "to=b%40example.com" in form
        assert "Site+monitor+alert+from+alpha" in form

    def test_http_error_raises_notification_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="Forbidden")

        notifier = MailgunNotifier(
            api_key="bad",
            domain="mg.example.com",
            sender="monitor@example.com",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(NotificationError):
            notifier.notify("alpha", ["a@example.com"], make_context())


class TestSmtpNotifier:
    """Tests for SMTP delivery."""

    def test_builds_multipart_message(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com", port=587, sender="monitor@example.com")

        message = notifier.build_message(["a@example.com", "b@example.com"], make_context())

        assert message["Subject"] == "Site monitor alert from alpha"
        assert message["To"] == "a@example.com, b@example.com"
        assert message.is_multipart()

    def test_sends_with_starttls_and_login(self) -> None:
        notifier = SmtpNotifier(
            host="smtp.example.com",
            port=587,
            sender="monitor@example.com",
            user="monitor",
            password="pw",
        )

        with patch("sitemonitor.alerts.smtplib.SMTP") as smtp_class:
            smtp = smtp_class.return_value.__enter__.return_value
            smtp.has_extn.return_value = True
            notifier.notify("alpha", ["a@example.com"], make_context())

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("monitor", "pw")
        smtp.send_message.assert_called_once()

    def test_smtp_failure_raises_notification_error(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com", port=25, sender="monitor@example.com")

        with patch("sitemonitor.alerts.smtplib.SMTP") as smtp_class:
            smtp_class.side_effect = smtplib.SMTPConnectError(421, b"busy")
            with pytest.raises(NotificationError):
                notifier.notify("alpha", ["a@example.com"], make_context())

    def test_port_465_uses_ssl(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com", port=465, sender="monitor@example.com")

        with patch("sitemonitor.alerts.smtplib.SMTP_SSL") as smtp_ssl:
            notifier.notify("alpha", ["a@example.com"], make_context())

        smtp_ssl.assert_called_once()


class TestCreateNotifier:
    """Tests for transport selection."""

    def test_mailgun_preferred(self) -> None:
        mail = MailConfig(mailgun_api_key="k", mailgun_domain="d", smtp_host="smtp")

        notifier = create_notifier(mail)

        assert isinstance(notifier, MailgunNotifier)
        notifier.close()

    def test_smtp(self) -> None:
        assert isinstance(create_notifier(MailConfig(smtp_host="smtp")), SmtpNotifier)

    def test_none_logs_only(self) -> None:
        notifier = create_notifier(MailConfig())

        assert isinstance(notifier, LogOnlyNotifier)
        notifier.notify("alpha", ["a@example.com"], make_context())

