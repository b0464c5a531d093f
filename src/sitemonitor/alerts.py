"""Alert dispatch and email delivery.

The :class:`AlertDispatcher` decides whether a site's health state warrants
an alert and hands delivery to a background thread pool, so a slow mail
server never delays the next sample. At most one alert fires per unbroken
streak of slow responses: the state is armed before delivery is submitted,
and a delivery failure does not disarm it.
"""

from __future__ import annotations

import html
import smtplib
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

import httpx

from sitemonitor.classifier import SampleRecord
from sitemonitor.config import MailConfig
from sitemonitor.logging import get_logger
from sitemonitor.state import SiteHealthState
from sitemonitor.types import NotifierType

logger = get_logger(__name__)

SMTP_SSL_PORT = 465
SMTP_TIMEOUT = 10.0
MAILGUN_TIMEOUT = 10.0


class NotificationError(Exception):
    """Raised when an alert could not be delivered."""

    pass


@dataclass(frozen=True)
class AlertContext:
    """Everything a notifier needs to describe an alert."""

    site_name: str
    url: str
    consecutive_failures: int
    alert_threshold: int
    alert_load_time: float
    last_sample: SampleRecord | None = None

    @property
    def subject(self) -> str:
        return f"Site monitor alert from {self.site_name}"

    def text_body(self) -> str:
        """Render the plain-text alert body."""
        lines = [
            f"Site {self.site_name} ({self.url}) has responded slower than "
            f"{self.alert_load_time:g}s {self.consecutive_failures} times in a row "
            f"(threshold {self.alert_threshold}).",
        ]
        if self.last_sample is not None:
            lines.append(
                f"Last sample at {self.last_sample.sampled_at.isoformat()}: "
                f"{self.last_sample.outcome}, status {self.last_sample.status_code}, "
                f"{round(self.last_sample.elapsed * 1000)}ms."
            )
            if self.last_sample.message:
                lines.append(self.last_sample.message)
        return "\n".join(lines)

    def html_body(self) -> str:
        """Render the HTML alert body."""
        paragraphs = "".join(
            f"<p>{html.escape(line)}</p>" for line in self.text_body().splitlines()
        )
        return f"<html><body><h3>{html.escape(self.subject)}</h3>{paragraphs}</body></html>"

    @classmethod
    def from_state(cls, state: SiteHealthState) -> AlertContext:
        return cls(
            site_name=state.site.name,
            url=state.site.url,
            consecutive_failures=state.consecutive_failures,
            alert_threshold=state.site.alert_threshold,
            alert_load_time=state.site.alert_load_time,
            last_sample=state.last_sample,
        )


class Notifier(Protocol):
    """Delivers an alert to a list of destinations.

    Implementations raise :class:`NotificationError` on failure.
    """

    def notify(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None: ...


class LogOnlyNotifier:
    """Notifier used when no mail transport is configured."""

    def notify(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None:
        logger.warning(
            "No mail transport configured, alert for %s not delivered: %s",
            site_name,
            context.text_body(),
            extra={"site": site_name},
        )


class MailgunNotifier:
    """Sends alerts through the Mailgun messages API."""

    def __init__(
        self,
        api_key: str,
        domain: str,
        sender: str,
        api_url: str = "https://api.mailgun.net/v3",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._sender = sender
        self._endpoint = f"{api_url.rstrip('/')}/{domain}/messages"
        self._client = httpx.Client(
            auth=("api", api_key),
            timeout=httpx.Timeout(MAILGUN_TIMEOUT),
            transport=transport,
        )

    def notify(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None:
        try:
            response = self._client.post(
                self._endpoint,
                data={
                    "from": self._sender,
                    "to": list(destinations),
                    "subject": context.subject,
                    "text": context.text_body(),
                    "html": context.html_body(),
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Mailgun delivery for {site_name} failed: {e}") from e

    def close(self) -> None:
        self._client.close()


class SmtpNotifier:
    """Sends alerts through an SMTP relay.

    Port 465 uses implicit TLS; any other port upgrades with STARTTLS when the
    server offers it.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        user: str = "",
        password: str = "",
        timeout: float = SMTP_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._user = user
        self._password = password
        self._timeout = timeout

    def build_message(self, destinations: Sequence[str], context: AlertContext) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = context.subject
        message["From"] = self._sender
        message["To"] = ", ".join(destinations)
        message.set_content(context.text_body())
        message.add_alternative(context.html_body(), subtype="html")
        return message

    def notify(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None:
        message = self.build_message(destinations, context)
        try:
            if self._port == SMTP_SSL_PORT:
                with smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout) as smtp:
                    self._send(smtp, message)
            else:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                    smtp.ehlo()
                    if smtp.has_extn("starttls"):
                        smtp.starttls()
                        smtp.ehlo()
                    self._send(smtp, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery for {site_name} failed: {e}") from e

    def _send(self, smtp: smtplib.SMTP, message: EmailMessage) -> None:
        if self._user:
            smtp.login(self._user, self._password)
        smtp.send_message(message)


def create_notifier(mail: MailConfig) -> Notifier:
    """Create the notifier for the configured mail transport."""
    match mail.transport:
        case NotifierType.MAILGUN:
            logger.info("Alerts will be sent through Mailgun domain %s", mail.mailgun_domain)
            return MailgunNotifier(
                api_key=mail.mailgun_api_key,
                domain=mail.mailgun_domain,
                sender=mail.sender,
                api_url=mail.mailgun_api_url,
            )
        case NotifierType.SMTP:
            logger.info("Alerts will be sent through SMTP host %s:%s", mail.smtp_host, mail.smtp_port)
            return SmtpNotifier(
                host=mail.smtp_host,
                port=mail.smtp_port,
                sender=mail.sender,
                user=mail.smtp_user,
                password=mail.smtp_password,
            )
        case _:
            logger.warning("No mail transport configured, alerts will only be logged")
            return LogOnlyNotifier()


class AlertDispatcher:
    """Fires at most one alert per failure streak, delivering in the background.

    Thread Safety:
        ``maybe_dispatch`` is called by the scheduler while it owns the site
        state. Delivery runs on the executor and touches no scheduler state.
    """

    def __init__(self, notifier: Notifier, max_workers: int = 2) -> None:
        self._notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="alert")
        self._lock = threading.Lock()
        self._pending: set[Future[None]] = set()
        self._alerts_sent = 0
        self._alerts_failed = 0
        self._shut_down = False

    @property
    def alerts_sent(self) -> int:
        with self._lock:
            return self._alerts_sent

    @property
    def alerts_failed(self) -> int:
        with self._lock:
            return self._alerts_failed

    def maybe_dispatch(self, state: SiteHealthState) -> bool:
        """Fire an alert for ``state`` if its streak just reached the threshold.

        Arms the state before submitting delivery so the same streak can never
        alert twice.

        Returns:
            True if an alert was fired.
        """
        if not state.needs_alert():
            return False

        state.arm_alert()
        context = AlertContext.from_state(state)
        logger.warning(
            "Alert threshold reached for %s: %d consecutive slow responses",
            state.site.name,
            state.consecutive_failures,
            extra={"site": state.site.name},
        )

        destinations = state.site.alert_emails
        if not destinations:
            logger.warning(
                "No alert destinations configured for %s", state.site.name,
                extra={"site": state.site.name},
            )
            return True

        with self._lock:
            if self._shut_down:
                logger.warning("Alert dispatcher is shut down, alert for %s dropped", state.site.name)
                return True
            future = self._executor.submit(self._deliver, context.site_name, destinations, context)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return True

    def _deliver(self, site_name: str, destinations: Sequence[str], context: AlertContext) -> None:
        try:
            self._notifier.notify(site_name, destinations, context)
        except NotificationError as e:
            with self._lock:
                self._alerts_failed += 1
            logger.error("Alert for %s not delivered: %s", site_name, e, extra={"site": site_name})
            return
        except Exception:
            with self._lock:
                self._alerts_failed += 1
            logger.exception("Unexpected error delivering alert for %s", site_name)
            return
        with self._lock:
            self._alerts_sent += 1
        logger.info(
            "Alert for %s sent to %s", site_name, ", ".join(destinations), extra={"site": site_name}
        )

    def _discard(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting alerts and optionally wait for pending deliveries."""
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
        self._executor.shutdown(wait=wait)
        close = getattr(self._notifier, "close", None)
        if callable(close):
            close()


__all__ = [
    "AlertContext",
    "AlertDispatcher",
    "LogOnlyNotifier",
    "MailgunNotifier",
    "NotificationError",
    "Notifier",
    "SmtpNotifier",
    "create_notifier",
]
