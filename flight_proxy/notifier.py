"""Email delivery for alert and feedback notifications.

`EmailNotifier` is a small HTTP client for a Resend-compatible email API.
Raises `requests.exceptions.HTTPError` for non-2xx responses and
`requests.exceptions.Timeout` if a request times out.

`AlertDispatcher` renders alerts and hands them to the notifier on a
background executor; its failures are logged and never reach the caller.

Usage:
    notifier = EmailNotifier("re_xxx", "alerts@example.com")
    notifier.send(["ops@example.com"], "Subject", "<p>Body</p>")
"""
import logging
from concurrent.futures import Executor
from typing import Any, Dict, Optional, Sequence
from urllib.parse import urljoin

import requests

from flight_proxy.alert_renderer import render_alert
from flight_proxy.schemas import AlertEmail, AlertState, ErrorEvent

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"


class EmailNotifier:
    """
    HTTP client for sending email through a Resend-compatible API.

    Raises:
        requests.exceptions.HTTPError: for any non-2xx HTTP response
        requests.exceptions.Timeout: if a request exceeds the timeout

    Examples:
        >>> notifier = EmailNotifier("re_123", "proxy@example.com", timeout=5)
        >>> notifier.send(["ops@example.com"], "AirLabs down", "<p>...</p>")
        {'id': '49a3999c-0ce1-4ea6-ab68-afcd6dc2e794'}
    """
    def __init__(self, api_key: str, sender: str, base_url: str = RESEND_API_URL, timeout: float = 10):
        """
        Initialize the notifier.

        Args:
            api_key: API key for the email service, sent as a bearer token.
            sender: 'From' address for outgoing mail.
            base_url: base URL of the email API. A trailing slash will be stripped.
            timeout: Request timeout in seconds.
        """
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def send(self, recipients: Sequence[str], subject: str, body_html: str) -> Dict[str, Any]:
        """
        Send one HTML email.

        Args:
            recipients: list of destination addresses.
            subject: email subject line.
            body_html: HTML body.

        Returns:
            The API response as a dict, containing the message 'id'.

        Raises:
            requests.exceptions.HTTPError: on non-2xx HTTP response.
            requests.exceptions.Timeout: if the request times out.
        """
        url = urljoin(self.base_url + '/', "emails")
        payload = {
            "from": self.sender,
            "to": list(recipients),
            "subject": subject,
            "html": body_html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        resp = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()


class AlertDispatcher:
    """Fire-and-forget delivery of rendered alerts to a fixed recipient list."""

    def __init__(self, notifier: Optional[EmailNotifier], recipients: Sequence[str], executor: Executor):
        self.notifier = notifier
        self.recipients = list(recipients)
        self.executor = executor

    @property
    def enabled(self) -> bool:
        return self.notifier is not None and bool(self.recipients)

    def dispatch(self, service: str, event: ErrorEvent, state: AlertState) -> None:
        """Render an alert and schedule its delivery; never raises."""
        if not self.enabled:
            logger.warning(
                "Alert for %s (%s) not sent: email notifications are not configured",
                service, event.kind.value,
            )
            return
        email = render_alert(service, event, state)
        logger.info(
            "Sending %s alert for %s (errors in streak: %d)",
            event.kind.value, service, state.error_count,
        )
        self.executor.submit(self._deliver, service, email)

    def _deliver(self, service: str, email: AlertEmail) -> None:
        # Runs on the executor; nothing reads the Future, so every failure is logged here
        try:
            result = self.notifier.send(self.recipients, email.subject, email.html)
            message_id = result.get("id")
        except requests.RequestException as exc:
            logger.error("Failed to send alert email for %s: %s", service, exc)
            return
        except Exception:
            logger.exception("Failed to send alert email for %s", service)
            return
        logger.info("Alert email for %s sent (id=%s)", service, message_id)
