import logging
from datetime import datetime
from html import escape
from typing import Optional

from .schemas import AlertEmail, AlertState, ErrorEvent, FeedbackRequest

logger = logging.getLogger(__name__)

# Unified kind-based alert definitions
ALERT_DEFS = {
    "connection_error": {
        "subject": "[{service}] Upstream unreachable",
        "headline": "The proxy could not connect to {service}.",
        "next_steps": "Check the upstream status page and the proxy's outbound network.",
    },
    "quota_exceeded": {
        "subject": "[{service}] API quota exceeded",
        "headline": "{service} is rejecting requests because the API quota or rate limit was reached.",
        "next_steps": "Review the plan limits on the {service} dashboard or upgrade the subscription.",
    },
    "authentication_error": {
        "subject": "[{service}] API key rejected",
        "headline": "{service} rejected the configured API key (HTTP {status_code}).",
        "next_steps": "Verify that the API key environment variable holds a valid, active key.",
    },
    "forbidden": {
        "subject": "[{service}] Access forbidden",
        "headline": "{service} refused access to {endpoint} (HTTP {status_code}).",
        "next_steps": "Confirm the subscription includes this endpoint.",
    },
    "server_error": {
        "subject": "[{service}] Upstream server error",
        "headline": "{service} returned a server error (HTTP {status_code}).",
        "next_steps": "The upstream is degraded; no action is usually needed unless it persists.",
    },
    "api_error": {
        "subject": "[{service}] API error",
        "headline": "{service} returned an error for {endpoint}.",
        "next_steps": "Inspect the error message below and the request parameters.",
    },
    # Add more error kinds here as needed
}

GENERIC_ALERT = {
    "subject": "[{service}] Service degraded",
    "headline": "{service} reported an error.",
    "next_steps": "",
}


def _format_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value else "<unknown>"


def render_alert(service: str, event: ErrorEvent, state: AlertState) -> AlertEmail:
    """
    Render an alert email for one error event, with best-effort context.

    Args:
        service: upstream service name, e.g. 'airlabs'
        event: the ErrorEvent that triggered the alert
        state: AlertState snapshot taken when the alert fired

    Returns:
        AlertEmail instance
    """
    kind = event.kind.value
    alert_def = ALERT_DEFS.get(kind)
    if alert_def is None:
        logger.warning("render_alert: Unknown error kind '%s', using generic template", kind)
        alert_def = GENERIC_ALERT

    # Use available fields for formatting, fallback to placeholders for missing
    format_data = {
        "service": service,
        "kind": kind,
        "status_code": event.status_code if event.status_code is not None else "<no response>",
        "endpoint": event.endpoint or "<missing endpoint>",
        "method": event.method,
    }
    subject = alert_def["subject"].format(**format_data)
    safe = {k: escape(str(v)) for k, v in format_data.items()}
    headline = alert_def["headline"].format(**safe)
    next_steps = alert_def["next_steps"].format(**safe)

    rows = [
        ("Service", safe["service"]),
        ("Error type", safe["kind"]),
        ("Status code", safe["status_code"]),
        ("Endpoint", f"{safe['method']} {safe['endpoint']}"),
        ("Message", escape(event.message or "<no message>")),
        ("First error", escape(_format_time(state.first_error_time))),
        ("Errors in streak", str(state.error_count)),
    ]
    table = "".join(
        f"<tr><th align=\"left\">{label}</th><td>{value}</td></tr>" for label, value in rows
    )
    html = f"<h2>{headline}</h2><table>{table}</table>"
    if next_steps:
        html += f"<p>{next_steps}</p>"
    return AlertEmail(subject=subject, html=html)


def render_feedback(feedback: FeedbackRequest) -> AlertEmail:
    """Render a user feedback submission as an email."""
    sender = feedback.name or feedback.email or "anonymous"
    subject = f"New feedback from {sender}"
    rows = [
        ("Name", feedback.name),
        ("Email", feedback.email),
        ("Page", feedback.page),
        ("Rating", f"{feedback.rating}/5" if feedback.rating is not None else None),
    ]
    table = "".join(
        f"<tr><th align=\"left\">{label}</th><td>{escape(value)}</td></tr>"
        for label, value in rows if value
    )
    message = escape(feedback.message).replace("\n", "<br>")
    html = f"<h2>User feedback</h2><table>{table}</table><p>{message}</p>"
    return AlertEmail(subject=subject, html=html)
