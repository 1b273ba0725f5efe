from datetime import datetime, timezone

import pytest

from flight_proxy import alert_renderer
from flight_proxy.schemas import AlertEmail, AlertState, ErrorEvent, ErrorKind, FeedbackRequest

STREAK = AlertState(
    in_error_state=True,
    error_count=4,
    first_error_time=datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc),
)

# --- Kind-based alert rendering tests ---

def test_quota_alert_renders_correctly():
    event = ErrorEvent(
        kind=ErrorKind.QUOTA_EXCEEDED,
        status_code=429,
        message="Rate limit exceeded",
        endpoint="/api/v9/routes",
        method="GET",
    )
    email = alert_renderer.render_alert("airlabs", event, STREAK)
    assert isinstance(email, AlertEmail)
    assert email.subject == "[airlabs] API quota exceeded"
    assert "quota or rate limit was reached" in email.html
    assert "Rate limit exceeded" in email.html
    assert "429" in email.html
    assert "GET /api/v9/routes" in email.html
    assert "2025-05-01T12:00:00+00:00" in email.html
    assert "<td>4</td>" in email.html


def test_connection_alert_without_status_code():
    event = ErrorEvent(kind=ErrorKind.CONNECTION_ERROR, message="Read timed out", endpoint="/api/v9/flights")
    email = alert_renderer.render_alert("airlabs", event, STREAK)
    assert email.subject == "[airlabs] Upstream unreachable"
    assert "&lt;no response&gt;" in email.html
    assert "Read timed out" in email.html


@pytest.mark.parametrize("kind,subject", [
    (ErrorKind.AUTHENTICATION_ERROR, "[airlabs] API key rejected"),
    (ErrorKind.FORBIDDEN, "[airlabs] Access forbidden"),
    (ErrorKind.SERVER_ERROR, "[airlabs] Upstream server error"),
    (ErrorKind.API_ERROR, "[airlabs] API error"),
])
def test_every_kind_has_a_subject(kind, subject):
    event = ErrorEvent(kind=kind, status_code=500, endpoint="/api/v9/routes")
    assert alert_renderer.render_alert("airlabs", event, STREAK).subject == subject


def test_message_is_html_escaped():
    event = ErrorEvent(kind=ErrorKind.API_ERROR, status_code=400, message="<script>alert(1)</script>")
    email = alert_renderer.render_alert("airlabs", event, STREAK)
    assert "<script>" not in email.html
    assert "&lt;script&gt;" in email.html


def test_missing_first_error_time_uses_placeholder():
    event = ErrorEvent(kind=ErrorKind.SERVER_ERROR, status_code=500)
    email = alert_renderer.render_alert("airlabs", event, AlertState())
    assert "&lt;unknown&gt;" in email.html
    assert "&lt;missing endpoint&gt;" in email.html


def test_render_alert_logs_warning_on_fallback(monkeypatch, caplog):
    monkeypatch.delitem(alert_renderer.ALERT_DEFS, "api_error")
    event = ErrorEvent(kind=ErrorKind.API_ERROR, status_code=400)
    with caplog.at_level("WARNING"):
        email = alert_renderer.render_alert("airlabs", event, STREAK)
    assert email.subject == "[airlabs] Service degraded"
    assert "render_alert: Unknown error kind 'api_error'" in caplog.text


def test_feedback_renders_optional_fields():
    feedback = FeedbackRequest(message="Great app\nbut slow", email="a@example.com", rating=4)
    email = alert_renderer.render_feedback(feedback)
    assert email.subject == "New feedback from a@example.com"
    assert "Great app<br>but slow" in email.html
    assert "4/5" in email.html
    assert "Page" not in email.html


def test_feedback_without_sender_is_anonymous():
    email = alert_renderer.render_feedback(FeedbackRequest(message="hi"))
    assert email.subject == "New feedback from anonymous"
