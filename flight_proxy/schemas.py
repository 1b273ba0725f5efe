"""Pydantic models for the flight proxy.

Defines the alert-tracking records (AlertState, ErrorEvent, AlertDecision),
the per-response ClassificationResult, and the JSON bodies the proxy emits.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


class ErrorKind(str, Enum):
    """Kinds of upstream failure the proxy reports to callers and to alerting."""
    CONNECTION_ERROR = "connection_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTHENTICATION_ERROR = "authentication_error"
    FORBIDDEN = "forbidden"
    SERVER_ERROR = "server_error"
    API_ERROR = "api_error"


class AlertState(BaseModel):
    """
    Alert-tracking record for one upstream service.

    in_error_state: true once an error has been seen since the last recovery.
    error_count: consecutive errors in the current streak (0 when healthy).
    first_error_time: wall-clock start of the current streak, None when healthy.
    last_alert_time: monotonic-clock time of the last alert sent, None if never sent.
    last_alert_at: wall-clock time of the last alert sent, for display only.
    """
    in_error_state: bool = Field(False, description="True while the service is in an error streak.")
    error_count: int = Field(0, ge=0, description="Consecutive errors since entering the error state.")
    first_error_time: Optional[datetime] = Field(None, description="When the current error streak began.")
    last_alert_time: Optional[float] = Field(None, description="Monotonic timestamp of the last alert sent.")
    last_alert_at: Optional[datetime] = Field(None, description="Wall-clock time of the last alert sent.")


class ErrorEvent(BaseModel):
    """A single classified failure, consumed once by the alert state machine."""
    kind: ErrorKind
    status_code: Optional[int] = None
    message: str = ""
    endpoint: str = ""
    method: str = "GET"


class AlertDecision(BaseModel):
    """Outcome of observing one event: whether to notify, plus a copy of the state."""
    should_notify: bool
    snapshot: AlertState


class ClassificationResult(BaseModel):
    """
    Status classification of one upstream response.

    is_error: whether the response counts as an error for alerting.
    kind: the assigned ErrorKind, None on success.
    annotated_body: the body to forward (annotated when it is a JSON object and an error).
    message: human-readable description used in the error event.
    """
    is_error: bool
    kind: Optional[ErrorKind] = None
    annotated_body: bytes = b""
    message: str = ""

    def to_event(self, status_code: int, endpoint: str, method: str) -> Optional[ErrorEvent]:
        """Build the ErrorEvent for this result, or None on success."""
        if not self.is_error or self.kind is None:
            return None
        return ErrorEvent(
            kind=self.kind,
            status_code=status_code,
            message=self.message,
            endpoint=endpoint,
            method=method,
        )


class ProxyResult(BaseModel):
    """Response handed back to the Flask layer by the proxy orchestrator."""
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""


class ConnectionErrorBody(BaseModel):
    """JSON body returned to the caller when the upstream cannot be reached."""
    error: str = Field(..., description="Short error summary.")
    message: str = Field(..., description="Description of the connection failure.")
    serviceUnavailable: bool = Field(True, description="Service-degraded marker for the caller.")
    timestamp: str = Field(..., description="ISO-8601 time the failure was observed.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Proxy error",
                "message": "Read timed out. (read timeout=300)",
                "serviceUnavailable": True,
                "timestamp": "2025-05-01T12:00:00.000000+00:00",
            }
        }
    )


class AlertEmail(BaseModel):
    """A rendered notification, ready for the notifier."""
    subject: str
    html: str


class FeedbackRequest(BaseModel):
    """
    Feedback submitted from the front end.

    message: free-text feedback (required).
    email: optional reply-to address supplied by the user.
    name: optional display name.
    page: optional page or view the feedback refers to.
    rating: optional 1-5 score.
    """
    message: str = Field(..., min_length=1, max_length=5000)
    email: Optional[str] = Field(None, max_length=320)
    name: Optional[str] = Field(None, max_length=200)
    page: Optional[str] = Field(None, max_length=500)
    rating: Optional[int] = Field(None, ge=1, le=5)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "Route search for ZRH-NRT returned no results.",
                "email": "traveller@example.com",
                "rating": 3,
            }
        }
    )


class ServiceStatus(BaseModel):
    """Public view of one service's alert state, served from /status."""
    service: str
    status: str
    error_count: int
    first_error_time: Optional[datetime] = None
    last_alert_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, service: str, state: AlertState) -> "ServiceStatus":
        return cls(
            service=service,
            status="degraded" if state.in_error_state else "healthy",
            error_count=state.error_count,
            first_error_time=state.first_error_time,
            last_alert_at=state.last_alert_at,
        )


class UpstreamRoute(BaseModel):
    """
    One configured proxy leg.

    service: identifier used for alert tracking and logs.
    mount: inbound path prefix, e.g. '/api/airlabs'.
    target: upstream base URL, e.g. 'https://airlabs.co'.
    rewrite_to: path prefix that replaces `mount` on the upstream.
    key_param: query parameter that carries the secret key.
    api_key: the secret key; None leaves the query untouched.
    inspect: whether responses are decoded and classified.
    """
    service: str
    mount: str
    target: str
    rewrite_to: str = ""
    key_param: str = "api_key"
    api_key: Optional[str] = Field(None, repr=False)
    inspect: bool = False
    methods: List[str] = Field(default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE"])
