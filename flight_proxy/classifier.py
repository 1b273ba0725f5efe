"""Classification of inspected upstream responses.

Pure functions: given a status code and a decoded body, decide whether the
response is a success or one of the ErrorKind failures, and build the body to
forward. No logging of alerts or notification happens here.
"""
import json
from typing import Any, Optional, Tuple

from flight_proxy.schemas import ClassificationResult, ErrorKind

# Substrings of an embedded error message that indicate quota / rate limiting
QUOTA_MARKERS = ("quota", "limit")
QUOTA_ERROR_CODE = "quota_exceeded"
MAX_MESSAGE_LENGTH = 500


def parse_body(decoded: bytes) -> Any:
    """Parse a decoded body as JSON, falling back to {'raw': text}."""
    text = decoded.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return {"raw": text}


def _is_raw_fallback(parsed: Any) -> bool:
    return isinstance(parsed, dict) and set(parsed.keys()) == {"raw"} and isinstance(parsed["raw"], str)


def _error_details(error: Any) -> Tuple[Optional[str], Optional[str]]:
    """Extract (message, code) from an embedded `error` field of any shape."""
    if isinstance(error, dict):
        message = error.get("message")
        code = error.get("code")
        return (
            str(message) if message is not None else None,
            str(code) if code is not None else None,
        )
    if isinstance(error, str):
        return error, None
    if error is None:
        return None, None
    return str(error), None


def _assign_kind(status_code: int, is_quota_error: bool) -> ErrorKind:
    # First matching rule wins
    if is_quota_error:
        return ErrorKind.QUOTA_EXCEEDED
    if status_code == 401:
        return ErrorKind.AUTHENTICATION_ERROR
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.API_ERROR


def classify(status_code: int, decoded: bytes) -> ClassificationResult:
    """
    Classify one upstream response.

    Args:
        status_code: HTTP status returned by the upstream.
        decoded: response body after Content-Encoding has been undone.

    Returns:
        ClassificationResult. On success the body is returned byte-for-byte;
        on error a JSON object body gains `serviceUnavailable` and `errorType`.
    """
    parsed = parse_body(decoded)
    raw_fallback = _is_raw_fallback(parsed)

    is_http_error = status_code >= 400
    is_api_error = isinstance(parsed, dict) and not raw_fallback and "error" in parsed
    if not (is_http_error or is_api_error):
        return ClassificationResult(is_error=False, annotated_body=decoded)

    message, code = _error_details(parsed.get("error")) if is_api_error else (None, None)
    lowered = (message or "").lower()
    is_quota_error = (
        status_code == 429
        or any(marker in lowered for marker in QUOTA_MARKERS)
        or code == QUOTA_ERROR_CODE
    )
    kind = _assign_kind(status_code, is_quota_error)

    if not message:
        text = parsed["raw"] if raw_fallback else ""
        message = text.strip()[:MAX_MESSAGE_LENGTH] or f"HTTP {status_code}"

    body = decoded
    if isinstance(parsed, dict) and not raw_fallback:
        annotated = dict(parsed)
        annotated["serviceUnavailable"] = True
        annotated["errorType"] = kind.value
        body = json.dumps(annotated).encode("utf-8")

    return ClassificationResult(is_error=True, kind=kind, annotated_body=body, message=message)
