"""
Proxy orchestration for one upstream leg.

A request is forwarded in two phases:
 1. receive: send the rewritten request upstream and buffer the complete,
    still-encoded response body.
 2. transform: on the inspecting leg, decode, classify, update alert state and
    annotate the body; on pass-through legs, forward the bytes untouched.

Connection-level failures are reported to alerting as `connection_error` and
answered with a 500 JSON body carrying the service-degraded marker.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote, quote_plus, urlencode

import requests
import urllib3

from flight_proxy.alert_state import AlertStateMachine
from flight_proxy.classifier import classify
from flight_proxy.decompressor import decode
from flight_proxy.notifier import AlertDispatcher
from flight_proxy.schemas import (
    ConnectionErrorBody,
    ErrorEvent,
    ErrorKind,
    ProxyResult,
    UpstreamRoute,
)

logger = logging.getLogger(__name__)

REDACTED = "***"

# Hop-by-hop headers per HTTP/1.1 spec (RFC 7230)
HOP_BY_HOP = {
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailer', 'transfer-encoding', 'upgrade',
}
# Recomputed by the WSGI layer from the forwarded body
PASSTHROUGH_EXCLUDED = HOP_BY_HOP | {'content-length'}
# The inspecting leg always forwards a decoded body
INSPECT_EXCLUDED = PASSTHROUGH_EXCLUDED | {'content-encoding'}
# Never forwarded upstream; `requests` sets Host from the target URL
REQUEST_EXCLUDED = HOP_BY_HOP | {'host', 'content-length'}


def filter_headers(headers: Mapping[str, str], excluded: Iterable[str] = INSPECT_EXCLUDED) -> Dict[str, str]:
    """Remove hop-by-hop and recomputed headers before relaying a response."""
    excluded = set(excluded)
    return {k: v for k, v in headers.items() if k.lower() not in excluded}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProxyOrchestrator:
    """
    Forward requests for one UpstreamRoute and apply response inspection.

    Args:
        route: the configured upstream leg.
        alerts: shared AlertStateMachine.
        dispatcher: sends alert notifications when the state machine says so.
        timeout: upstream request timeout in seconds.
    """

    def __init__(
        self,
        route: UpstreamRoute,
        alerts: AlertStateMachine,
        dispatcher: AlertDispatcher,
        timeout: float = 300.0,
    ):
        self.route = route
        self.alerts = alerts
        self.dispatcher = dispatcher
        self.timeout = timeout
        if not route.api_key:
            logger.warning(
                "No API key configured for %s; requests will be forwarded without %s",
                route.service, route.key_param,
            )

    def rewrite_path(self, path: str) -> str:
        """Replace the inbound mount prefix with the upstream prefix."""
        mount = self.route.mount.rstrip('/')
        if path == mount or path.startswith(mount + '/'):
            path = path[len(mount):]
        return self.route.rewrite_to.rstrip('/') + path

    def build_query(self, query: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
        """Return the outbound query with the secret key injected (or left alone if unset)."""
        pairs = list(query)
        if not self.route.api_key:
            return pairs
        pairs = [(k, v) for k, v in pairs if k != self.route.key_param]
        pairs.append((self.route.key_param, self.route.api_key))
        return pairs

    def redact(self, url: str, params: List[Tuple[str, str]]) -> str:
        """Render `url?params` for logging with the key value replaced by a placeholder."""
        safe = [(k, REDACTED if k == self.route.key_param else v) for k, v in params]
        return f"{url}?{urlencode(safe, safe=REDACTED)}" if safe else url

    def _request_headers(self, headers: Mapping[str, str]) -> Dict[str, str]:
        outbound = {k: v for k, v in headers.items() if k.lower() not in REQUEST_EXCLUDED}
        if self.route.inspect:
            outbound = {k: v for k, v in outbound.items() if k.lower() != 'accept-encoding'}
            outbound['Accept-Encoding'] = 'identity'
        return outbound

    def _receive(
        self,
        method: str,
        url: str,
        params: List[Tuple[str, str]],
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> Tuple[int, Mapping[str, str], bytes]:
        """Phase 1: send upstream and buffer the complete raw body."""
        resp = requests.request(
            method,
            url,
            params=params,
            headers=headers,
            data=body or None,
            stream=True,
            allow_redirects=False,
            timeout=self.timeout,
        )
        try:
            raw = resp.raw.read(decode_content=False)
        finally:
            resp.close()
        return resp.status_code, resp.headers, raw

    def forward(
        self,
        method: str,
        path: str,
        query: Iterable[Tuple[str, str]],
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> ProxyResult:
        """
        Proxy one inbound request to the upstream.

        Args:
            method: HTTP method of the inbound request.
            path: inbound path, including the mount prefix.
            query: inbound query parameters as (key, value) pairs.
            headers: inbound request headers.
            body: inbound request body.

        Returns:
            ProxyResult with the status, headers and body to send to the caller.
        """
        endpoint = self.rewrite_path(path)
        url = self.route.target.rstrip('/') + endpoint
        params = self.build_query(query)
        logger.info("[%s] Proxying request: %s %s", self.route.service, method, self.redact(url, params))

        try:
            status_code, upstream_headers, raw = self._receive(
                method, url, params, self._request_headers(headers), body
            )
        except (requests.RequestException, urllib3.exceptions.HTTPError) as exc:
            return self._connection_failed(method, endpoint, params, exc)

        logger.info("[%s] Received response: %d for %s %s", self.route.service, status_code, method, endpoint)
        if not self.route.inspect:
            self.alerts.observe(self.route.service, None)
            return ProxyResult(
                status_code=status_code,
                headers=filter_headers(upstream_headers, PASSTHROUGH_EXCLUDED),
                body=raw,
            )
        return self._inspect(method, endpoint, status_code, upstream_headers, raw)

    def _inspect(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        upstream_headers: Mapping[str, str],
        raw: bytes,
    ) -> ProxyResult:
        """Phase 2 on the inspecting leg: decode, classify, alert, annotate."""
        decoded = decode(raw, upstream_headers.get('Content-Encoding'))
        result = classify(status_code, decoded)
        event = result.to_event(status_code, endpoint, method)
        if event is not None:
            logger.warning(
                "[%s] %s %s -> %d classified as %s: %s",
                self.route.service, method, endpoint, status_code, event.kind.value, event.message,
            )
        self._record(event)
        return ProxyResult(
            status_code=status_code,
            headers=filter_headers(upstream_headers, INSPECT_EXCLUDED),
            body=result.annotated_body,
        )

    def _connection_failed(
        self, method: str, endpoint: str, params: List[Tuple[str, str]], exc: Exception
    ) -> ProxyResult:
        # exc text can echo the request URL, so key values are redacted before use
        message = self._scrub(str(exc), params)
        logger.error("[%s] Proxy error for %s %s: %s", self.route.service, method, endpoint, message)
        event = ErrorEvent(
            kind=ErrorKind.CONNECTION_ERROR,
            status_code=None,
            message=message,
            endpoint=endpoint,
            method=method,
        )
        self._record(event)
        payload = ConnectionErrorBody(error="Proxy error", message=message, timestamp=utc_now_iso())
        return ProxyResult(
            status_code=500,
            headers={"Content-Type": "application/json"},
            body=payload.model_dump_json().encode("utf-8"),
        )

    def _record(self, event: Optional[ErrorEvent]) -> None:
        decision = self.alerts.observe(self.route.service, event)
        if event is not None and decision.should_notify:
            self.dispatcher.dispatch(self.route.service, event, decision.snapshot)

    def _scrub(self, text: str, params: List[Tuple[str, str]]) -> str:
        secrets = {v for k, v in params if k == self.route.key_param and v}
        if self.route.api_key:
            secrets.add(self.route.api_key)
        # URLs inside exception text carry the percent-encoded form
        for secret in secrets:
            for form in {quote_plus(secret), quote(secret, safe=''), secret}:
                text = text.replace(form, REDACTED)
        return text
