"""
Flask reverse proxy for third-party flight-data APIs.

This module implements the HTTP surface of the proxy.
It exposes:
 - /api/airlabs/<path>  (inspected: classified, annotated and alerted on)
 - /api/search/<path>   (Farera pass-through, when FARERA_BASE_URL is set)
 - /api/feedback
 - /health, /config, /status
 - /openapi.yaml

Upstream errors on the inspected leg are forwarded with a `serviceUnavailable`
marker and trigger throttled email alerts. Configuration is read from the
environment; see flight_proxy/config.py for the variables.
"""
# Type hints
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import timedelta
from typing import Optional, Tuple

# Standard library imports
import logging
import os

# Third-party imports
import requests
from flask import Flask, Response, jsonify, request, send_file
from flask_cors import CORS
from pydantic import ValidationError

# Internal imports
from flight_proxy.alert_renderer import render_feedback
from flight_proxy.alert_state import AlertStateMachine
from flight_proxy.config import ProxySettings, build_routes, configure_logging, load_settings
from flight_proxy.notifier import AlertDispatcher, EmailNotifier
from flight_proxy.proxy import ProxyOrchestrator, utc_now_iso
from flight_proxy.schemas import FeedbackRequest, ServiceStatus

logger = logging.getLogger(__name__)

SERVICE_NAME = "flight-proxy-server"
VERSION = "1.0.0"


def _error_response(error: str, message: str, status_code: int) -> Tuple[Response, int]:
    return jsonify({"error": error, "message": message, "timestamp": utc_now_iso()}), status_code


def _make_proxy_view(orchestrator: ProxyOrchestrator):
    def proxy_view(subpath: Optional[str] = None) -> Response:
        result = orchestrator.forward(
            request.method,
            request.path,
            request.args.items(multi=True),
            request.headers,
            request.get_data(),
        )
        return Response(result.body, status=result.status_code, headers=result.headers)
    proxy_view.__name__ = f"proxy_{orchestrator.route.service}"
    return proxy_view


def create_app(
    settings: Optional[ProxySettings] = None,
    executor: Optional[Executor] = None,
    notifier: Optional[EmailNotifier] = None,
    alerts: Optional[AlertStateMachine] = None,
) -> Flask:
    """
    Build the Flask application and wire the proxy components.

    Args:
        settings: configuration; read from the environment when omitted.
        executor: runs alert email delivery in the background.
        notifier: email client; built from settings when omitted and RESEND_API_KEY is set.
        alerts: alert state machine; a fresh one with the configured cooldown when omitted.

    Returns:
        The configured Flask app. Components are available in app.extensions['flight_proxy'].
    """
    settings = settings or load_settings()
    if executor is None:
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="alert-notifier")
    if notifier is None and settings.resend_api_key:
        notifier = EmailNotifier(
            settings.resend_api_key, settings.alert_from, timeout=settings.notifier_timeout_seconds
        )
    if alerts is None:
        alerts = AlertStateMachine(cooldown=timedelta(minutes=settings.alert_cooldown_minutes))

    app = Flask(__name__)
    CORS(app, origins=settings.cors_origins, supports_credentials=True)

    dispatcher = AlertDispatcher(notifier, settings.alert_recipients, executor)
    routes = build_routes(settings)
    orchestrators = {}
    for route in routes:
        orchestrator = ProxyOrchestrator(
            route, alerts, dispatcher, timeout=settings.upstream_timeout_seconds
        )
        orchestrators[route.service] = orchestrator
        alerts.track(route.service)
        view = _make_proxy_view(orchestrator)
        app.add_url_rule(route.mount, view_func=view, methods=route.methods)
        app.add_url_rule(f"{route.mount}/<path:subpath>", view_func=view, methods=route.methods)

    app.extensions["flight_proxy"] = {
        "settings": settings,
        "alerts": alerts,
        "dispatcher": dispatcher,
        "notifier": notifier,
        "orchestrators": orchestrators,
    }

    @app.route('/health', methods=['GET'])
    def health() -> Response:
        """GET /health: liveness probe."""
        return jsonify({
            "status": "ok",
            "timestamp": utc_now_iso(),
            "service": SERVICE_NAME,
            "version": VERSION,
        })

    @app.route('/config', methods=['GET'])
    def config() -> Response:
        """GET /config: which upstreams and channels are configured (never the secrets)."""
        return jsonify({
            "upstreams": [
                {
                    "service": r.service,
                    "mount": r.mount,
                    "target": r.target,
                    "inspected": r.inspect,
                    "apiKeyConfigured": bool(r.api_key),
                }
                for r in routes
            ],
            "alerting": {
                "enabled": dispatcher.enabled,
                "recipients": len(settings.alert_recipients),
                "cooldownMinutes": settings.alert_cooldown_minutes,
            },
            "feedbackEnabled": notifier is not None and bool(settings.feedback_recipients),
            "allowedOrigins": settings.cors_origins,
        })

    @app.route('/status', methods=['GET'])
    def status() -> Response:
        """GET /status: current alert state of every upstream."""
        services = [
            ServiceStatus.from_state(name, state).model_dump(mode="json")
            for name, state in sorted(alerts.snapshots().items())
        ]
        return jsonify({"timestamp": utc_now_iso(), "services": services})

    @app.route('/api/feedback', methods=['POST'])
    def feedback() -> Tuple[Response, int]:
        """POST /api/feedback: email user feedback to the feedback recipients."""
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error_response("Invalid feedback", "Request body must be a JSON object.", 400)
        try:
            submission = FeedbackRequest.model_validate(payload)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            return _error_response("Invalid feedback", details, 400)
        if notifier is None or not settings.feedback_recipients:
            logger.warning("Feedback received but email delivery is not configured")
            return _error_response("Feedback unavailable", "Email delivery is not configured.", 503)
        email = render_feedback(submission)
        try:
            result = notifier.send(settings.feedback_recipients, email.subject, email.html)
        except requests.RequestException as exc:
            logger.error("Failed to send feedback email: %s", exc)
            return _error_response("Feedback not sent", "The email service could not be reached.", 502)
        return jsonify({"success": True, "id": result.get("id")}), 200

    @app.route('/openapi.yaml')
    def openapi_yaml():
        """Serve the OpenAPI spec for the proxy in YAML format."""
        return send_file(os.path.join(os.path.dirname(__file__), '..', 'openapi.yaml'), mimetype='application/yaml')

    @app.errorhandler(404)
    def handle_404(e):
        """Convert any Flask 404 into a JSON 'Not found' response."""
        return _error_response("Not found", f"Route {request.path} not found", 404)

    @app.errorhandler(405)
    def handle_405(e):
        """Convert any Flask 405 into a JSON response."""
        return _error_response(
            "Method not allowed", f"Method {request.method} not allowed for {request.path}", 405
        )

    @app.errorhandler(500)
    def handle_500(e):
        """Convert unhandled exceptions into a JSON 'Internal server error' response."""
        original = getattr(e, "original_exception", None) or e
        logger.error("Unhandled error: %s", original)
        return _error_response("Internal server error", str(original), 500)

    return app


# Entry point: run Flask app on PORT (default 3001)
if __name__ == '__main__':
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Flight proxy running on port %d", settings.port)
    logger.info("Allowed origins: %s", ", ".join(settings.cors_origins))
    app.run(host="0.0.0.0", port=settings.port, threaded=True)
