"""
Request tracing for the referral API.

Tags each request span with the acting user and the referral it targets, and
logs one line per request so audit entries can be matched to HTTP traffic by
trace ID.
"""

import time
import logging
from typing import Any, Dict
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

from ..middleware.actor import USER_ID_HEADER, USER_ROLE_HEADER

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})


def request_attributes() -> Dict[str, Any]:
    """Span attributes describing the current referral request."""
    attributes = {
        "http.method": request.method,
        "http.route": request.url_rule.rule if request.url_rule else request.path,
        "referral.mutation": request.method in MUTATING_METHODS,
    }

    referral_id = (request.view_args or {}).get("referral_id")
    if referral_id:
        attributes["referral.id"] = referral_id

    user_id = request.headers.get(USER_ID_HEADER)
    if user_id:
        attributes["user.id"] = user_id

    role = request.headers.get(USER_ROLE_HEADER)
    if role:
        attributes["user.role"] = role

    return attributes


def add_request_tracing(app: Flask):
    """Instrument the app and register the per-request span and log hooks."""
    FlaskInstrumentor().instrument_app(app)

    @app.before_request
    def start_request_span():
        g.start_time = time.time()
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attributes(request_attributes())

    @app.after_request
    def finish_request_span(response):
        duration_ms = round((time.time() - g.get('start_time', time.time())) * 1000, 2)
        # 4xx on a write means the workflow refused it and nothing was stored
        rejected = request.method in MUTATING_METHODS and 400 <= response.status_code < 500

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": duration_ms,
                "referral.rejected": rejected
            })

        logger.info(
            "Referral request rejected" if rejected else "Referral request completed",
            extra={
                "method": request.method,
                "route": request.url_rule.rule if request.url_rule else request.path,
                "referral_id": (request.view_args or {}).get("referral_id"),
                "user_id": request.headers.get(USER_ID_HEADER),
                "user_role": request.headers.get(USER_ROLE_HEADER),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "trace_id": g.get('trace_id')
            }
        )

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
