# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.
Maps workflow errors and HTTP errors to RFC 7807 problem documents.
"""

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from opentelemetry import trace
import logging

from ..domain.errors import WorkflowError
from ..services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

_HTTP_ERROR_TYPES = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    415: ("unsupported-media-type", "Unsupported Media Type"),
    422: ("validation-error", "Validation Error"),
}


def register_workflow_error_handlers(app: Flask, hal_formatter: HalFormatter):
    """
    Register handlers for workflow errors, HTTP errors and unexpected exceptions.

    Args:
        app: Flask application
        hal_formatter: HAL formatter instance
    """

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(error: WorkflowError):
        with tracer.start_as_current_span("error_handler.workflow_error") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })

            log = logger.error if error.status_code >= 500 else logger.warning
            log(
                f"Workflow error: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "detail": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            error_response = hal_formatter.format_workflow_error(error, request.path)
            return jsonify(error_response), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        error_type, title = _HTTP_ERROR_TYPES.get(
            error.code, ("internal-server-error", "Internal Server Error")
        )
        detail = str(error.description) if error.description else title

        logger.warning(
            f"Client error: {title}",
            extra={
                "error_type": error_type,
                "status_code": error.code,
                "detail": detail,
                "path": request.path,
                "method": request.method,
                "user_agent": request.headers.get('User-Agent'),
                "ip_address": request.remote_addr
            }
        )

        error_response = hal_formatter.builder.build_error_response(
            error_type,
            title,
            error.code,
            detail,
            request.path
        )
        return jsonify(error_response), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            # Don't expose internal error details in production
            detail = "An unexpected error occurred"
            if app.config.get('ENVIRONMENT') != 'production':
                detail = f"{error.__class__.__name__}: {str(error)}"

            error_response = hal_formatter.format_server_error(detail, request.path)
            return jsonify(error_response), 500
