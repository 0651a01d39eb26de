# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation error formatting.

Request bodies, query strings and path parameters are parsed by
flask-openapi3 into the Pydantic request models; this module turns the
resulting validation failures into HAL problem documents.
"""

from flask import request, jsonify, current_app, Response
from typing import Dict, Any, List
from pydantic import ValidationError
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


def format_validation_errors(validation_error: ValidationError) -> List[Dict[str, Any]]:
    """
    Format Pydantic validation errors for API response.

    Args:
        validation_error: Pydantic ValidationError

    Returns:
        List of formatted error dictionaries
    """
    errors = []

    for error in validation_error.errors():
        field_path = ".".join(str(loc) for loc in error["loc"]) or "body"
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"]
        })

    return errors


def validation_error_callback(e: ValidationError) -> Response:
    """Render request model validation failures as a 400 problem response."""
    span = trace.get_current_span()
    span.set_attribute("validation.result", "validation_error")

    validation_errors = format_validation_errors(e)

    logger.warning(
        "Request validation failed",
        extra={
            "model": e.title,
            "path": request.path,
            "method": request.method,
            "errors": validation_errors
        }
    )

    error_response = current_app.hal_formatter.format_validation_error(
        f"Request validation failed for {e.title}",
        request.path,
        validation_errors
    )
    response = jsonify(error_response)
    response.status_code = 400
    return response
