# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit log endpoints for querying audit trails across referrals.
"""

from flask import jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from ..middleware.actor import require_actor
from ..models.requests import AuditQuery
from ..services.audit import AuditFilters

# Set up logging and tracing
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Create API blueprint
audit_tag = Tag(name="Audit", description="Audit trail querying")
audit_bp = APIBlueprint(
    'audit',
    __name__,
    url_prefix='/api/audit',
    abp_tags=[audit_tag]
)


@audit_bp.get('')
@require_actor
def list_audit_logs(query: AuditQuery):
    """
    List audit entries across referrals, newest first.

    Returns a HAL collection of audit entries with pagination links.
    Entries of deleted referrals are included.
    """
    filters = AuditFilters(
        user_id=query.user_id,
        action=query.action,
        referral_id=query.referral_id,
        start_date=query.start_date,
        end_date=query.end_date
    )

    result = current_app.audit_service.query_audit_logs(
        filters, g.actor, query.page, query.page_size
    )

    return jsonify(current_app.hal_formatter.format_audit_collection(
        result.items,
        result.total,
        result.page,
        result.page_size,
        filters.to_query_params()
    ))
