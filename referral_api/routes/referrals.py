# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Referral endpoints: directory, state machine, follow-up journal and
linkage verification.
"""

from flask import jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from ..domain.referrals import ReferralFilters
from ..middleware.actor import require_actor
from ..models.requests import (
    ReferralPath,
    ReferralListQuery,
    AuditTrailQuery,
    CreateReferralRequest,
    UpdateReferralRequest,
    StatusUpdateRequest,
    FollowUpRequest,
    LinkageRequest,
    ScreeningResultRequest,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

referrals_tag = Tag(name="Referrals", description="Referral lifecycle workflow")
referrals_bp = APIBlueprint(
    'referrals',
    __name__,
    url_prefix='/api/referrals',
    abp_tags=[referrals_tag]
)


def _filters_from(query: ReferralListQuery) -> ReferralFilters:
    return ReferralFilters(
        status=query.status,
        risk_level=query.risk_level,
        service=query.service,
        priority=query.priority,
        location=query.location,
        search_term=query.search
    )


def _referral_response(referral, status_code: int = 200):
    return jsonify(current_app.hal_formatter.format_referral(referral, g.actor)), status_code


@referrals_bp.post('')
@require_actor
def create_referral(body: CreateReferralRequest):
    """
    Create a referral.

    The client's registry details are snapshotted onto the referral, which
    starts Pending with a single creation audit entry.
    """
    referral = current_app.referral_service.create(body, g.actor)
    return _referral_response(referral, 201)


@referrals_bp.get('')
@require_actor
def list_referrals(query: ReferralListQuery):
    """
    List referrals with filtering and pagination, newest first.
    """
    filters = _filters_from(query)
    result = current_app.referral_service.list(filters, g.actor, query.page, query.page_size)

    return jsonify(current_app.hal_formatter.format_referral_collection(
        result.items,
        result.total,
        result.page,
        result.page_size,
        g.actor,
        filters.to_query_params()
    ))


@referrals_bp.get('/projection')
@require_actor
def referral_projection(query: ReferralListQuery):
    """Reporting rows for KPI consumers."""
    filters = _filters_from(query)
    result = current_app.referral_service.projection(filters, g.actor, query.page, query.page_size)

    return jsonify(current_app.hal_formatter.format_projection_collection(
        result.items,
        result.total,
        result.page,
        result.page_size,
        filters.to_query_params()
    ))


@referrals_bp.post('/screenings')
@require_actor
def report_screening(body: ScreeningResultRequest):
    """
    Report a screening result.

    High-risk PrEP RAST results create an urgent PrEP referral attributed
    to the system; other results create nothing.
    """
    referral = current_app.referral_service.create_from_screening(body, g.actor)

    if referral is None:
        return jsonify({
            "created": False,
            "clientId": body.client_id,
            "detail": "Screening result does not warrant an automatic referral"
        }), 200

    response = current_app.hal_formatter.format_referral(referral, g.actor)
    response["created"] = True
    return jsonify(response), 201


@referrals_bp.get('/<referral_id>')
@require_actor
def get_referral(path: ReferralPath):
    """Get a referral."""
    referral = current_app.referral_service.get(path.referral_id, g.actor)
    return _referral_response(referral)


@referrals_bp.patch('/<referral_id>')
@require_actor
def update_referral(path: ReferralPath, body: UpdateReferralRequest):
    """Edit a referral's trigger reason, assignee or notes."""
    updates = body.model_dump(exclude_unset=True)
    referral = current_app.referral_service.update(path.referral_id, updates, g.actor)
    return _referral_response(referral)


@referrals_bp.delete('/<referral_id>')
@require_actor
def delete_referral(path: ReferralPath):
    """
    Soft delete a referral.

    The referral leaves the directory; its audit trail stays readable for
    audit roles.
    """
    current_app.referral_service.delete(path.referral_id, g.actor)
    return '', 204


@referrals_bp.post('/<referral_id>/status')
@require_actor
def update_referral_status(path: ReferralPath, body: StatusUpdateRequest):
    """Apply a manual status transition."""
    referral = current_app.referral_service.update_status(
        path.referral_id, body.status, body.reason, g.actor
    )
    return _referral_response(referral)


@referrals_bp.post('/<referral_id>/follow-ups')
@require_actor
def add_follow_up(path: ReferralPath, body: FollowUpRequest):
    """
    Record an outreach attempt.

    A successful attempt on a Pending referral moves it to Contacted.
    """
    referral = current_app.referral_service.add_follow_up(path.referral_id, body, g.actor)
    return _referral_response(referral, 201)


@referrals_bp.post('/<referral_id>/linkage')
@require_actor
def confirm_linkage(path: ReferralPath, body: LinkageRequest):
    """Confirm linkage to care."""
    referral = current_app.referral_service.confirm_linkage(path.referral_id, body, g.actor)
    return _referral_response(referral)


@referrals_bp.get('/<referral_id>/audit')
@require_actor
def get_referral_audit_trail(path: ReferralPath, query: AuditTrailQuery):
    """Get a referral's audit trail in the order it was written."""
    entries = current_app.referral_service.get_audit_trail(
        path.referral_id, g.actor, include_deleted=query.include_deleted
    )
    return jsonify(current_app.hal_formatter.format_audit_trail(path.referral_id, entries))
