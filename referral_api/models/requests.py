# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.

Body models use camelCase keys and reject unknown fields; query and path
models use the plain parameter names.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from .enums import (
    ReferralStatus,
    ServiceType,
    ReferralSource,
    RiskLevel,
    Priority,
    FollowUpAction,
    FollowUpOutcome,
    FacilityType,
    ConfirmationMethod,
    AuditAction,
)


class RequestModel(BaseModel):
    """Closed request body with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='forbid',
        str_strip_whitespace=True,
    )


class ReferralPath(BaseModel):
    """Path parameters for a single referral."""

    referral_id: str = Field(..., description="Referral ID")


class CreateReferralRequest(RequestModel):
    """Request model for creating a referral."""

    client_id: str = Field(..., description="Client registry identifier")
    client_name: Optional[str] = Field(None, description="Client name, used when the registry has no record")
    phone: Optional[str] = Field(None, description="Client phone, used when the registry has no record")
    location: Optional[str] = Field(None, description="Client location, used when the registry has no record")
    program: Optional[str] = Field(None, description="Client program, used when the registry has no record")
    service: ServiceType = Field(..., description="Service referred to")
    source: ReferralSource = Field(..., description="Referral source")
    trigger_reason: str = Field(..., description="Why the client is referred")
    risk_level: RiskLevel = Field(..., description="Assessed risk level")
    priority: Priority = Field(default=Priority.ROUTINE, description="Referral priority")
    assigned_to: Optional[str] = Field(None, max_length=200, description="Responsible staff member")
    notes: Optional[str] = Field(None, max_length=2000, description="Free-text notes")
    visit_id: Optional[str] = Field(None, description="Originating visit")


class UpdateReferralRequest(RequestModel):
    """Request model for editing a referral's free-text fields."""

    trigger_reason: Optional[str] = Field(None, description="Why the client is referred")
    assigned_to: Optional[str] = Field(None, max_length=200, description="Responsible staff member")
    notes: Optional[str] = Field(None, max_length=2000, description="Free-text notes")


class StatusUpdateRequest(RequestModel):
    """Request model for a manual status change."""

    status: ReferralStatus = Field(..., description="Target status")
    reason: str = Field(..., description="Why the status changes")


class FollowUpRequest(RequestModel):
    """Request model for recording an outreach attempt."""

    action_type: FollowUpAction = Field(..., description="Kind of outreach attempt")
    outcome: FollowUpOutcome = Field(..., description="Outcome of the attempt")
    notes: str = Field(..., description="Attempt notes")
    date: Optional[datetime] = Field(None, description="When the attempt happened, defaults to now")


class LinkageRequest(RequestModel):
    """Request model for confirming linkage to care."""

    facility: str = Field(..., description="Facility the client was linked to")
    facility_type: FacilityType = Field(..., description="Facility ownership type")
    confirmation_method: ConfirmationMethod = Field(..., description="How linkage was verified")
    notes: Optional[str] = Field(None, max_length=2000, description="Linkage notes")
    date: Optional[datetime] = Field(None, description="Linkage date, defaults to now")


class ScreeningResultRequest(RequestModel):
    """Screening result reported by the screening subsystem."""

    client_id: str = Field(..., min_length=1, description="Client registry identifier")
    visit_id: Optional[str] = Field(None, description="Visit where the screening happened")
    type: str = Field(..., description="Screening instrument, e.g. 'PrEP RAST'")
    score: Optional[str] = Field(None, description="Screening score")
    severity: Optional[str] = Field(None, description="Screening severity")
    notes: Optional[str] = Field(None, description="Screening notes")
    date: Optional[datetime] = Field(None, description="Screening timestamp")

    @field_validator('score', mode='before')
    @classmethod
    def coerce_score(cls, v):
        """Scores arrive as numbers or strings."""
        if v is None:
            return v
        return str(v)


class ReferralListQuery(BaseModel):
    """Query parameters for listing referrals."""

    status: Optional[ReferralStatus] = Field(None, description="Filter by status")
    risk_level: Optional[RiskLevel] = Field(None, description="Filter by risk level")
    service: Optional[ServiceType] = Field(None, description="Filter by service")
    priority: Optional[Priority] = Field(None, description="Filter by priority")
    location: Optional[str] = Field(None, description="Filter by client location")
    search: Optional[str] = Field(None, description="Search client name, client ID and referral ID")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class AuditTrailQuery(BaseModel):
    """Query parameters for a single referral's audit trail."""

    include_deleted: bool = Field(default=False, description="Include trails of deleted referrals")


class AuditQuery(BaseModel):
    """Query parameters for the cross-referral audit log."""

    user_id: Optional[str] = Field(None, description="Filter by acting user ID")
    action: Optional[AuditAction] = Field(None, description="Filter by audited action")
    referral_id: Optional[str] = Field(None, description="Filter by referral ID")
    start_date: Optional[datetime] = Field(None, description="Entries at or after this time")
    end_date: Optional[datetime] = Field(None, description="Entries at or before this time")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")
