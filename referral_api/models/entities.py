# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the referral lifecycle.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import CamelModel, BaseEntity, generate_object_id, utc_now, ensure_utc
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


SYSTEM_USER = "system"
SYSTEM_ROLE = "System"


class ClientSnapshot(CamelModel):
    """
    Point-in-time copy of the client's registry fields.

    Captured when the referral is created and never re-synced, so the
    referral shows who the client was at referral time.
    """

    client_id: str = Field(..., min_length=1, description="Client registry identifier")
    name: Optional[str] = Field(None, description="Client name at referral time")
    phone: Optional[str] = Field(None, description="Client phone at referral time")
    location: Optional[str] = Field(None, description="Client location at referral time")
    program: Optional[str] = Field(None, description="Client program at referral time")
    captured_at: datetime = Field(default_factory=utc_now, description="Snapshot timestamp")

    @field_validator('captured_at')
    @classmethod
    def normalise_captured_at(cls, v):
        return ensure_utc(v)


class RiskContext(CamelModel):
    """Screening context attached to automatically generated referrals."""

    source: str = Field(..., description="Screening instrument")
    score: Optional[str] = Field(None, description="Screening score")
    severity: str = Field(..., description="Screening severity")
    date: datetime = Field(default_factory=utc_now, description="Screening timestamp")


class FollowUp(CamelModel):
    """Immutable record of one outreach attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_object_id, description="Follow-up identifier")
    action_type: FollowUpAction = Field(..., description="Kind of outreach attempt")
    outcome: FollowUpOutcome = Field(..., description="Outcome of the attempt")
    notes: str = Field(..., description="Attempt notes")
    date: datetime = Field(default_factory=utc_now, description="When the attempt happened")
    recorded_by: str = Field(..., description="Name of the user who recorded it")
    recorded_by_id: Optional[str] = Field(None, description="ID of the user who recorded it")
    recorded_at: datetime = Field(default_factory=utc_now, description="When it was recorded")

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v):
        if not v.strip():
            raise ValueError('Follow-up notes cannot be empty')
        return v.strip()

    @field_validator('date', 'recorded_at')
    @classmethod
    def normalise_dates(cls, v):
        return ensure_utc(v)


class Linkage(CamelModel):
    """Immutable confirmation that the client reached care."""

    model_config = ConfigDict(frozen=True)

    facility: str = Field(..., description="Facility the client was linked to")
    facility_type: FacilityType = Field(..., description="Facility ownership type")
    confirmation_method: ConfirmationMethod = Field(..., description="How linkage was verified")
    notes: Optional[str] = Field(None, description="Linkage notes")
    date: datetime = Field(default_factory=utc_now, description="Linkage date")
    recorded_by: str = Field(..., description="Name of the user who confirmed linkage")
    recorded_by_id: Optional[str] = Field(None, description="ID of the user who confirmed linkage")
    recorded_at: datetime = Field(default_factory=utc_now, description="When it was recorded")

    @field_validator('facility')
    @classmethod
    def validate_facility(cls, v):
        if not v.strip():
            raise ValueError('Facility cannot be empty')
        return v.strip()

    @field_validator('date', 'recorded_at')
    @classmethod
    def normalise_dates(cls, v):
        return ensure_utc(v)


class AuditLogEntry(CamelModel):
    """Append-only audit entry embedded in a referral."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_object_id, description="Entry identifier")
    action: AuditAction = Field(..., description="Audited action")
    details: str = Field(..., description="Human-readable description")
    changes: Optional[Dict[str, Dict[str, Any]]] = Field(None, description="Per-field before/after diff")
    user: str = Field(..., description="Display name of the acting user")
    user_id: str = Field(..., description="ID of the acting user")
    timestamp: datetime = Field(default_factory=utc_now, description="When the action happened")
    trace_id: Optional[str] = Field(None, description="Trace correlation identifier")

    @field_validator('timestamp')
    @classmethod
    def normalise_timestamp(cls, v):
        return ensure_utc(v)


class Referral(BaseEntity):
    """Referral aggregate: owns its follow-ups, linkage and audit log."""

    client: ClientSnapshot = Field(..., description="Client snapshot")
    service: ServiceType = Field(..., description="Service referred to")
    source: ReferralSource = Field(..., description="Referral source")
    trigger_reason: str = Field(..., description="Why the client was referred")
    risk_level: RiskLevel = Field(..., description="Assessed risk level")
    priority: Priority = Field(default=Priority.ROUTINE, description="Referral priority")
    assigned_to: Optional[str] = Field(None, description="Staff member responsible")
    notes: Optional[str] = Field(None, description="Free-text notes")
    visit_id: Optional[str] = Field(None, description="Originating visit")
    risk_context: Optional[RiskContext] = Field(None, description="Screening context")
    status: ReferralStatus = Field(default=ReferralStatus.PENDING, description="Lifecycle status")
    follow_ups: List[FollowUp] = Field(default_factory=list, description="Outreach attempts in order")
    linkage: Optional[Linkage] = Field(None, description="Linkage to care, once confirmed")
    audit_log: List[AuditLogEntry] = Field(default_factory=list, description="Audit trail in order")

    @field_validator('trigger_reason')
    @classmethod
    def validate_trigger_reason(cls, v):
        if not v.strip():
            raise ValueError('Trigger reason cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_lifecycle_invariants(self):
        """Validate status-dependent fields."""
        if self.status == ReferralStatus.LINKED_TO_CARE and self.linkage is None:
            raise ValueError('Linkage is required when status is Linked to Care')

        if self.linkage is not None and self.status != ReferralStatus.LINKED_TO_CARE:
            raise ValueError('Linkage can only be present when status is Linked to Care')

        if not self.audit_log:
            raise ValueError('Referral must carry at least its creation audit entry')

        return self

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def is_linked(self) -> bool:
        return self.status == ReferralStatus.LINKED_TO_CARE

    def can_add_follow_up(self) -> bool:
        """Check if outreach attempts can still be recorded."""
        return not self.is_terminal() and not self.is_deleted()

    def can_link(self) -> bool:
        """Check if linkage to care can still be confirmed."""
        return not self.is_terminal() and not self.is_deleted()


class ActorContext(BaseModel):
    """Acting user for a request, as asserted by the gateway."""

    user_id: str = Field(..., description="Acting user ID")
    name: str = Field(..., description="Acting user display name")
    role: str = Field(..., description="Acting user role")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")

    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE


SYSTEM_ACTOR = ActorContext(user_id=SYSTEM_USER, name=SYSTEM_USER, role=SYSTEM_ROLE)
