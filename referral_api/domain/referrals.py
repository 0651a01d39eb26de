# SPDX-License-Identifier: Apache-2.0

"""
Referral domain logic for lifecycle management.

This module contains pure functions for referral creation, status
transitions, outreach journaling, linkage verification and audit trail
construction. Every mutating function takes a referral and returns a new,
fully validated referral; the input is never modified, so a rejected
operation leaves no trace.
"""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from ..models.entities import (
    Referral, ClientSnapshot, RiskContext, FollowUp, Linkage,
    AuditLogEntry, ActorContext, SYSTEM_ACTOR
)
from ..models.enums import (
    ReferralStatus, ServiceType, ReferralSource, RiskLevel, Priority,
    FollowUpOutcome, AuditAction
)
from ..models.requests import (
    CreateReferralRequest, FollowUpRequest, LinkageRequest, ScreeningResultRequest
)
from ..models.responses import ReferralProjection
from ..models.base import utc_now, monotonic_utc_now, ensure_utc
from . import authorization
from .errors import ValidationError, InvalidTransition, AlreadyLinked


SCREENING_TRIGGER_REASON = "High Risk PrEP RAST Result"
SCREENING_TYPE = "PrEP RAST"
AUTO_CONTACT_DETAILS = "Automatic transition following successful contact"

# Fields that update_details may change
EDITABLE_FIELDS = ("trigger_reason", "assigned_to", "notes")

# Linked to Care is reachable only through confirm_linkage
VALID_TRANSITIONS: Dict[ReferralStatus, List[ReferralStatus]] = {
    ReferralStatus.PENDING: [
        ReferralStatus.CONTACTED,
        ReferralStatus.FAILED,
        ReferralStatus.REFERRED_ELSEWHERE,
    ],
    ReferralStatus.CONTACTED: [
        ReferralStatus.FAILED,
        ReferralStatus.REFERRED_ELSEWHERE,
    ],
    ReferralStatus.LINKED_TO_CARE: [],  # Terminal state
    ReferralStatus.FAILED: [],  # Terminal state
    ReferralStatus.REFERRED_ELSEWHERE: [],  # Terminal state
}


@dataclass
class ReferralFilters:
    """Filters for referral queries."""
    status: Optional[ReferralStatus] = None
    risk_level: Optional[RiskLevel] = None
    service: Optional[ServiceType] = None
    priority: Optional[Priority] = None
    location: Optional[str] = None
    search_term: Optional[str] = None

    def to_query_params(self) -> Dict[str, str]:
        """Non-empty filters as query string parameters."""
        params = {}
        for key in ("status", "risk_level", "service", "priority"):
            value = getattr(self, key)
            if value is not None:
                params[key] = value.value
        if self.location:
            params["location"] = self.location
        if self.search_term:
            params["search"] = self.search_term
        return params


@dataclass
class ValidationResult:
    """Result of referral validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str] = field(default_factory=list)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _field_errors(errors: List[str], field_name: str) -> List[Dict[str, Any]]:
    return [{"field": field_name, "message": message, "type": "value_error"} for message in errors]


def _plain(value: Any) -> Any:
    """Audit diffs hold JSON-friendly values."""
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def calculate_changes(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Calculate field-level changes for the audit trail.

    Args:
        before: Field values before the change
        after: Field values after the change

    Returns:
        Mapping of camelCase field name to ``{"from": old, "to": new}``
    """
    changes = {}

    for key in sorted(set(before.keys()) | set(after.keys())):
        old_value = _plain(before.get(key))
        new_value = _plain(after.get(key))

        if old_value != new_value:
            changes[_camel(key)] = {"from": old_value, "to": new_value}

    return changes


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def build_audit_entry(
    action: AuditAction,
    details: str,
    actor: ActorContext,
    changes: Optional[Dict[str, Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
    timestamp: Optional[datetime] = None
) -> AuditLogEntry:
    """Build an audit entry attributed to the acting user."""
    return AuditLogEntry(
        action=action,
        details=details,
        changes=changes or None,
        user=actor.name,
        user_id=actor.user_id,
        timestamp=timestamp or utc_now(),
        trace_id=trace_id
    )


def _evolve(referral: Referral, **changes: Any) -> Referral:
    """Return a validated copy of the referral with the given fields replaced."""
    data = referral.model_dump()
    data.update(changes)
    return Referral.model_validate(data)


def _append_audit(referral: Referral, *entries: AuditLogEntry) -> List[AuditLogEntry]:
    return list(referral.audit_log) + list(entries)


# Creation

def validate_create_request(request: CreateReferralRequest) -> ValidationResult:
    """
    Validate a referral creation request.

    Args:
        request: Parsed creation request

    Returns:
        ValidationResult with validation status and errors
    """
    errors = []
    warnings = []

    if _is_blank(request.client_id):
        errors.append("Client ID is required")

    if _is_blank(request.trigger_reason):
        errors.append("Trigger reason is required")

    if request.risk_level == RiskLevel.HIGH and request.priority == Priority.ROUTINE:
        warnings.append("High-risk referral created with routine priority")

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings
    )


def validate_assignment(
    assigned_to: Optional[str],
    assignee_role: Optional[str],
    service: ServiceType
) -> ValidationResult:
    """
    Validate that a referral can be assigned to the named staff member.

    Args:
        assigned_to: Staff member name, if any
        assignee_role: Role of that staff member, None if unknown
        service: Service the referral is for

    Returns:
        ValidationResult with validation status and errors
    """
    errors = []

    if assigned_to is None:
        return ValidationResult(is_valid=True, errors=[])

    if not assigned_to.strip():
        errors.append("Assignee cannot be blank")
    elif assignee_role is None:
        errors.append(f"Unknown staff member: {assigned_to}")
    elif assignee_role not in authorization.assignable_roles(service):
        errors.append(
            f"Staff with role '{assignee_role}' cannot be assigned {service.value} referrals"
        )

    return ValidationResult(is_valid=len(errors) == 0, errors=errors)


def snapshot_client(
    client_id: str,
    registry_record: Optional[Dict[str, Any]],
    fallback: Optional[Dict[str, Optional[str]]] = None
) -> ClientSnapshot:
    """
    Capture the client's registry fields at referral time.

    Fields missing from the registry record are taken from the fallback
    values supplied with the request.
    """
    record = registry_record or {}
    fallback = fallback or {}
    return ClientSnapshot(
        client_id=client_id.strip(),
        name=record.get("name") or fallback.get("name"),
        phone=record.get("phone") or fallback.get("phone"),
        location=record.get("location") or fallback.get("location"),
        program=record.get("program") or fallback.get("program"),
    )


def create_referral(
    request: CreateReferralRequest,
    registry_record: Optional[Dict[str, Any]],
    actor: ActorContext,
    assignee_role: Optional[str] = None,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Create a Pending referral with its creation audit entry.

    Args:
        request: Parsed creation request
        registry_record: Client registry fields, None if not registered
        actor: Acting user
        assignee_role: Role of ``request.assigned_to``, None if unknown
        trace_id: Trace correlation identifier

    Returns:
        The new referral

    Raises:
        PermissionDenied: actor cannot create referrals
        ValidationError: missing client ID, trigger reason or invalid assignee
    """
    authorization.require_capability(actor, authorization.REFERRAL_CREATE)

    validation = validate_create_request(request)
    if not validation.is_valid:
        raise ValidationError("Referral validation failed", _field_errors(validation.errors, "body"))

    assignment = validate_assignment(request.assigned_to, assignee_role, request.service)
    if not assignment.is_valid:
        raise ValidationError(assignment.errors[0], _field_errors(assignment.errors, "assignedTo"))

    created = build_audit_entry(
        AuditAction.CREATED,
        f"Referral created for {request.service.value}: {request.trigger_reason.strip()}",
        actor,
        trace_id=trace_id
    )

    client = snapshot_client(request.client_id, registry_record, {
        "name": request.client_name,
        "phone": request.phone,
        "location": request.location,
        "program": request.program,
    })

    return Referral(
        client=client,
        service=request.service,
        source=request.source,
        trigger_reason=request.trigger_reason,
        risk_level=request.risk_level,
        priority=request.priority,
        assigned_to=request.assigned_to,
        notes=request.notes,
        visit_id=request.visit_id,
        status=ReferralStatus.PENDING,
        audit_log=[created],
        created_by=actor.user_id,
        updated_by=actor.user_id,
        created_at=monotonic_utc_now()
    )


def is_high_risk_screening(screening: ScreeningResultRequest) -> bool:
    """
    Check whether a screening result warrants an automatic referral.

    Only PrEP RAST results qualify, when severity is high or the notes
    declare the client eligible.
    """
    if screening.type.strip().lower() != SCREENING_TYPE.lower():
        return False

    if screening.severity and screening.severity.strip().lower() == "high":
        return True

    return bool(screening.notes and "eligible" in screening.notes.lower())


def create_automatic_referral(
    screening: ScreeningResultRequest,
    registry_record: Optional[Dict[str, Any]],
    trace_id: Optional[str] = None
) -> Referral:
    """
    Create an urgent PrEP referral from a high-risk screening result.

    The referral and its first audit entry are attributed to the system.

    Raises:
        ValidationError: screening does not qualify for an automatic referral
    """
    if not is_high_risk_screening(screening):
        raise ValidationError("Screening result does not qualify for an automatic referral")

    screened_at = ensure_utc(screening.date) or utc_now()
    created = build_audit_entry(
        AuditAction.CREATED_AUTOMATIC,
        f"Automatically generated from High Risk {SCREENING_TYPE}",
        SYSTEM_ACTOR,
        trace_id=trace_id
    )

    return Referral(
        client=snapshot_client(screening.client_id, registry_record),
        service=ServiceType.PREP,
        source=ReferralSource.CLINICAL,
        trigger_reason=SCREENING_TRIGGER_REASON,
        risk_level=RiskLevel.HIGH,
        priority=Priority.URGENT,
        visit_id=screening.visit_id,
        risk_context=RiskContext(
            source=SCREENING_TYPE,
            score=screening.score or "N/A",
            severity=RiskLevel.HIGH.value,
            date=screened_at
        ),
        status=ReferralStatus.PENDING,
        audit_log=[created],
        created_by=SYSTEM_ACTOR.user_id,
        updated_by=SYSTEM_ACTOR.user_id,
        created_at=monotonic_utc_now()
    )


# Details

def update_details(
    referral: Referral,
    updates: Dict[str, Any],
    actor: ActorContext,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Edit a referral's free-text fields.

    Args:
        referral: Current referral
        updates: Field name to new value, limited to EDITABLE_FIELDS
        actor: Acting user
        trace_id: Trace correlation identifier

    Returns:
        Updated referral with an ``updated`` audit entry carrying the diff

    Raises:
        PermissionDenied: actor cannot edit referrals
        InvalidTransition: referral is already linked to care
        ValidationError: unknown field, blank trigger reason or no change
    """
    authorization.require_capability(actor, authorization.REFERRAL_EDIT)

    if referral.is_linked():
        raise InvalidTransition("Referral is linked to care and can no longer be edited")

    unknown = [key for key in updates if key not in EDITABLE_FIELDS]
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    if "trigger_reason" in updates and _is_blank(updates["trigger_reason"]):
        raise ValidationError(
            "Trigger reason is required",
            _field_errors(["Trigger reason cannot be empty"], "triggerReason")
        )

    before = {key: getattr(referral, key) for key in updates}
    after = {
        key: value.strip() if isinstance(value, str) else value
        for key, value in updates.items()
    }
    changes = calculate_changes(before, after)
    if not changes:
        raise ValidationError("Update does not change any field")

    entry = build_audit_entry(
        AuditAction.UPDATED,
        f"Referral details updated: {', '.join(changes.keys())}",
        actor,
        changes=changes,
        trace_id=trace_id
    )

    return _evolve(
        referral,
        **after,
        audit_log=_append_audit(referral, entry),
        updated_at=entry.timestamp,
        updated_by=actor.user_id
    )


# Status

def validate_status_transition(
    current_status: ReferralStatus,
    new_status: ReferralStatus
) -> ValidationResult:
    """
    Validate a manual referral status transition.

    Args:
        current_status: Current referral status
        new_status: Desired new status

    Returns:
        ValidationResult with validation status and errors
    """
    errors = []

    if new_status == ReferralStatus.LINKED_TO_CARE:
        errors.append("Linked to Care can only be set by confirming linkage")
    elif current_status.is_terminal():
        errors.append(f"Referral is {current_status.value} and cannot change status")
    elif new_status == current_status:
        errors.append(f"Referral is already {current_status.value}")
    elif new_status not in VALID_TRANSITIONS.get(current_status, []):
        errors.append(
            f"Invalid status transition from {current_status.value} to {new_status.value}"
        )

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors
    )


def _status_entry(
    referral: Referral,
    new_status: ReferralStatus,
    details: str,
    actor: ActorContext,
    trace_id: Optional[str]
) -> AuditLogEntry:
    return build_audit_entry(
        AuditAction.STATUS_CHANGED,
        details,
        actor,
        changes={"status": {"from": referral.status.value, "to": new_status.value}},
        trace_id=trace_id
    )


def change_status(
    referral: Referral,
    new_status: ReferralStatus,
    reason: str,
    actor: ActorContext,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Apply a manual status transition.

    Raises:
        PermissionDenied: actor cannot edit referrals
        InvalidTransition: transition not allowed from the current status
        ValidationError: blank reason
    """
    authorization.require_capability(actor, authorization.REFERRAL_EDIT)

    validation = validate_status_transition(referral.status, new_status)
    if not validation.is_valid:
        raise InvalidTransition(validation.errors[0])

    if _is_blank(reason):
        raise ValidationError(
            "A reason is required to change status",
            _field_errors(["Reason cannot be empty"], "reason")
        )

    entry = _status_entry(
        referral,
        new_status,
        f"Status changed from {referral.status.value} to {new_status.value}: {reason.strip()}",
        actor,
        trace_id
    )

    return _evolve(
        referral,
        status=new_status,
        audit_log=_append_audit(referral, entry),
        updated_at=entry.timestamp,
        updated_by=actor.user_id
    )


# Follow-up journal

def add_follow_up(
    referral: Referral,
    request: FollowUpRequest,
    actor: ActorContext,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Append an outreach attempt to the follow-up journal.

    A successful attempt on a Pending referral also moves it to Contacted,
    recorded as a separate system-attributed audit entry.

    Raises:
        PermissionDenied: actor cannot edit referrals
        InvalidTransition: referral is in a terminal status
        ValidationError: blank notes
    """
    authorization.require_capability(actor, authorization.REFERRAL_EDIT)

    if not referral.can_add_follow_up():
        raise InvalidTransition(
            f"Referral is {referral.status.value}; follow-ups can no longer be recorded"
        )

    if _is_blank(request.notes):
        raise ValidationError(
            "Follow-up notes are required",
            _field_errors(["Notes cannot be empty"], "notes")
        )

    follow_up = FollowUp(
        action_type=request.action_type,
        outcome=request.outcome,
        notes=request.notes,
        date=ensure_utc(request.date) or utc_now(),
        recorded_by=actor.name,
        recorded_by_id=actor.user_id
    )
    entries = [build_audit_entry(
        AuditAction.FOLLOW_UP_ADDED,
        f"{follow_up.action_type.value} follow-up recorded: {follow_up.outcome.value}",
        actor,
        trace_id=trace_id
    )]

    status = referral.status
    if status == ReferralStatus.PENDING and follow_up.outcome == FollowUpOutcome.SUCCESSFUL:
        status = ReferralStatus.CONTACTED
        entries.append(_status_entry(referral, status, AUTO_CONTACT_DETAILS, SYSTEM_ACTOR, trace_id))

    return _evolve(
        referral,
        status=status,
        follow_ups=list(referral.follow_ups) + [follow_up],
        audit_log=_append_audit(referral, *entries),
        updated_at=entries[-1].timestamp,
        updated_by=actor.user_id
    )


# Linkage verifier

def confirm_linkage(
    referral: Referral,
    request: LinkageRequest,
    actor: ActorContext,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Record the verified linkage to care and close the referral.

    The linked state is checked before the payload, so any repeat attempt
    on a linked referral fails with AlreadyLinked.

    Raises:
        PermissionDenied: actor cannot edit referrals or confirm linkage
        AlreadyLinked: linkage was already confirmed
        InvalidTransition: referral is Failed or Referred Elsewhere
        ValidationError: blank facility
    """
    authorization.require_capability(actor, authorization.REFERRAL_EDIT)
    authorization.require_capability(actor, authorization.REFERRAL_LINK)

    if referral.is_linked():
        raise AlreadyLinked("Referral is already linked to care")

    if not referral.can_link():
        raise InvalidTransition(
            f"Referral is {referral.status.value} and cannot be linked to care"
        )

    if _is_blank(request.facility):
        raise ValidationError(
            "Facility is required to confirm linkage",
            _field_errors(["Facility cannot be empty"], "facility")
        )

    linkage = Linkage(
        facility=request.facility,
        facility_type=request.facility_type,
        confirmation_method=request.confirmation_method,
        notes=request.notes,
        date=ensure_utc(request.date) or utc_now(),
        recorded_by=actor.name,
        recorded_by_id=actor.user_id
    )
    entry = build_audit_entry(
        AuditAction.LINKED,
        f"Linked to care at {linkage.facility} ({linkage.confirmation_method.value})",
        actor,
        changes={"status": {"from": referral.status.value, "to": ReferralStatus.LINKED_TO_CARE.value}},
        trace_id=trace_id
    )

    return _evolve(
        referral,
        status=ReferralStatus.LINKED_TO_CARE,
        linkage=linkage,
        audit_log=_append_audit(referral, entry),
        updated_at=entry.timestamp,
        updated_by=actor.user_id
    )


# Deletion

def mark_deleted(
    referral: Referral,
    actor: ActorContext,
    trace_id: Optional[str] = None
) -> Referral:
    """
    Soft delete a referral, keeping it as a tombstone with its audit trail.

    Raises:
        PermissionDenied: actor is not admin-level
    """
    authorization.require_capability(actor, authorization.REFERRAL_DELETE)

    entry = build_audit_entry(
        AuditAction.DELETED,
        f"Referral deleted by {actor.name}",
        actor,
        trace_id=trace_id
    )

    return _evolve(
        referral,
        audit_log=_append_audit(referral, entry),
        deleted_at=entry.timestamp,
        deleted_by=actor.user_id,
        updated_at=entry.timestamp,
        updated_by=actor.user_id
    )


# Queries

def matches_filters(referral: Referral, filters: ReferralFilters) -> bool:
    """Check a referral against list filters."""
    if filters.status is not None and referral.status != filters.status:
        return False

    if filters.risk_level is not None and referral.risk_level != filters.risk_level:
        return False

    if filters.service is not None and referral.service != filters.service:
        return False

    if filters.priority is not None and referral.priority != filters.priority:
        return False

    if filters.location and (referral.client.location or "").lower() != filters.location.lower():
        return False

    if filters.search_term and filters.search_term.strip():
        search_lower = filters.search_term.strip().lower()
        haystacks = [referral.client.name or "", referral.client.client_id, referral.id]
        if not any(search_lower in value.lower() for value in haystacks):
            return False

    return True


def filter_referrals(
    referrals: List[Referral],
    filters: ReferralFilters
) -> List[Referral]:
    """
    Filter live referrals and order them newest first.

    Args:
        referrals: Referrals to filter
        filters: Filter criteria

    Returns:
        Matching, non-deleted referrals sorted by creation time descending
    """
    filtered = [
        referral for referral in referrals
        if not referral.is_deleted() and matches_filters(referral, filters)
    ]
    return sorted(filtered, key=lambda referral: referral.created_at, reverse=True)


def project_for_reporting(referral: Referral) -> ReferralProjection:
    """Reduce a referral to the fields reporting consumers read."""
    return ReferralProjection(
        id=referral.id,
        status=referral.status,
        risk_level=referral.risk_level,
        service=referral.service,
        priority=referral.priority,
        location=referral.client.location,
        linkage_date=referral.linkage.date if referral.linkage else None,
        created_at=referral.created_at
    )
