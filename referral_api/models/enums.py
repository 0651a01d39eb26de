# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the referral domain.
"""

from enum import Enum


class ReferralStatus(str, Enum):
    """Referral lifecycle status."""
    PENDING = "Pending"
    CONTACTED = "Contacted"
    LINKED_TO_CARE = "Linked to Care"
    FAILED = "Failed"
    REFERRED_ELSEWHERE = "Referred Elsewhere"

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ReferralStatus.LINKED_TO_CARE,
    ReferralStatus.FAILED,
    ReferralStatus.REFERRED_ELSEWHERE,
})


class ServiceType(str, Enum):
    """Service a client is referred to."""
    PREP = "PrEP"
    ART = "ART"
    MENTAL_HEALTH = "Mental Health"
    TB = "TB"
    GBV = "GBV"
    LEGAL = "Legal"
    OTHER = "Other"


class ReferralSource(str, Enum):
    """Where the referral originated."""
    CLINICAL = "Clinical"
    MENTAL_HEALTH = "Mental Health"
    OUTREACH = "Outreach"
    SELF = "Self"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Priority(str, Enum):
    ROUTINE = "Routine"
    URGENT = "Urgent"
    EMERGENCY = "Emergency"


class FollowUpAction(str, Enum):
    """Kind of outreach attempt."""
    CALL = "Call"
    HOME_VISIT = "Home Visit"
    ESCORT = "Escort"
    FACILITY_MEETING = "Facility Meeting"


class FollowUpOutcome(str, Enum):
    """Outcome of an outreach attempt."""
    SUCCESSFUL = "Successful"
    UNSUCCESSFUL = "Unsuccessful"
    CLIENT_REFUSED = "Client Refused"
    RESCHEDULED = "Rescheduled"


class FacilityType(str, Enum):
    PUBLIC = "Public"
    PRIVATE = "Private"
    NGO = "NGO"
    COMMUNITY = "Community"


class ConfirmationMethod(str, Enum):
    """How a linkage to care was verified."""
    PROVIDER_CONFIRMATION = "Provider Confirmation"
    REFERRAL_SLIP = "Referral Slip"
    CLIENT_REPORT = "Client Report"


class AuditAction(str, Enum):
    """Actions recorded in a referral's audit log."""
    CREATED = "created"
    CREATED_AUTOMATIC = "created_automatic"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    FOLLOW_UP_ADDED = "follow_up_added"
    LINKED = "linked"
    DELETED = "deleted"
