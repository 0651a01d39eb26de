# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-based access control.

This module contains pure functions mapping staff roles to referral
capabilities and to the roles a referral of a given service may be
assigned to.
"""

from typing import List, Dict, Set, Optional
from dataclasses import dataclass, field
from ..models.entities import ActorContext, SYSTEM_ROLE
from ..models.enums import ServiceType
from .errors import PermissionDenied


# Capabilities
REFERRAL_VIEW = "referral:view"
REFERRAL_CREATE = "referral:create"
REFERRAL_EDIT = "referral:edit"
REFERRAL_LINK = "referral:link"
REFERRAL_DELETE = "referral:delete"
REFERRAL_AUDIT = "referral:audit"

# Staff roles
SYSTEM_ADMIN = "System Admin"
ADMIN = "Admin"
VIEWER = "Viewer"
DATA_ENTRY = "Data Entry"
CLINICIAN = "Clinician"
ME_OFFICER = "M&E Officer"
PROGRAM_MANAGER = "Program Manager"
PROGRAM_COORDINATOR = "Program Coordinator"
OUTREACH_WORKER = "Outreach Worker"
HTS_COUNSELLOR = "HTS Counsellor"
PSYCHOLOGIST = "Psychologist"
COUNSELLOR = "Counsellor"
NURSE = "Nurse"
PARALEGAL = "Paralegal"
SOCIAL_WORKER = "Social Worker"
DATA_OFFICER = "Data Officer"

_FRONTLINE = {REFERRAL_VIEW, REFERRAL_CREATE, REFERRAL_EDIT}
_CLINICAL = _FRONTLINE | {REFERRAL_LINK}
_ADMINISTRATIVE = _CLINICAL | {REFERRAL_DELETE, REFERRAL_AUDIT}

ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    SYSTEM_ADMIN: set(_ADMINISTRATIVE),
    ADMIN: set(_ADMINISTRATIVE),
    PROGRAM_MANAGER: _CLINICAL | {REFERRAL_AUDIT},
    PROGRAM_COORDINATOR: set(_FRONTLINE),
    CLINICIAN: set(_CLINICAL),
    NURSE: set(_CLINICAL),
    HTS_COUNSELLOR: set(_FRONTLINE),
    PSYCHOLOGIST: set(_FRONTLINE),
    COUNSELLOR: set(_FRONTLINE),
    PARALEGAL: set(_FRONTLINE),
    SOCIAL_WORKER: set(_FRONTLINE),
    OUTREACH_WORKER: set(_FRONTLINE),
    DATA_OFFICER: set(_FRONTLINE),
    DATA_ENTRY: {REFERRAL_VIEW, REFERRAL_CREATE},
    ME_OFFICER: {REFERRAL_VIEW, REFERRAL_AUDIT},
    VIEWER: {REFERRAL_VIEW},
    SYSTEM_ROLE: {REFERRAL_VIEW, REFERRAL_CREATE, REFERRAL_EDIT},
}

# Roles any referral may be assigned to, regardless of service
_ALWAYS_ASSIGNABLE = [SYSTEM_ADMIN, ADMIN, PROGRAM_MANAGER, PROGRAM_COORDINATOR]

_SERVICE_ASSIGNABLE: Dict[ServiceType, List[str]] = {
    ServiceType.PREP: [NURSE, CLINICIAN, HTS_COUNSELLOR],
    ServiceType.ART: [NURSE, CLINICIAN],
    ServiceType.MENTAL_HEALTH: [COUNSELLOR, PSYCHOLOGIST],
    ServiceType.TB: [NURSE, CLINICIAN],
    ServiceType.GBV: [PARALEGAL, SOCIAL_WORKER, COUNSELLOR, PSYCHOLOGIST],
    ServiceType.LEGAL: [PARALEGAL],
}

_DEFAULT_ASSIGNABLE = [
    SOCIAL_WORKER, CLINICIAN, NURSE, COUNSELLOR, PARALEGAL, PSYCHOLOGIST, OUTREACH_WORKER
]


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = field(default_factory=list)


def permissions_for_role(role: str) -> List[str]:
    """
    Get the capability strings granted to a role.

    Unknown roles get no capabilities.
    """
    return sorted(ROLE_PERMISSIONS.get(role, set()))


def has_capability(role: str, capability: str) -> bool:
    return capability in ROLE_PERMISSIONS.get(role, set())


def can_view(role: str) -> bool:
    return has_capability(role, REFERRAL_VIEW)


def can_create(role: str) -> bool:
    return has_capability(role, REFERRAL_CREATE)


def can_edit(role: str) -> bool:
    """Check if a role may change a referral's details, status or follow-ups."""
    return has_capability(role, REFERRAL_EDIT)


def can_link(role: str) -> bool:
    """Check if a role may confirm linkage to care."""
    return has_capability(role, REFERRAL_LINK)


def can_delete(role: str) -> bool:
    """Check if a role may delete referrals (admin-level roles only)."""
    return has_capability(role, REFERRAL_DELETE)


def can_audit(role: str) -> bool:
    return has_capability(role, REFERRAL_AUDIT)


def assignable_roles(service: ServiceType) -> List[str]:
    """
    Get the staff roles a referral for the given service may be assigned to.

    Args:
        service: Service the client is referred to

    Returns:
        Ordered list of role names, without duplicates
    """
    specific = _SERVICE_ASSIGNABLE.get(service, _DEFAULT_ASSIGNABLE)
    roles = list(_ALWAYS_ASSIGNABLE)
    for role in specific:
        if role not in roles:
            roles.append(role)
    return roles


def check_capability(actor: ActorContext, capability: str) -> AuthorizationResult:
    """
    Check if the acting user's role grants a capability.

    Args:
        actor: Acting user
        capability: Capability string to check

    Returns:
        AuthorizationResult indicating if the capability is granted
    """
    if has_capability(actor.role, capability):
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Role '{actor.role}' lacks required permission: {capability}",
        missing_permissions=[capability]
    )


def require_capability(actor: ActorContext, capability: str) -> None:
    """Raise PermissionDenied unless the actor holds the capability."""
    result = check_capability(actor, capability)
    if not result.allowed:
        raise PermissionDenied(result.reason, result.missing_permissions)
