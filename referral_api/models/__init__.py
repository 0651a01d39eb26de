# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the referral lifecycle.
"""

# Base models
from .base import BaseEntity, CamelModel, generate_object_id, utc_now, monotonic_utc_now

# Enumerations
from .enums import (
    ReferralStatus,
    TERMINAL_STATUSES,
    ServiceType,
    ReferralSource,
    RiskLevel,
    Priority,
    FollowUpAction,
    FollowUpOutcome,
    FacilityType,
    ConfirmationMethod,
    AuditAction
)

# Core entities
from .entities import (
    ClientSnapshot,
    RiskContext,
    FollowUp,
    Linkage,
    AuditLogEntry,
    Referral,
    ActorContext,
    SYSTEM_ACTOR
)

# Request models
from .requests import (
    ReferralPath,
    CreateReferralRequest,
    UpdateReferralRequest,
    StatusUpdateRequest,
    FollowUpRequest,
    LinkageRequest,
    ScreeningResultRequest,
    ReferralListQuery,
    AuditTrailQuery,
    AuditQuery
)

# Response models
from .responses import HalLink, ProblemResponse, ReferralProjection

__all__ = [
    "BaseEntity",
    "CamelModel",
    "generate_object_id",
    "utc_now",
    "monotonic_utc_now",
    "ReferralStatus",
    "TERMINAL_STATUSES",
    "ServiceType",
    "ReferralSource",
    "RiskLevel",
    "Priority",
    "FollowUpAction",
    "FollowUpOutcome",
    "FacilityType",
    "ConfirmationMethod",
    "AuditAction",
    "ClientSnapshot",
    "RiskContext",
    "FollowUp",
    "Linkage",
    "AuditLogEntry",
    "Referral",
    "ActorContext",
    "SYSTEM_ACTOR",
    "ReferralPath",
    "CreateReferralRequest",
    "UpdateReferralRequest",
    "StatusUpdateRequest",
    "FollowUpRequest",
    "LinkageRequest",
    "ScreeningResultRequest",
    "ReferralListQuery",
    "AuditTrailQuery",
    "AuditQuery",
    "HalLink",
    "ProblemResponse",
    "ReferralProjection",
]
