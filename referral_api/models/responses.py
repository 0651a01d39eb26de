# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints with HAL support.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from .base import CamelModel
from .enums import ReferralStatus, RiskLevel, ServiceType, Priority


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class ProblemResponse(BaseModel):
    """RFC 7807 problem document."""

    type: str = Field(..., description="Problem type URI")
    title: str = Field(..., description="Short summary")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: str = Field(..., description="Request path")
    errors: Optional[List[Dict[str, Any]]] = Field(None, description="Field-level validation errors")


class ReferralProjection(CamelModel):
    """Read-only reporting row for KPI consumers."""

    id: str = Field(..., description="Referral ID")
    status: ReferralStatus = Field(..., description="Lifecycle status")
    risk_level: RiskLevel = Field(..., description="Assessed risk level")
    service: ServiceType = Field(..., description="Service referred to")
    priority: Priority = Field(..., description="Referral priority")
    location: Optional[str] = Field(None, description="Client location at referral time")
    linkage_date: Optional[datetime] = Field(None, description="Linkage date, if linked")
    created_at: datetime = Field(..., description="Creation timestamp")
