# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for querying referral audit trails with OpenTelemetry correlation.

Audit entries live inside their referral document and are written in the
same conditional write as the change they describe; this service only reads
them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Any
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..domain import authorization
from ..domain.errors import WorkflowError
from ..models.base import ensure_utc
from ..models.entities import AuditLogEntry, ActorContext
from ..models.enums import AuditAction

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class AuditRecord:
    """An audit entry together with the referral it belongs to."""
    referral_id: str
    entry: AuditLogEntry

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.model_dump(by_alias=True, mode="json")
        data["referralId"] = self.referral_id
        return data


class AuditFilters:
    """Filters for audit log queries."""

    def __init__(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        referral_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ):
        self.user_id = user_id
        self.action = action
        self.referral_id = referral_id
        self.start_date = ensure_utc(start_date)
        self.end_date = ensure_utc(end_date)

    def referral_query(self) -> Dict[str, Any]:
        """MongoDB match on the referral document, applied before unwinding."""
        query = {}

        if self.referral_id:
            query["_id"] = self.referral_id

        return query

    def entry_query(self) -> Dict[str, Any]:
        """MongoDB match on unwound ``auditLog`` entries."""
        query = {}

        if self.user_id:
            query["auditLog.userId"] = self.user_id

        if self.action:
            query["auditLog.action"] = self.action.value

        # Date range filter
        if self.start_date or self.end_date:
            date_filter = {}
            if self.start_date:
                date_filter["$gte"] = self.start_date
            if self.end_date:
                date_filter["$lte"] = self.end_date
            query["auditLog.timestamp"] = date_filter

        return query

    def matches(self, referral_id: str, entry: AuditLogEntry) -> bool:
        """Check a single entry against the filters."""
        if self.referral_id and referral_id != self.referral_id:
            return False
        if self.user_id and entry.user_id != self.user_id:
            return False
        if self.action and entry.action != self.action:
            return False
        if self.start_date and entry.timestamp < self.start_date:
            return False
        if self.end_date and entry.timestamp > self.end_date:
            return False
        return True

    def to_query_params(self) -> Dict[str, str]:
        params = {}
        if self.user_id:
            params["user_id"] = self.user_id
        if self.action:
            params["action"] = self.action.value
        if self.referral_id:
            params["referral_id"] = self.referral_id
        if self.start_date:
            params["start_date"] = self.start_date.isoformat()
        if self.end_date:
            params["end_date"] = self.end_date.isoformat()
        return params


class AuditService:
    """Service for cross-referral audit log queries."""

    def __init__(self, repository):
        """Initialize audit service with the referral repository."""
        self.repository = repository
        logger.info("Audit service initialized")

    def query_audit_logs(
        self,
        filters: AuditFilters,
        actor: ActorContext,
        page: int = 1,
        page_size: int = 20
    ):
        """
        Query audit entries across referrals, newest first.

        Deleted referrals are included: their trails outlive them.

        Args:
            filters: Audit log filters
            actor: Acting user, must hold the audit capability
            page: Page number (1-based)
            page_size: Number of items per page

        Returns:
            PaginationResult of AuditRecord items
        """
        with tracer.start_as_current_span("audit.query_logs") as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_AUDIT)

                span.set_attributes({
                    "audit.query.page": page,
                    "audit.query.page_size": page_size,
                    "audit.query.filters_count": len(filters.to_query_params()),
                    "user.id": actor.user_id
                })

                result = self.repository.query_audit_entries(filters, page, page_size)

                logger.info(
                    "Audit logs queried successfully",
                    extra={
                        "user_id": actor.user_id,
                        "page": page,
                        "page_size": page_size,
                        "total_results": result.total,
                        "returned_items": len(result.items)
                    }
                )

                return result

            except WorkflowError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.message))
                logger.warning(
                    "Audit log query rejected",
                    extra={
                        "user_id": actor.user_id,
                        "error_type": e.error_type,
                        "error": e.message
                    }
                )
                raise

