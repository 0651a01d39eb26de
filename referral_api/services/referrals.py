# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Referral workflow service.

Orchestrates the pure domain functions against the referral store: every
mutation loads the latest committed referral, applies one domain operation
and writes the result back conditioned on the version it read. A lost race
is retried against the fresh state, so each operation is always validated
against what is actually stored.
"""

import logging
from contextlib import nullcontext
from typing import Any, Callable, Dict, List, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .mongodb import PaginationResult
from .locks import ReferralLockService
from ..domain import referrals as referral_domain
from ..domain import authorization
from ..domain.errors import WorkflowError, NotFound, ConcurrentModificationError
from ..models.entities import Referral, ActorContext, AuditLogEntry
from ..models.enums import ReferralStatus
from ..models.requests import (
    CreateReferralRequest, FollowUpRequest, LinkageRequest, ScreeningResultRequest
)
from ..models.responses import ReferralProjection

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_WRITE_RETRIES = 3


def _current_trace_id() -> Optional[str]:
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format(span_context.trace_id, "032x")
    return None


class ReferralService:
    """Referral directory and state machine entry points."""

    def __init__(
        self,
        repository,
        client_registry,
        staff_directory,
        lock_service: Optional[ReferralLockService] = None,
        max_retries: int = DEFAULT_WRITE_RETRIES
    ):
        self.repository = repository
        self.client_registry = client_registry
        self.staff_directory = staff_directory
        self.lock_service = lock_service
        self.max_retries = max(1, max_retries)
        logger.info("Referral service initialized")

    # Internal helpers

    def _load(self, referral_id: str, include_deleted: bool = False) -> Referral:
        referral = self.repository.get(referral_id, include_deleted=include_deleted)
        if referral is None:
            raise NotFound(f"Referral {referral_id} not found")
        return referral

    def _lock(self, referral_id: str):
        if self.lock_service is None:
            return nullcontext(False)
        return self.lock_service.hold(referral_id)

    def _mutate(
        self,
        operation: str,
        referral_id: str,
        actor: ActorContext,
        apply: Callable[[Referral, Optional[str]], Referral]
    ) -> Referral:
        """
        Load, apply and conditionally write one referral mutation.

        Args:
            operation: Operation name for spans and logs
            referral_id: Referral to mutate
            actor: Acting user
            apply: Domain function taking the current referral and trace ID

        Returns:
            The stored referral
        """
        with tracer.start_as_current_span(
            f"referral.{operation}",
            attributes={
                "referral.id": referral_id,
                "user.id": actor.user_id,
                "user.role": actor.role,
                "operation": operation
            }
        ) as span:
            try:
                with self._lock(referral_id) as locked:
                    span.set_attribute("referral.locked", bool(locked))
                    trace_id = _current_trace_id()

                    for attempt in range(1, self.max_retries + 1):
                        current = self._load(referral_id)
                        updated = apply(current, trace_id)
                        try:
                            stored = self.repository.replace(updated, current.version)
                        except ConcurrentModificationError:
                            logger.warning(
                                "Referral write conflict, retrying",
                                extra={
                                    "referral_id": referral_id,
                                    "operation": operation,
                                    "attempt": attempt,
                                    "max_retries": self.max_retries
                                }
                            )
                            span.add_event("write_conflict", {"attempt": attempt})
                            continue

                        added = len(stored.audit_log) - len(current.audit_log)
                        span.set_attributes({
                            "referral.status": stored.status.value,
                            "referral.version": stored.version,
                            "referral.audit_entries_added": added,
                            "referral.attempts": attempt
                        })
                        span.set_status(Status(StatusCode.OK))
                        logger.info(
                            f"Referral {operation} succeeded",
                            extra={
                                "referral_id": referral_id,
                                "operation": operation,
                                "user_id": actor.user_id,
                                "status": stored.status.value,
                                "version": stored.version,
                                "audit_entries_added": added,
                                "audit_category": "business_action"
                            }
                        )
                        return stored

                    raise ConcurrentModificationError(
                        f"Referral {referral_id} kept changing; {operation} abandoned after "
                        f"{self.max_retries} attempts"
                    )

            except WorkflowError as e:
                self._record_failure(span, e, operation, referral_id, actor)
                raise

    def _record_failure(self, span, error: WorkflowError, operation: str,
                        referral_id: Optional[str], actor: ActorContext) -> None:
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, error.message))
        logger.warning(
            f"Referral {operation} rejected",
            extra={
                "referral_id": referral_id,
                "operation": operation,
                "user_id": actor.user_id,
                "role": actor.role,
                "error_type": error.error_type,
                "error": error.message
            }
        )

    # Directory

    def create(self, request: CreateReferralRequest, actor: ActorContext) -> Referral:
        """Create a Pending referral for a registered client."""
        with tracer.start_as_current_span(
            "referral.create",
            attributes={
                "user.id": actor.user_id,
                "referral.service": request.service.value,
                "operation": "create"
            }
        ) as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_CREATE)

                registry_record = self.client_registry.lookup(request.client_id)
                assignee_role = None
                if request.assigned_to and request.assigned_to.strip():
                    assignee_role = self.staff_directory.role_of(request.assigned_to)

                referral = referral_domain.create_referral(
                    request, registry_record, actor, assignee_role, _current_trace_id()
                )
                stored = self.repository.insert(referral)

            except WorkflowError as e:
                self._record_failure(span, e, "create", None, actor)
                raise

            span.set_attribute("referral.id", stored.id)
            logger.info(
                "Referral created",
                extra={
                    "referral_id": stored.id,
                    "client_id": stored.client.client_id,
                    "service": stored.service.value,
                    "risk_level": stored.risk_level.value,
                    "user_id": actor.user_id,
                    "registered_client": registry_record is not None,
                    "audit_category": "business_action"
                }
            )
            return stored

    def create_from_screening(
        self,
        screening: ScreeningResultRequest,
        actor: ActorContext
    ) -> Optional[Referral]:
        """
        Create an automatic referral for a high-risk screening result.

        Returns:
            The new referral, or None when the screening does not qualify
        """
        with tracer.start_as_current_span(
            "referral.create_from_screening",
            attributes={
                "user.id": actor.user_id,
                "screening.type": screening.type,
                "operation": "create_from_screening"
            }
        ) as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_CREATE)

                if not referral_domain.is_high_risk_screening(screening):
                    span.set_attribute("referral.created", False)
                    logger.info(
                        "Screening result does not warrant a referral",
                        extra={"client_id": screening.client_id, "screening_type": screening.type}
                    )
                    return None

                registry_record = self.client_registry.lookup(screening.client_id)
                referral = referral_domain.create_automatic_referral(
                    screening, registry_record, _current_trace_id()
                )
                stored = self.repository.insert(referral)

            except WorkflowError as e:
                self._record_failure(span, e, "create_from_screening", None, actor)
                raise

            span.set_attributes({"referral.created": True, "referral.id": stored.id})
            logger.info(
                "Automatic referral created from screening",
                extra={
                    "referral_id": stored.id,
                    "client_id": stored.client.client_id,
                    "visit_id": stored.visit_id,
                    "reported_by": actor.user_id,
                    "audit_category": "business_action"
                }
            )
            return stored

    def get(self, referral_id: str, actor: ActorContext) -> Referral:
        """Get a live referral."""
        with tracer.start_as_current_span("referral.get", attributes={"referral.id": referral_id}) as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_VIEW)
                return self._load(referral_id)
            except WorkflowError as e:
                self._record_failure(span, e, "get", referral_id, actor)
                raise

    def list(
        self,
        filters: referral_domain.ReferralFilters,
        actor: ActorContext,
        page: int = 1,
        page_size: int = 20
    ) -> PaginationResult:
        """List live referrals matching the filters, newest first."""
        with tracer.start_as_current_span(
            "referral.list",
            attributes={"user.id": actor.user_id, "query.page": page, "query.page_size": page_size}
        ) as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_VIEW)
                result = self.repository.find(filters, page, page_size)
            except WorkflowError as e:
                self._record_failure(span, e, "list", None, actor)
                raise

            span.set_attribute("query.total", result.total)
            return result

    def projection(
        self,
        filters: referral_domain.ReferralFilters,
        actor: ActorContext,
        page: int = 1,
        page_size: int = 100
    ) -> PaginationResult:
        """Reporting rows for live referrals matching the filters."""
        result = self.list(filters, actor, page, page_size)
        rows: List[ReferralProjection] = [
            referral_domain.project_for_reporting(referral) for referral in result.items
        ]
        return PaginationResult(rows, result.total, result.page, result.page_size)

    def update(self, referral_id: str, updates: Dict[str, Any], actor: ActorContext) -> Referral:
        """Edit a referral's free-text fields."""
        return self._mutate(
            "update", referral_id, actor,
            lambda current, trace_id: referral_domain.update_details(current, updates, actor, trace_id)
        )

    def delete(self, referral_id: str, actor: ActorContext) -> Referral:
        """Soft delete a referral; its audit trail is kept."""
        return self._mutate(
            "delete", referral_id, actor,
            lambda current, trace_id: referral_domain.mark_deleted(current, actor, trace_id)
        )

    # State machine

    def update_status(
        self,
        referral_id: str,
        status: ReferralStatus,
        reason: str,
        actor: ActorContext
    ) -> Referral:
        """Apply a manual status transition."""
        return self._mutate(
            "update_status", referral_id, actor,
            lambda current, trace_id: referral_domain.change_status(current, status, reason, actor, trace_id)
        )

    def add_follow_up(self, referral_id: str, request: FollowUpRequest, actor: ActorContext) -> Referral:
        """Append an outreach attempt."""
        return self._mutate(
            "add_follow_up", referral_id, actor,
            lambda current, trace_id: referral_domain.add_follow_up(current, request, actor, trace_id)
        )

    def confirm_linkage(self, referral_id: str, request: LinkageRequest, actor: ActorContext) -> Referral:
        """Confirm linkage to care; first writer wins."""
        return self._mutate(
            "confirm_linkage", referral_id, actor,
            lambda current, trace_id: referral_domain.confirm_linkage(current, request, actor, trace_id)
        )

    # Audit trail

    def get_audit_trail(
        self,
        referral_id: str,
        actor: ActorContext,
        include_deleted: bool = False
    ) -> List[AuditLogEntry]:
        """
        Get a referral's audit log in append order.

        Trails of deleted referrals require the audit capability.
        """
        with tracer.start_as_current_span(
            "referral.get_audit_trail",
            attributes={"referral.id": referral_id, "include_deleted": include_deleted}
        ) as span:
            try:
                authorization.require_capability(actor, authorization.REFERRAL_VIEW)
                if include_deleted:
                    authorization.require_capability(actor, authorization.REFERRAL_AUDIT)

                referral = self._load(referral_id, include_deleted=include_deleted)
            except WorkflowError as e:
                self._record_failure(span, e, "get_audit_trail", referral_id, actor)
                raise

            span.set_attribute("audit.entries", len(referral.audit_log))
            return list(referral.audit_log)
