# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Typed workflow errors.

Each error carries a user-facing message, an RFC 7807 problem type and the
HTTP status the API answers with.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for referral workflow exceptions."""

    status_code = 500
    error_type = "application-error"
    title = "Application Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """A required field is missing or invalid."""

    status_code = 400
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or []


class AuthenticationRequired(WorkflowError):
    """The request carries no acting user."""

    status_code = 401
    error_type = "authentication-required"
    title = "Authentication Required"


class PermissionDenied(WorkflowError):
    """The acting role lacks the capability for the operation."""

    status_code = 403
    error_type = "insufficient-permissions"
    title = "Insufficient Permissions"

    def __init__(self, message: str, missing_permissions: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_permissions = missing_permissions or []


class NotFound(WorkflowError):
    """Unknown or deleted referral."""

    status_code = 404
    error_type = "resource-not-found"
    title = "Resource Not Found"


class InvalidTransition(WorkflowError):
    """Illegal status change, or a change on a terminal referral."""

    status_code = 409
    error_type = "invalid-transition"
    title = "Invalid Transition"


class AlreadyLinked(WorkflowError):
    """Linkage to care was already confirmed."""

    status_code = 409
    error_type = "already-linked"
    title = "Already Linked"


class PersistenceError(WorkflowError):
    """The referral store failed."""

    status_code = 503
    error_type = "service-unavailable"
    title = "Service Unavailable"


class ConcurrentModificationError(PersistenceError):
    """Another writer changed the referral and retries were exhausted."""

    status_code = 409
    error_type = "concurrent-modification"
    title = "Concurrent Modification"
