# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Persistence, locking and workflow orchestration.
"""

from .mongodb import MongoDBService, PaginationResult, get_mongodb_service, close_mongodb_connection
from .referral_store import ReferralRepository
from .registry import ClientRegistry, StaffDirectory
from .locks import ReferralLockService
from .audit import AuditService, AuditFilters, AuditRecord
from .referrals import ReferralService

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "get_mongodb_service",
    "close_mongodb_connection",
    "ReferralRepository",
    "ClientRegistry",
    "StaffDirectory",
    "ReferralLockService",
    "AuditService",
    "AuditFilters",
    "AuditRecord",
    "ReferralService"
]
