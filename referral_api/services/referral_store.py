# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Referral persistence on MongoDB with optimistic concurrency.

A referral, including its follow-ups, linkage and audit log, is one
document. Every change is a single ``replace_one`` conditioned on the
version that was read, so a mutation and its audit entries become visible
together or not at all.
"""

import re
import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from opentelemetry import trace

from .mongodb import MongoDBService, PaginationResult, REFERRALS_COLLECTION
from .audit import AuditFilters, AuditRecord
from ..domain.errors import PersistenceError, ConcurrentModificationError
from ..domain.referrals import ReferralFilters
from ..models.entities import Referral, AuditLogEntry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _to_bson(value: Any) -> Any:
    """Replace enum members with their values, recursively."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _to_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_bson(item) for item in value]
    return value


def to_document(referral: Referral) -> Dict[str, Any]:
    """Convert a referral to its MongoDB document."""
    document = _to_bson(referral.model_dump(by_alias=True, exclude={"id"}))
    document["_id"] = referral.id
    return document


def from_document(document: Dict[str, Any]) -> Referral:
    """Convert a MongoDB document back to a referral."""
    data = dict(document)
    data["id"] = str(data.pop("_id"))
    return Referral.model_validate(data)


def _contains(term: str) -> Dict[str, str]:
    return {"$regex": re.escape(term.strip()), "$options": "i"}


def build_referral_query(filters: ReferralFilters, include_deleted: bool = False) -> Dict[str, Any]:
    """Convert list filters to a MongoDB query."""
    query: Dict[str, Any] = {}

    # Exclude soft-deleted records by default
    if not include_deleted:
        query["deletedAt"] = None

    if filters.status is not None:
        query["status"] = filters.status.value

    if filters.risk_level is not None:
        query["riskLevel"] = filters.risk_level.value

    if filters.service is not None:
        query["service"] = filters.service.value

    if filters.priority is not None:
        query["priority"] = filters.priority.value

    if filters.location:
        query["client.location"] = {
            "$regex": f"^{re.escape(filters.location.strip())}$",
            "$options": "i"
        }

    if filters.search_term and filters.search_term.strip():
        pattern = _contains(filters.search_term)
        query["$or"] = [
            {"client.name": pattern},
            {"client.clientId": pattern},
            {"_id": pattern}
        ]

    return query


class ReferralRepository:
    """MongoDB-backed referral store."""

    def __init__(self, mongo_service: MongoDBService, collection_name: str = REFERRALS_COLLECTION):
        self.mongo_service = mongo_service
        self.collection_name = collection_name

    @property
    def collection(self):
        return self.mongo_service.get_collection(self.collection_name)

    def get(self, referral_id: str, include_deleted: bool = False) -> Optional[Referral]:
        """Get a referral by ID, None if unknown or deleted."""
        with tracer.start_as_current_span("db.referral.get") as span:
            span.set_attributes({
                "db.collection": self.collection_name,
                "db.operation": "find_one",
                "referral.id": referral_id
            })
            query: Dict[str, Any] = {"_id": referral_id}
            if not include_deleted:
                query["deletedAt"] = None

            try:
                document = self.collection.find_one(query)
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to load referral {referral_id}: {e}")
                raise PersistenceError("Referral store is unavailable") from e

            if document is None:
                logger.debug(f"Referral {referral_id} not found")
                return None

            return from_document(document)

    def find(self, filters: ReferralFilters, page: int = 1, page_size: int = 20) -> PaginationResult:
        """Find live referrals matching the filters, newest first."""
        with tracer.start_as_current_span("db.referral.find") as span:
            query = build_referral_query(filters)
            skip = (page - 1) * page_size
            span.set_attributes({
                "db.collection": self.collection_name,
                "db.operation": "find",
                "db.query.page": page,
                "db.query.page_size": page_size
            })

            try:
                total = self.collection.count_documents(query)
                cursor = (
                    self.collection.find(query)
                    .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
                    .skip(skip)
                    .limit(page_size)
                )
                referrals = [from_document(document) for document in cursor]
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to list referrals: {e}")
                raise PersistenceError("Referral store is unavailable") from e

            logger.debug(f"Found {len(referrals)} referrals (page {page}, total {total})")
            return PaginationResult(referrals, total, page, page_size)

    def insert(self, referral: Referral) -> Referral:
        """Store a new referral."""
        with tracer.start_as_current_span("db.referral.insert") as span:
            span.set_attributes({
                "db.collection": self.collection_name,
                "db.operation": "insert_one",
                "referral.id": referral.id
            })
            try:
                self.collection.insert_one(to_document(referral))
            except DuplicateKeyError as e:
                logger.error(f"Duplicate referral id {referral.id}: {e}")
                raise PersistenceError("Referral with this identifier already exists") from e
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to insert referral {referral.id}: {e}")
                raise PersistenceError("Referral store is unavailable") from e

            logger.info(f"Created referral {referral.id}")
            return referral

    def replace(self, referral: Referral, expected_version: int) -> Referral:
        """
        Replace a referral if its stored version is still ``expected_version``.

        Returns:
            The stored referral, with its version incremented

        Raises:
            ConcurrentModificationError: the stored version moved on
            PersistenceError: the store failed
        """
        with tracer.start_as_current_span("db.referral.replace") as span:
            stored = referral.model_copy(update={"version": expected_version + 1})
            span.set_attributes({
                "db.collection": self.collection_name,
                "db.operation": "replace_one",
                "referral.id": referral.id,
                "referral.version": stored.version
            })

            try:
                result = self.collection.replace_one(
                    {"_id": referral.id, "version": expected_version},
                    to_document(stored)
                )
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to replace referral {referral.id}: {e}")
                raise PersistenceError("Referral store is unavailable") from e

            if result.matched_count == 0:
                span.set_attribute("db.conflict", True)
                raise ConcurrentModificationError(
                    f"Referral {referral.id} was modified by another request"
                )

            return stored

    def query_audit_entries(self, filters: AuditFilters, page: int = 1, page_size: int = 20) -> PaginationResult:
        """Query embedded audit entries across referrals, newest first."""
        with tracer.start_as_current_span("db.referral.audit_query") as span:
            skip = (page - 1) * page_size
            pipeline: List[Dict[str, Any]] = []

            referral_match = filters.referral_query()
            if referral_match:
                pipeline.append({"$match": referral_match})

            # entryIndex breaks timestamp ties in append order
            pipeline.append({"$unwind": {"path": "$auditLog", "includeArrayIndex": "entryIndex"}})

            entry_match = filters.entry_query()
            if entry_match:
                pipeline.append({"$match": entry_match})

            pipeline.extend([
                {"$sort": {"auditLog.timestamp": DESCENDING, "_id": DESCENDING, "entryIndex": DESCENDING}},
                {"$facet": {
                    "items": [
                        {"$skip": skip},
                        {"$limit": page_size},
                        {"$project": {"_id": 1, "auditLog": 1}}
                    ],
                    "total": [{"$count": "count"}]
                }}
            ])
            span.set_attributes({
                "db.collection": self.collection_name,
                "db.operation": "aggregate",
                "db.pipeline.stages": len(pipeline)
            })

            try:
                results = list(self.collection.aggregate(pipeline))
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to query audit entries: {e}")
                raise PersistenceError("Referral store is unavailable") from e

            facet = results[0] if results else {"items": [], "total": []}
            total = facet["total"][0]["count"] if facet.get("total") else 0
            records = [
                AuditRecord(
                    referral_id=str(item["_id"]),
                    entry=AuditLogEntry.model_validate(item["auditLog"])
                )
                for item in facet.get("items", [])
            ]

            return PaginationResult(records, total, page, page_size)
