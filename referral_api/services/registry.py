# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Read-only lookups against the client registry and the staff directory.
"""

import logging
from typing import Dict, Optional, Any
from pymongo.errors import PyMongoError
from opentelemetry import trace

from .mongodb import MongoDBService, CLIENTS_COLLECTION, USERS_COLLECTION
from ..domain.errors import PersistenceError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ClientRegistry:
    """Client registry lookups backed by the ``clients`` collection."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def lookup(self, client_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a client's current registry fields.

        Args:
            client_id: Client registry identifier

        Returns:
            Dict with ``name``, ``phone``, ``location`` and ``program``, or
            None if the client is not registered
        """
        if not client_id or not client_id.strip():
            return None

        with tracer.start_as_current_span("registry.client.lookup") as span:
            span.set_attribute("client.id", client_id)
            try:
                document = self.mongo_service.get_collection(CLIENTS_COLLECTION).find_one(
                    {"clientId": client_id.strip(), "deletedAt": None}
                )
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Client registry lookup failed for {client_id}: {e}")
                raise PersistenceError("Client registry is unavailable") from e

            if document is None:
                logger.info(
                    "Client not found in registry, using submitted details",
                    extra={"client_id": client_id}
                )
                return None

            name = document.get("name")
            if not name:
                parts = [document.get("firstName"), document.get("lastName")]
                name = " ".join(part for part in parts if part) or None

            return {
                "name": name,
                "phone": document.get("phone"),
                "location": document.get("location"),
                "program": document.get("program"),
            }


class StaffDirectory:
    """Staff role lookups backed by the ``users`` collection."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def role_of(self, name: str) -> Optional[str]:
        """Get the role of an active staff member by display name."""
        with tracer.start_as_current_span("registry.staff.role_of"):
            try:
                document = self.mongo_service.get_collection(USERS_COLLECTION).find_one(
                    {"name": name.strip(), "status": {"$ne": "inactive"}, "deletedAt": None},
                    {"role": 1}
                )
            except PyMongoError as e:
                logger.error(f"Staff directory lookup failed for {name}: {e}")
                raise PersistenceError("Staff directory is unavailable") from e

            return document.get("role") if document else None
