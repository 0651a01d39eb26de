# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with connection pooling and index management.
"""

import os
import logging
from typing import List, Dict, Optional, Any, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError, PyMongoError

logger = logging.getLogger(__name__)

REFERRALS_COLLECTION = "referrals"
CLIENTS_COLLECTION = "clients"
USERS_COLLECTION = "users"

# Collection name to (keys, create_index options)
INDEX_PLAN: Dict[str, List[Tuple[Any, Dict[str, Any]]]] = {
    REFERRALS_COLLECTION: [
        # List filters, newest first
        ([("deletedAt", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("status", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("riskLevel", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("service", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("priority", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("client.location", ASCENDING), ("createdAt", DESCENDING)], {}),
        ("client.clientId", {}),
        # Embedded audit trail queries
        ([("auditLog.userId", ASCENDING), ("auditLog.timestamp", DESCENDING)], {}),
        ([("auditLog.action", ASCENDING), ("auditLog.timestamp", DESCENDING)], {}),
    ],
    CLIENTS_COLLECTION: [("clientId", {"unique": True})],
    USERS_COLLECTION: [("name", {})],
}


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Any], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


class MongoDBService:
    """MongoDB service with connection pooling."""

    def __init__(
        self,
        connection_string: str = None,
        database_name: str = None,
        max_pool_size: int = None,
        min_pool_size: int = None,
        server_selection_timeout_ms: int = None
    ):
        """Initialize MongoDB service with connection pooling.

        Pool settings not passed in fall back to the ``MONGODB_*`` environment
        variables.
        """
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/referrals_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'referrals_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = max_pool_size or int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = min_pool_size if min_pool_size is not None else int(
            os.getenv('MONGODB_MIN_POOL_SIZE', '1')
        )
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = server_selection_timeout_ms or int(
            os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000')
        )

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except PyMongoError as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    # Index Management

    def create_indexes(self) -> Dict[str, List[str]]:
        """
        Create the indexes in ``INDEX_PLAN``.

        Returns:
            Index names created or confirmed, per collection
        """
        created: Dict[str, List[str]] = {}
        try:
            logger.info("Creating MongoDB indexes...")

            for collection_name, indexes in INDEX_PLAN.items():
                collection = self.get_collection(collection_name)
                created[collection_name] = [
                    collection.create_index(keys, **options) for keys, options in indexes
                ]

            logger.info("MongoDB indexes created successfully", extra={"indexes": created})
            return created

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
