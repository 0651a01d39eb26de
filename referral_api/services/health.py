"""
Health Check Service

Reports the state of the referral store and the optional lock backend.
"""

import os
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from opentelemetry import trace

from .mongodb import MongoDBService
from .locks import ReferralLockService

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "referral-lifecycle-api"


class HealthCheckService:
    """Service for dependency health monitoring."""

    def __init__(
        self,
        mongodb_service: MongoDBService,
        lock_service: Optional[ReferralLockService] = None,
        service_version: Optional[str] = None,
        environment: Optional[str] = None
    ):
        self.mongodb_service = mongodb_service
        self.lock_service = lock_service
        self.service_version = service_version or os.getenv('SERVICE_VERSION', '1.0.0')
        self.environment = environment or os.getenv('ENVIRONMENT', 'development')

    def get_health(self) -> Dict[str, Any]:
        """Get overall health including all dependencies."""
        with tracer.start_as_current_span("health.check") as span:
            start_time = time.time()

            mongodb_health = self._check_mongodb_health()
            lock_health = self._check_lock_health()

            overall_status = self._determine_overall_status(mongodb_health, lock_health)
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
                "health.mongodb_status": mongodb_health["status"],
                "health.redis_status": lock_health["status"]
            })

            return {
                "status": overall_status,
                "service": SERVICE_NAME,
                "version": self.service_version,
                "environment": self.environment,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "mongodb": mongodb_health,
                    "redis": lock_health
                }
            }

    def _check_mongodb_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.mongodb_check") as span:
            health = self.mongodb_service.health_check()
            span.set_attribute("mongodb.status", health["status"])
            return health

    def _check_lock_health(self) -> Dict[str, Any]:
        if self.lock_service is None:
            return {"status": "disabled"}
        with tracer.start_as_current_span("health.redis_check") as span:
            health = self.lock_service.health_check()
            span.set_attribute("redis.status", health["status"])
            return health

    @staticmethod
    def _determine_overall_status(mongodb_health: Dict[str, Any], lock_health: Dict[str, Any]) -> str:
        """
        The store is required; the lock backend only degrades the service
        because writes stay safe through the version check.
        """
        if mongodb_health["status"] != "healthy":
            return "unhealthy"
        if lock_health["status"] == "unhealthy":
            return "degraded"
        return "healthy"
