"""
Referral Lifecycle API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support, wires the
referral services and registers the HAL error handling.
"""

import os
from typing import Any, Dict, Optional
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag

from .observability.config import setup_observability
from .observability.middleware import add_request_tracing
from .middleware.error_handler import register_workflow_error_handlers
from .middleware.validation import validation_error_callback
from .services.hal import create_hal_formatter
from .services.mongodb import MongoDBService
from .services.referral_store import ReferralRepository
from .services.registry import ClientRegistry, StaffDirectory
from .services.locks import ReferralLockService
from .services.audit import AuditService
from .services.referrals import ReferralService, DEFAULT_WRITE_RETRIES
from .services.health import HealthCheckService
from .routes.referrals import referrals_bp
from .routes.audit import audit_bp
from . import __version__

# OpenAPI info
info = Info(
    title="Referral Lifecycle API",
    version=__version__,
    description="Referral tracking from intake to verified linkage to care, with HATEOAS Level-3 responses"
)

tags = [
    Tag(name="Referrals", description="Referral lifecycle workflow"),
    Tag(name="Audit", description="Audit trail querying"),
    Tag(name="Health", description="System health and status")
]


def _load_config() -> Dict[str, Any]:
    environment = os.getenv('ENVIRONMENT', 'development')
    return {
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/referrals_dev'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'referrals_dev'),
        'MONGODB_MAX_POOL_SIZE': int(os.getenv('MONGODB_MAX_POOL_SIZE', '10')),
        'MONGODB_MIN_POOL_SIZE': int(os.getenv('MONGODB_MIN_POOL_SIZE', '1')),
        'MONGODB_SERVER_SELECTION_TIMEOUT_MS': int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000')),
        'REDIS_URL': os.getenv('REDIS_URL', ''),
        'REFERRAL_LOCK_TIMEOUT_SECONDS': float(os.getenv('REFERRAL_LOCK_TIMEOUT_SECONDS', '10')),
        'REFERRAL_LOCK_WAIT_SECONDS': float(os.getenv('REFERRAL_LOCK_WAIT_SECONDS', '5')),
        'REFERRAL_WRITE_RETRIES': int(os.getenv('REFERRAL_WRITE_RETRIES', str(DEFAULT_WRITE_RETRIES))),
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),
        'SERVICE_VERSION': os.getenv('SERVICE_VERSION', __version__),
        'OTEL_ENABLED': os.getenv('OTEL_ENABLED', 'true').lower() == 'true',
        'OTEL_EXPORTER_OTLP_ENDPOINT': os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT'),
        'OTEL_API_KEY': os.getenv('OTEL_API_KEY'),
        'CREATE_INDEXES': os.getenv('CREATE_INDEXES', 'false').lower() == 'true',
    }


def create_app(
    config: Optional[Dict[str, Any]] = None,
    referral_service: Optional[ReferralService] = None,
    audit_service: Optional[AuditService] = None,
    health_service: Optional[HealthCheckService] = None
) -> OpenAPI:
    """
    Build the Flask application.

    Services not passed in are built from configuration against MongoDB and
    the optional Redis lock backend.

    Args:
        config: Overrides applied on top of environment configuration
        referral_service: Prebuilt referral service
        audit_service: Prebuilt audit service
        health_service: Prebuilt health check service
    """
    app = OpenAPI(
        __name__,
        info=info,
        validation_error_status=400,
        validation_error_callback=validation_error_callback
    )
    app.config.update(_load_config())
    if config:
        app.config.update(config)

    if app.config['OTEL_ENABLED']:
        add_request_tracing(app)

    if referral_service is None or audit_service is None or health_service is None:
        mongodb_service = MongoDBService(
            app.config['MONGODB_URI'],
            app.config['MONGODB_DATABASE'],
            max_pool_size=app.config['MONGODB_MAX_POOL_SIZE'],
            min_pool_size=app.config['MONGODB_MIN_POOL_SIZE'],
            server_selection_timeout_ms=app.config['MONGODB_SERVER_SELECTION_TIMEOUT_MS']
        )
        lock_service = ReferralLockService(
            app.config['REDIS_URL'] or None,
            timeout=app.config['REFERRAL_LOCK_TIMEOUT_SECONDS'],
            blocking_timeout=app.config['REFERRAL_LOCK_WAIT_SECONDS']
        )
        repository = ReferralRepository(mongodb_service)

        if app.config['CREATE_INDEXES']:
            mongodb_service.create_indexes()

        if referral_service is None:
            referral_service = ReferralService(
                repository,
                ClientRegistry(mongodb_service),
                StaffDirectory(mongodb_service),
                lock_service=lock_service,
                max_retries=app.config['REFERRAL_WRITE_RETRIES']
            )
        if audit_service is None:
            audit_service = AuditService(repository)
        if health_service is None:
            health_service = HealthCheckService(
                mongodb_service,
                lock_service,
                service_version=app.config['SERVICE_VERSION'],
                environment=app.config['ENVIRONMENT']
            )

    hal_formatter = create_hal_formatter(app.config['BASE_URL'])
    register_workflow_error_handlers(app, hal_formatter)

    # Make services available to routes
    app.hal_formatter = hal_formatter
    app.referral_service = referral_service
    app.audit_service = audit_service
    app.health_service = health_service

    app.register_api(referrals_bp)
    app.register_api(audit_bp)

    @app.get('/api/healthz', tags=[tags[2]])
    def health_check():
        """Dependency health check."""
        health_data = app.health_service.get_health()

        status_code = 503 if health_data["status"] == "unhealthy" else 200
        health_response = hal_formatter.builder.build_resource_response(
            health_data,
            {'self': hal_formatter.builder.link_builder.build_self_link('/api/healthz')}
        )
        return jsonify(health_response), status_code

    return app


if __name__ == '__main__':
    application = create_app()
    setup_observability(application.config)
    # Development server
    application.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=application.config['DEBUG']
    )
