"""
OpenTelemetry Configuration

Sets up distributed tracing and logging for the referral lifecycle API.
"""

import logging
from typing import Any, Mapping
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

SERVICE_NAME = 'referral-lifecycle-api'


def setup_observability(config: Mapping[str, Any]):
    """
    Initialize OpenTelemetry instrumentation.

    Args:
        config: Application config, usually ``app.config``
    """
    environment = config.get('ENVIRONMENT', 'development')
    otel_enabled = config.get('OTEL_ENABLED', True)
    service_version = config.get('SERVICE_VERSION', '1.0.0')

    setup_structured_logging(environment)

    if not otel_enabled:
        # Disable tracing by not setting up a tracer provider
        return

    # Environment-specific sampling
    if environment == 'production':
        sampler = TraceIdRatioBased(0.1)  # 10% sampling in production
    elif environment == 'staging':
        sampler = TraceIdRatioBased(0.5)  # 50% sampling in staging
    else:
        sampler = TraceIdRatioBased(1.0)  # 100% sampling in development

    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": service_version,
        "deployment.environment": environment
    })

    tracer_provider = TracerProvider(
        sampler=sampler,
        resource=resource
    )

    otlp_endpoint = config.get('OTEL_EXPORTER_OTLP_ENDPOINT')
    if otlp_endpoint:
        headers = None
        if config.get('OTEL_API_KEY'):
            headers = {"Authorization": f"Bearer {config['OTEL_API_KEY']}"}
        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers)
        tracer_provider.add_span_processor(
            BatchSpanProcessor(otlp_exporter, max_export_batch_size=512)
        )
    elif environment == 'development':
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(tracer_provider)


def setup_structured_logging(environment: str):
    """Configure logging levels per environment."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.DEBUG
    }.get(environment, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if environment == 'production':
        # Production: Reduce noise, focus on errors and business events
        logging.getLogger('pymongo').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
    else:
        logging.getLogger('pymongo').setLevel(logging.INFO)
