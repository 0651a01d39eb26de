# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from unittest.mock import Mock

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from referral_api.app import create_app
from referral_api.models.entities import ActorContext
from referral_api.models.enums import ServiceType, ReferralSource, RiskLevel, Priority
from referral_api.models.requests import CreateReferralRequest
from referral_api.services.audit import AuditService
from referral_api.services.referrals import ReferralService
from referral_api.tests.fakes import InMemoryReferralRepository, FakeClientRegistry, FakeStaffDirectory


@pytest.fixture
def clinician():
    return ActorContext(user_id="u-clinician", name="Dr. Banda", role="Clinician")


@pytest.fixture
def counsellor():
    return ActorContext(user_id="u-counsellor", name="Grace Phiri", role="HTS Counsellor")


@pytest.fixture
def admin():
    return ActorContext(user_id="u-admin", name="Admin User", role="Admin")


@pytest.fixture
def viewer():
    return ActorContext(user_id="u-viewer", name="Read Only", role="Viewer")


@pytest.fixture
def me_officer():
    return ActorContext(user_id="u-me", name="M&E Officer", role="M&E Officer")


@pytest.fixture
def data_entry():
    return ActorContext(user_id="u-data", name="Data Clerk", role="Data Entry")


@pytest.fixture
def registry_records():
    return {
        "CL-001": {
            "name": "Jane Doe",
            "phone": "+265 999 000 111",
            "location": "Lilongwe",
            "program": "Key Populations"
        },
        "CL-002": {
            "name": "John Mwale",
            "phone": "+265 888 000 222",
            "location": "Blantyre",
            "program": "DREAMS"
        },
    }


@pytest.fixture
def staff_roles():
    return {
        "Dr. Banda": "Clinician",
        "Grace Phiri": "HTS Counsellor",
        "Mercy Tembo": "Psychologist",
        "Chikondi Banda": "Paralegal",
    }


@pytest.fixture
def repository():
    return InMemoryReferralRepository()


@pytest.fixture
def referral_service(repository, registry_records, staff_roles):
    return ReferralService(
        repository,
        FakeClientRegistry(registry_records),
        FakeStaffDirectory(staff_roles)
    )


@pytest.fixture
def audit_service(repository):
    return AuditService(repository)


@pytest.fixture
def create_request():
    """Factory for creation requests with sensible defaults."""
    def _build(**overrides) -> CreateReferralRequest:
        data = {
            "client_id": "CL-001",
            "service": ServiceType.PREP,
            "source": ReferralSource.CLINICAL,
            "trigger_reason": "Client requested PrEP",
            "risk_level": RiskLevel.MEDIUM,
            "priority": Priority.ROUTINE,
        }
        data.update(overrides)
        return CreateReferralRequest(**data)
    return _build


@pytest.fixture
def health_service():
    service = Mock()
    service.get_health.return_value = {
        "status": "healthy",
        "service": "referral-lifecycle-api",
        "dependencies": {"mongodb": {"status": "healthy"}, "redis": {"status": "disabled"}}
    }
    return service


@pytest.fixture
def app(referral_service, audit_service, health_service):
    """Flask application wired to in-memory services."""
    application = create_app(
        config={
            'TESTING': True,
            'OTEL_ENABLED': False,
            'BASE_URL': 'http://testserver',
            'ENVIRONMENT': 'test'
        },
        referral_service=referral_service,
        audit_service=audit_service,
        health_service=health_service
    )
    return application


@pytest.fixture
def client(app):
    return app.test_client()
