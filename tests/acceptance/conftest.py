"""
Acceptance test fixtures.

The application runs against the in-memory referral store so each test
starts from an empty directory with a known client registry and staff list.
"""

import os
import pytest
from unittest.mock import Mock

os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('OTEL_ENABLED', 'false')

from referral_api.app import create_app
from referral_api.services.audit import AuditService
from referral_api.services.referrals import ReferralService
from referral_api.tests.fakes import InMemoryReferralRepository, FakeClientRegistry, FakeStaffDirectory

CLIENTS = {
    "KP-1001": {
        "name": "Thandiwe Nkhoma",
        "phone": "+265 991 234 567",
        "location": "Lilongwe",
        "program": "Key Populations"
    },
    "DR-2002": {
        "name": "Esther Chirwa",
        "phone": "+265 884 765 432",
        "location": "Mzuzu",
        "program": "DREAMS"
    },
}

STAFF = {
    "Dr. Phiri": "Clinician",
    "Chisomo Banda": "HTS Counsellor",
    "Tiyamike Mvula": "Paralegal",
    "Alinafe Zulu": "Psychologist",
}


@pytest.fixture
def referral_store():
    return InMemoryReferralRepository()


@pytest.fixture
def test_client(referral_store):
    """Test client for the referral API."""
    health_service = Mock()
    health_service.get_health.return_value = {"status": "healthy", "dependencies": {}}
    app = create_app(
        config={'TESTING': True, 'OTEL_ENABLED': False, 'BASE_URL': 'http://testserver'},
        referral_service=ReferralService(
            referral_store, FakeClientRegistry(CLIENTS), FakeStaffDirectory(STAFF)
        ),
        audit_service=AuditService(referral_store),
        health_service=health_service
    )
    return app.test_client()


@pytest.fixture
def headers():
    """Gateway headers per acting user."""
    def _headers(user_id, name, role):
        return {"X-User-Id": user_id, "X-User-Name": name, "X-User-Role": role}

    return {
        "clinician": _headers("u-phiri", "Dr. Phiri", "Clinician"),
        "counsellor": _headers("u-banda", "Chisomo Banda", "HTS Counsellor"),
        "paralegal": _headers("u-mvula", "Tiyamike Mvula", "Paralegal"),
        "admin": _headers("u-admin", "Program Admin", "Admin"),
        "me_officer": _headers("u-me", "Kondwani M&E", "M&E Officer"),
        "viewer": _headers("u-viewer", "Donor Viewer", "Viewer"),
        "data_entry": _headers("u-data", "Data Clerk", "Data Entry"),
    }
