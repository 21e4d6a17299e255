from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

from storage.db import Store
from workflows.service import MedSealService

ADMIN = "principal-admin"
DOCTOR = "principal-doctor"
NGO = "principal-ngo"
PATIENT = "principal-patient"


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = Store(":memory:", data_key=Fernet.generate_key())
    yield store
    store.close()


@pytest.fixture
def service(store, clock):
    return MedSealService(store, clock=clock)


@pytest.fixture
def users(service):
    """One registered user per role, keyed by role name."""
    return {
        "admin": service.register_user(ADMIN, name="Ada Admin", email="ada@medseal.org", role="admin"),
        "doctor": service.register_user(
            DOCTOR, name="Dr. Osei", email="osei@hosp.org", role="doctor", license_number="L1"
        ),
        "ngo": service.register_user(NGO, name="Hope Fund", email="info@hope.org", role="ngo"),
        "patient": service.register_user(PATIENT, name="Pat Lee", email="pat@mail.com", role="patient"),
    }


@pytest.fixture
def verified_ngo(service, users):
    request_id = service.submit_verification_request(
        NGO, institution_name="Hope Fund", license_number="NGO-42"
    )
    service.process_verification_request(ADMIN, request_id, "approved", ["ok"])
    return service.get_user_by_identity(NGO)


@pytest.fixture
def approved_case(service, users):
    case_id = service.submit_patient_case(
        PATIENT,
        title="Heart surgery",
        description="Valve replacement",
        medical_condition="Aortic stenosis",
        required_amount=1000,
        urgency="high",
    )
    service.review_patient_case(ADMIN, case_id, "approved")
    return case_id
