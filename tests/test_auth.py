from __future__ import annotations

import pytest
from pydantic import ValidationError

from storage.models import UserRole, VerificationStatus
from tests.conftest import ADMIN, DOCTOR, NGO, PATIENT
from workflows.auth import CREDENTIALED
from workflows.errors import Conflict, ErrorKind, Forbidden, NotVerified, Unauthenticated


def test_first_admin_is_approved_and_sets_flag(service):
    admin = service.register_user(ADMIN, name="Ada", email="ada@medseal.org", role="admin")

    assert admin.role == UserRole.admin
    assert admin.verification_status == VerificationStatus.approved
    assert service.admin_exists() is True


def test_second_admin_registration_is_refused(service):
    service.register_user(ADMIN, name="Ada", email="ada@medseal.org", role="admin")

    with pytest.raises(Conflict, match="Admin already exists") as exc_info:
        service.register_user("principal-other", name="Eve", email="eve@x.org", role="admin")

    assert exc_info.value.kind == ErrorKind.conflict
    assert service.identity_has_account("principal-other") is False
    assert len(service.store.list_users(UserRole.admin)) == 1


def test_initial_verification_status_per_role(users):
    assert users["doctor"].verification_status == VerificationStatus.pending
    assert users["ngo"].verification_status == VerificationStatus.pending
    assert users["patient"].verification_status == VerificationStatus.not_required


def test_identity_can_only_register_once(service, users):
    with pytest.raises(Conflict, match="Principal already has an account"):
        service.register_user(PATIENT, name="Again", email="again@mail.com", role="patient")


def test_registration_rejects_malformed_email(service):
    with pytest.raises(ValidationError):
        service.register_user("principal-x", name="X", email="not-an-email", role="patient")
    assert service.identity_has_account("principal-x") is False


def test_gate_unknown_identity(service):
    with pytest.raises(Unauthenticated, match="User not found"):
        service.gate.authorize("nobody", CREDENTIALED)


def test_gate_rejects_role_outside_allowed_set(service, users):
    with pytest.raises(Forbidden) as exc_info:
        service.gate.authorize(PATIENT, CREDENTIALED)

    assert isinstance(exc_info.value, PermissionError)
    assert service.gate.authorize(DOCTOR, CREDENTIALED).id == users["doctor"].id


def test_gate_requires_verification_when_asked(service, users):
    with pytest.raises(NotVerified):
        service.gate.authorize_verified(NGO, {UserRole.ngo})

    assert service.gate.authorize_verified(ADMIN, {UserRole.admin}).id == users["admin"].id
