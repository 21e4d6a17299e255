from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet, InvalidToken

from storage.db import Store
from storage.models import (
    CaseStatus,
    ContributionPool,
    PatientCase,
    UrgencyLevel,
    User,
    UserRole,
    VerificationStatus,
)

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _user(user_id: str = "user_1", identity: str = "p-1", role: UserRole = UserRole.patient) -> User:
    return User(
        id=user_id,
        name="Pat",
        email="pat@mail.com",
        role=role,
        identity=identity,
        created_at=NOW,
        verification_status=VerificationStatus.not_required,
    )


def _case(case_id: str = "case_1", patient_id: str = "user_1") -> PatientCase:
    return PatientCase(
        id=case_id,
        patient_id=patient_id,
        patient_name="Pat",
        patient_contact="pat@mail.com",
        title="Surgery",
        description="Needs a new hip",
        medical_condition="Osteoarthritis",
        required_amount=500,
        urgency=UrgencyLevel.medium,
        created_at=NOW,
    )


def _pool(pool_id: str = "pool_1", case_id: str = "case_1") -> ContributionPool:
    return ContributionPool(
        id=pool_id,
        case_id=case_id,
        ngo_id="user_1",
        ngo_name="Hope",
        title="Hip",
        description="",
        target_amount=500,
        created_at=NOW,
    )


def test_user_lookup_by_id_and_identity(store):
    store.store_user(_user())

    assert store.get_user("user_1").identity == "p-1"
    assert store.get_user_by_identity("p-1").id == "user_1"
    assert store.identity_has_account("p-1")
    assert store.get_user_by_identity("nobody") is None


def test_store_user_replaces_existing_record(store):
    store.store_user(_user())
    store.store_user(_user().model_copy(update={"name": "Patricia"}))

    assert store.get_user("user_1").name == "Patricia"
    assert len(store.list_users()) == 1


def test_list_users_filters_by_role(store):
    store.store_user(_user("user_1", "p-1", UserRole.patient))
    store.store_user(_user("user_2", "p-2", UserRole.doctor))

    assert [u.id for u in store.list_users(UserRole.doctor)] == ["user_2"]


def test_admin_flag_defaults_to_false(store):
    assert store.admin_exists() is False
    store.set_admin_exists(True)
    assert store.admin_exists() is True


def test_case_detail_is_encrypted_at_rest(store):
    store.store_user(_user())
    store.store_case(_case())

    with store.transaction() as conn:
        blob = conn.execute("SELECT encrypted_blob FROM patient_cases").fetchone()[0]
    assert "Osteoarthritis" not in blob
    assert store.get_case("case_1").medical_condition == "Osteoarthritis"


def test_case_written_with_another_key_cannot_be_read(tmp_path):
    path = tmp_path / "medseal.db"
    first = Store(path, data_key=Fernet.generate_key())
    first.store_user(_user())
    first.store_case(_case())
    first.close()

    second = Store(path, data_key=Fernet.generate_key())
    with pytest.raises(InvalidToken):
        second.get_case("case_1")
    second.close()


def test_list_cases_by_status_and_owner(store):
    store.store_user(_user())
    store.store_case(_case("case_1"))
    store.store_case(_case("case_2").model_copy(update={"status": CaseStatus.approved}))

    assert [c.id for c in store.list_cases(statuses=[CaseStatus.approved])] == ["case_2"]
    assert len(store.list_cases(patient_id="user_1")) == 2
    assert store.list_cases(statuses=[]) == []


def test_transaction_rolls_back_every_write(store):
    store.store_user(_user())

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.store_case(_case())
            store.set_admin_exists(True)
            raise RuntimeError("boom")

    assert store.get_case("case_1") is None
    assert store.admin_exists() is False


def test_only_one_pool_per_case(store):
    store.store_user(_user())
    store.store_case(_case())
    store.store_pool(_pool("pool_1"))

    with pytest.raises(sqlite3.IntegrityError):
        store.store_pool(_pool("pool_2"))
    assert store.get_pool_by_case("case_1").id == "pool_1"


def test_active_pool_listing_excludes_completed(store):
    store.store_user(_user())
    store.store_case(_case("case_1"))
    store.store_case(_case("case_2"))
    store.store_pool(_pool("pool_1", "case_1"))
    store.store_pool(_pool("pool_2", "case_2").model_copy(update={"is_completed": True}))

    assert [p.id for p in store.list_pools(active_only=True)] == ["pool_1"]
    assert len(store.list_pools()) == 2


def test_audit_entries_are_appended(store):
    store.append_audit("user_1", "case_submitted", "case_1")
    store.append_audit("user_1", "case_approved", "case_1")

    entries = store.list_audit("case_1")
    assert [e.action for e in entries] == ["case_submitted", "case_approved"]
