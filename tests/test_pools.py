from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from storage.models import CaseStatus
from tests.conftest import ADMIN, DOCTOR, NGO, PATIENT
from workflows.errors import (
    Conflict,
    Expired,
    Forbidden,
    InvalidState,
    NotFound,
    NotVerified,
    WorkflowError,
)


def _create(service, case_id, target=1000, deadline_days=None):
    return service.create_contribution_pool(
        NGO,
        case_id,
        target_amount=target,
        title="Help Pat",
        description="Surgery fund",
        deadline_days=deadline_days,
    )


def test_unverified_ngo_cannot_open_pool_until_approved(service, users, approved_case):
    with pytest.raises(NotVerified, match="NGO must be verified"):
        _create(service, approved_case)

    request_id = service.submit_verification_request(
        NGO, institution_name="Hope Fund", license_number="NGO-42"
    )
    service.process_verification_request(ADMIN, request_id, "approved")

    pool_id = _create(service, approved_case)
    pool = service.get_contribution_pool(pool_id)
    assert pool.case_id == approved_case
    assert pool.ngo_id == users["ngo"].id
    assert pool.ngo_name == "Hope Fund"
    assert (pool.current_amount, pool.contributors_count) == (0, 0)
    assert pool.is_active and not pool.is_completed
    assert pool.deadline is None


def test_only_ngos_open_pools(service, users, approved_case):
    with pytest.raises(Forbidden, match="Only NGOs"):
        service.create_contribution_pool(DOCTOR, approved_case, target_amount=10, title="x")


def test_pool_requires_existing_approved_case(service, users, verified_ngo):
    case_id = service.submit_patient_case(
        PATIENT, title="t", description="d", medical_condition="m", required_amount=100
    )

    with pytest.raises(NotFound):
        _create(service, "case_missing")
    with pytest.raises(InvalidState, match="approved cases"):
        _create(service, case_id)

    service.review_patient_case(ADMIN, case_id, "under_review")
    with pytest.raises(InvalidState):
        _create(service, case_id)


def test_one_pool_per_case(service, verified_ngo, approved_case):
    _create(service, approved_case)

    with pytest.raises(Conflict, match="already exists"):
        _create(service, approved_case)
    assert len(service.list_contribution_pools()) == 1


def test_funding_completes_pool_and_case(service, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, target=1000)

    service.contribute_to_pool("donor-1", pool_id, 600)
    pool = service.get_contribution_pool(pool_id)
    assert pool.current_amount == 600
    assert pool.is_completed is False
    assert service.get_patient_case(ADMIN, approved_case).status == CaseStatus.approved

    service.contribute_to_pool("donor-2", pool_id, 500, message="Get well", is_anonymous=True)
    pool = service.get_contribution_pool(pool_id)
    assert pool.current_amount == 1100
    assert pool.contributors_count == 2
    assert pool.is_completed is True
    assert service.get_patient_case(ADMIN, approved_case).status == CaseStatus.funded


def test_completed_pool_rejects_further_contributions(service, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, target=100)
    service.contribute_to_pool("donor-1", pool_id, 100)

    with pytest.raises(InvalidState, match="already completed"):
        service.contribute_to_pool("donor-2", pool_id, 1)
    assert service.get_contribution_pool(pool_id).current_amount == 100
    assert len(service.list_contributions("donor-2")) == 0


def test_inactive_pool_rejects_contributions(service, store, verified_ngo, approved_case):
    pool_id = _create(service, approved_case)
    store.store_pool(store.get_pool(pool_id).model_copy(update={"is_active": False}))

    with pytest.raises(InvalidState, match="not active"):
        service.contribute_to_pool("donor-1", pool_id, 10)


def test_unknown_pool(service):
    with pytest.raises(NotFound):
        service.contribute_to_pool("donor-1", "pool_missing", 10)
    with pytest.raises(NotFound):
        service.get_contribution_pool("pool_missing")


def test_zero_day_deadline_is_already_expired(service, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, deadline_days=0)

    with pytest.raises(Expired, match="Pool deadline has passed"):
        service.contribute_to_pool("donor-1", pool_id, 10)


def test_deadline_is_checked_at_contribution_time(service, clock, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, deadline_days=2)
    assert service.get_contribution_pool(pool_id).deadline == clock.now + timedelta(days=2)

    clock.advance(days=1)
    service.contribute_to_pool("donor-1", pool_id, 10)

    clock.advance(days=2)
    with pytest.raises(Expired):
        service.contribute_to_pool("donor-1", pool_id, 10)
    assert service.get_contribution_pool(pool_id).current_amount == 10


def test_contribution_at_exact_deadline_is_refused(service, clock, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, deadline_days=1)

    clock.advance(days=1, microseconds=-1)
    service.contribute_to_pool("donor-1", pool_id, 10)

    clock.advance(microseconds=1)
    with pytest.raises(Expired, match="Pool deadline has passed"):
        service.contribute_to_pool("donor-2", pool_id, 10)
    assert service.get_contribution_pool(pool_id).contributors_count == 1


def test_current_amount_is_sum_of_accepted_contributions(service, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, target=10_000)
    amounts = [5, 250, 1, 999, 40]
    for i, amount in enumerate(amounts):
        service.contribute_to_pool(f"donor-{i}", pool_id, amount)

    pool = service.get_contribution_pool(pool_id)
    contributions = service.list_contributions(None, "pool", pool_id=pool_id)
    assert pool.current_amount == sum(amounts)
    assert pool.contributors_count == len(amounts)
    assert [c.amount for c in contributions] == amounts


def test_contributions_by_caller(service, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, target=10_000)
    service.contribute_to_pool(PATIENT, pool_id, 10)
    service.contribute_to_pool("anonymous-caller", pool_id, 20, is_anonymous=True)
    service.contribute_to_pool(PATIENT, pool_id, 30)

    mine = service.list_contributions(PATIENT)
    assert [c.amount for c in mine] == [10, 30]
    assert all(c.contributor == PATIENT for c in mine)


def test_pool_listings(service, store, verified_ngo, approved_case):
    first = _create(service, approved_case, target=50)
    second_case = service.submit_patient_case(
        PATIENT, title="t", description="d", medical_condition="m", required_amount=100
    )
    service.review_patient_case(ADMIN, second_case, "approved")
    second = _create(service, second_case, target=100)
    service.contribute_to_pool("donor-1", first, 50)

    assert {p.id for p in service.list_contribution_pools()} == {first, second}
    assert [p.id for p in service.list_contribution_pools(scope="active")] == [second]

    ngo_id = verified_ngo.id
    assert len(service.list_contribution_pools(NGO, "ngo", ngo_id)) == 2
    assert len(service.list_contribution_pools(ADMIN, "ngo", ngo_id)) == 2


def test_ngo_pool_listing_is_restricted(service, verified_ngo):
    other = service.register_user("principal-ngo-2", name="Aid", email="aid@aid.org", role="ngo")

    with pytest.raises(Forbidden, match="your own pools"):
        service.list_contribution_pools(other.identity, "ngo", verified_ngo.id)
    with pytest.raises(Forbidden):
        service.list_contribution_pools(PATIENT, "ngo", verified_ngo.id)


def test_concurrent_contributions_complete_pool_exactly_once(service, store, verified_ngo, approved_case):
    pool_id = _create(service, approved_case, target=1000)

    def give(i):
        try:
            return service.contribute_to_pool(f"donor-{i}", pool_id, 100)
        except WorkflowError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(give, range(20)))

    accepted = [r for r in results if isinstance(r, str)]
    rejected = [r for r in results if isinstance(r, InvalidState)]
    assert len(accepted) == 10
    assert len(rejected) == 10

    pool = service.get_contribution_pool(pool_id)
    assert pool.current_amount == 1000
    assert pool.contributors_count == 10
    assert pool.is_completed is True
    assert [e.action for e in store.list_audit(approved_case)].count("case_funded") == 1
