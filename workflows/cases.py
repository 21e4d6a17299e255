"""
workflows/cases.py

Patient funding cases: intake by patients, review by the admin.

Case lifecycle
--------------
    pending ──review──▶ under_review | approved | rejected | closed
    approved ──(pool reaches its target)──▶ funded

Review applies whatever status the admin chooses; it does not enforce the
order above.  ``funded`` is normally set by the pool engine.

Visibility
----------
admin    every case
patient  own cases only
ngo      approved and funded cases only
doctor   none
"""

from __future__ import annotations

import logging
from enum import Enum

from storage.db import Store
from storage.models import CaseStatus, PatientCase, SubmitCaseRequest, UserRole
from workflows.auth import ADMIN, NGO, PATIENT, AuthorizationGate
from workflows.errors import Forbidden, NotFound
from workflows.utils import Clock, IdFactory, generate_id, utc_now

logger = logging.getLogger(__name__)

NGO_VISIBLE = (CaseStatus.approved, CaseStatus.funded)


class CaseScope(str, Enum):
    all = "all"
    pending = "pending"
    approved = "approved"
    mine = "mine"


class CaseIntakeService:
    def __init__(
        self,
        store: Store,
        gate: AuthorizationGate,
        clock: Clock = utc_now,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self.store = store
        self.gate = gate
        self.clock = clock
        self.id_factory = id_factory

    def submit_case(self, identity: str, request: SubmitCaseRequest) -> str:
        """
        File a new case owned by the calling patient.

        Returns:
            The new case id.
        """
        with self.store.transaction():
            patient = self.gate.authorize(identity, PATIENT, "Only patients can submit cases")
            case = PatientCase(
                id=self.id_factory("case"),
                patient_id=patient.id,
                patient_name=patient.name,
                patient_contact=patient.email,
                title=request.title,
                description=request.description,
                medical_condition=request.medical_condition,
                required_amount=request.required_amount,
                documents=request.documents,
                urgency=request.urgency,
                created_at=self.clock(),
            )
            self.store.store_case(case)
            self.store.append_audit(patient.id, "case_submitted", case.id)

        logger.info(
            "Case %s submitted by patient %s (required=%d, urgency=%s)",
            case.id, patient.id, case.required_amount, case.urgency.value,
        )
        return case.id

    def review(
        self,
        identity: str,
        case_id: str,
        status: CaseStatus | str,
        admin_notes: str | None = None,
    ) -> str:
        """
        Set a case's status as the admin.

        Raises:
            Forbidden: If the caller is not the admin.
            NotFound:  If *case_id* is unknown.
            ValueError: If *status* is not a case status.
        """
        with self.store.transaction():
            admin = self.gate.authorize(identity, ADMIN, "Only admins can process cases")
            status = CaseStatus(status)
            case = self.store.get_case(case_id)
            if case is None:
                logger.warning("review: case %s not found", case_id)
                raise NotFound("Case not found")

            previous = case.status
            case = case.model_copy(update={
                "status": status,
                "reviewed_at": self.clock(),
                "reviewed_by": admin.id,
                "admin_notes": admin_notes,
            })
            self.store.store_case(case)
            self.store.append_audit(admin.id, f"case_{status.value}", case.id)

        logger.info("Case %s: %s -> %s by %s", case_id, previous.value, status.value, admin.id)
        if status in (CaseStatus.approved, CaseStatus.rejected):
            return f"Case {status.value}"
        return "Case processed"

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get_case(self, identity: str, case_id: str) -> PatientCase:
        user = self.gate.resolve(identity)
        case = self.store.get_case(case_id)
        if case is None:
            raise NotFound("Case not found")

        if user.role == UserRole.admin:
            return case
        if user.role == UserRole.patient:
            if case.patient_id != user.id:
                raise Forbidden("You can only view your own cases")
            return case
        if user.role == UserRole.ngo:
            if case.status not in NGO_VISIBLE:
                raise Forbidden("NGOs can only view approved cases")
            return case
        raise Forbidden("Access denied")

    def list_cases(self, identity: str, scope: CaseScope = CaseScope.all) -> list[PatientCase]:
        """
        List cases in *scope*, restricted to what the caller may see.

        ``all`` and ``mine`` apply the visibility rules above; ``pending`` is
        admin-only and ``approved`` is for NGOs and the admin.
        """
        scope = CaseScope(scope)
        user = self.gate.resolve(identity)

        if scope == CaseScope.pending:
            self.gate.check(user, ADMIN)
            return self.store.list_cases(statuses=[CaseStatus.pending])
        if scope == CaseScope.approved:
            self.gate.check(user, ADMIN | NGO, "Only NGOs and admins can view approved cases")
            return self.store.list_cases(statuses=[CaseStatus.approved])
        if scope == CaseScope.mine:
            self.gate.check(user, ADMIN | PATIENT)
            if user.role == UserRole.admin:
                return self.store.list_cases()
            return self.store.list_cases(patient_id=user.id)

        if user.role == UserRole.admin:
            return self.store.list_cases()
        if user.role == UserRole.patient:
            return self.store.list_cases(patient_id=user.id)
        if user.role == UserRole.ngo:
            return self.store.list_cases(statuses=list(NGO_VISIBLE))
        raise Forbidden("Access denied")
