"""
workflows/service.py

``MedSealService`` — one object wiring the store, the authorization gate and
the three workflows together, and exposing every operation a host runtime
calls.  Each operation takes the caller identity first; field-level input is
validated by the pydantic request models before any workflow code runs.

Usage
-----
    from storage.db import Store
    from workflows.service import MedSealService

    service = MedSealService(Store())
    admin = service.register_user("principal-1", name="Ada", email="ada@x.org", role="admin")
"""

from __future__ import annotations

from storage.db import Store
from storage.models import (
    CaseStatus,
    ContributeRequest,
    Contribution,
    ContributionPool,
    CreatePoolRequest,
    PatientCase,
    RegisterUserRequest,
    SubmitCaseRequest,
    SubmitVerificationRequest,
    SystemOverview,
    UrgencyLevel,
    User,
    UserRole,
    UserStats,
    VerificationRequest,
    VerificationStatus,
    VerificationStatusInfo,
    VerificationType,
)
from workflows.admin import AdminDirectory
from workflows.auth import AuthorizationGate, UserRegistry
from workflows.cases import CaseIntakeService, CaseScope
from workflows.pools import ContributionPoolEngine, ContributionScope, PoolScope
from workflows.utils import Clock, IdFactory, generate_id, utc_now
from workflows.verification import VerificationWorkflow


class MedSealService:
    def __init__(
        self,
        store: Store,
        clock: Clock = utc_now,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self.store = store
        self.gate = AuthorizationGate(store)
        self.users = UserRegistry(store, clock, id_factory)
        self.verification = VerificationWorkflow(store, self.gate, clock, id_factory)
        self.cases = CaseIntakeService(store, self.gate, clock, id_factory)
        self.pools = ContributionPoolEngine(store, self.gate, clock, id_factory)
        self.admin = AdminDirectory(store, self.gate)

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    def register_user(
        self,
        identity: str,
        name: str,
        email: str,
        role: UserRole | str,
        license_number: str = "",
    ) -> User:
        request = RegisterUserRequest(
            name=name, email=email, role=role, license_number=license_number
        )
        return self.users.register(identity, request)

    def get_user(self, user_id: str) -> User | None:
        return self.users.get_user(user_id)

    def get_user_by_identity(self, identity: str) -> User | None:
        return self.users.get_user_by_identity(identity)

    def identity_has_account(self, identity: str) -> bool:
        return self.users.identity_has_account(identity)

    def admin_exists(self) -> bool:
        return self.users.admin_exists()

    # -----------------------------------------------------------------------
    # Verification
    # -----------------------------------------------------------------------

    def submit_verification_request(
        self,
        identity: str,
        institution_name: str,
        license_number: str,
        institution_website: str = "",
        license_authority: str = "",
        license_authority_website: str = "",
        documents: list[str] | None = None,
    ) -> str:
        request = SubmitVerificationRequest(
            institution_name=institution_name,
            institution_website=institution_website,
            license_authority=license_authority,
            license_authority_website=license_authority_website,
            license_number=license_number,
            documents=documents or [],
        )
        return self.verification.submit(identity, request)

    def process_verification_request(
        self,
        identity: str,
        request_id: str,
        status: VerificationStatus | str,
        admin_notes: list[str] | None = None,
    ) -> str:
        return self.verification.process(identity, request_id, status, admin_notes)

    def get_verification_request(self, identity: str, request_id: str) -> VerificationRequest:
        return self.verification.get(identity, request_id)

    def get_my_verification_request(self, identity: str) -> VerificationRequest | None:
        return self.verification.mine(identity)

    def list_verification_requests(
        self, identity: str, scope: str = "all"
    ) -> list[VerificationRequest]:
        """*scope* is ``all``, ``pending``, ``doctor`` or ``ngo``."""
        if scope == "all":
            return self.verification.list_all(identity)
        if scope == "pending":
            return self.verification.list_pending(identity)
        return self.verification.list_by_type(identity, VerificationType(scope))

    def get_verification_status(self, identity: str, user_id: str) -> VerificationStatusInfo:
        return self.verification.status_info(identity, user_id)

    # -----------------------------------------------------------------------
    # Cases
    # -----------------------------------------------------------------------

    def submit_patient_case(
        self,
        identity: str,
        title: str,
        description: str,
        medical_condition: str,
        required_amount: int,
        documents: list[str] | None = None,
        urgency: UrgencyLevel | str = UrgencyLevel.medium,
    ) -> str:
        request = SubmitCaseRequest(
            title=title,
            description=description,
            medical_condition=medical_condition,
            required_amount=required_amount,
            documents=documents or [],
            urgency=urgency,
        )
        return self.cases.submit_case(identity, request)

    def review_patient_case(
        self,
        identity: str,
        case_id: str,
        status: CaseStatus | str,
        admin_notes: str | None = None,
    ) -> str:
        return self.cases.review(identity, case_id, status, admin_notes)

    def get_patient_case(self, identity: str, case_id: str) -> PatientCase:
        return self.cases.get_case(identity, case_id)

    def list_patient_cases(
        self, identity: str, scope: CaseScope | str = CaseScope.all
    ) -> list[PatientCase]:
        return self.cases.list_cases(identity, CaseScope(scope))

    # -----------------------------------------------------------------------
    # Pools and contributions
    # -----------------------------------------------------------------------

    def create_contribution_pool(
        self,
        identity: str,
        case_id: str,
        target_amount: int,
        title: str,
        description: str = "",
        deadline_days: int | None = None,
    ) -> str:
        request = CreatePoolRequest(
            case_id=case_id,
            target_amount=target_amount,
            title=title,
            description=description,
            deadline_days=deadline_days,
        )
        return self.pools.create_pool(identity, request)

    def contribute_to_pool(
        self,
        identity: str,
        pool_id: str,
        amount: int,
        message: str | None = None,
        is_anonymous: bool = False,
    ) -> str:
        request = ContributeRequest(
            pool_id=pool_id, amount=amount, message=message, is_anonymous=is_anonymous
        )
        return self.pools.contribute(identity, request)

    def get_contribution_pool(self, pool_id: str) -> ContributionPool:
        return self.pools.get_pool(pool_id)

    def list_contribution_pools(
        self,
        identity: str | None = None,
        scope: PoolScope | str = PoolScope.all,
        ngo_id: str | None = None,
    ) -> list[ContributionPool]:
        """``all`` and ``active`` need no caller; ``ngo`` needs *identity* and *ngo_id*."""
        scope = PoolScope(scope)
        if scope == PoolScope.ngo:
            if identity is None or ngo_id is None:
                raise ValueError("identity and ngo_id are required to list an NGO's pools")
            return self.pools.pools_by_ngo(identity, ngo_id)
        return self.pools.list_pools(scope)

    def list_contributions(
        self,
        identity: str,
        scope: ContributionScope | str = ContributionScope.caller,
        pool_id: str | None = None,
    ) -> list[Contribution]:
        if ContributionScope(scope) == ContributionScope.pool:
            if pool_id is None:
                raise ValueError("pool_id is required to list a pool's contributions")
            return self.pools.contributions_by_pool(pool_id)
        return self.pools.contributions_by_caller(identity)

    # -----------------------------------------------------------------------
    # Admin directory
    # -----------------------------------------------------------------------

    def list_users(self, identity: str, role: UserRole | str | None = None) -> list[User]:
        return self.admin.list_users(identity, UserRole(role) if role is not None else None)

    def get_user_stats(self, identity: str, user_id: str) -> UserStats:
        return self.admin.user_stats(identity, user_id)

    def get_system_overview(self, identity: str) -> SystemOverview:
        return self.admin.system_overview(identity)
