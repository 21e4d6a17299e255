"""
workflows/admin.py

Admin-only directory and statistics over users, cases and pools.
"""

from __future__ import annotations

import logging
from collections import Counter

from storage.db import Store
from storage.models import SystemOverview, User, UserRole, UserStats, VerificationStatus
from workflows.auth import ADMIN, AuthorizationGate
from workflows.errors import NotFound

logger = logging.getLogger(__name__)


class AdminDirectory:
    def __init__(self, store: Store, gate: AuthorizationGate) -> None:
        self.store = store
        self.gate = gate

    def list_users(self, identity: str, role: UserRole | None = None) -> list[User]:
        self.gate.authorize(identity, ADMIN, "Admin access required")
        return self.store.list_users(UserRole(role) if role is not None else None)

    def user_stats(self, identity: str, user_id: str) -> UserStats:
        self.gate.authorize(identity, ADMIN, "Admin access required")
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")

        contributions = self.store.list_contributions(contributor=user.identity)
        return UserStats(
            user_id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            verification_status=user.verification_status,
            created_at=user.created_at,
            last_active=user.last_active,
            cases_submitted=len(self.store.list_cases(patient_id=user.id)),
            pools_managed=len(self.store.list_pools(ngo_id=user.id)),
            contributions_made=len(contributions),
            amount_contributed=sum(c.amount for c in contributions),
        )

    def system_overview(self, identity: str) -> SystemOverview:
        self.gate.authorize(identity, ADMIN, "Admin access required")

        doctors = self.store.list_users(UserRole.doctor)
        ngos = self.store.list_users(UserRole.ngo)
        pools = self.store.list_pools()
        cases = Counter(c.status.value for c in self.store.list_cases())

        def verified(users: list[User]) -> int:
            return sum(1 for u in users if u.verification_status == VerificationStatus.approved)

        overview = SystemOverview(
            total_doctors=len(doctors),
            total_patients=len(self.store.list_users(UserRole.patient)),
            total_ngos=len(ngos),
            verified_doctors=verified(doctors),
            unverified_doctors=sum(
                1 for d in doctors if d.verification_status == VerificationStatus.pending
            ),
            verified_ngos=verified(ngos),
            pending_verifications=len(
                self.store.list_verification_requests(status=VerificationStatus.pending)
            ),
            cases_by_status=dict(cases),
            total_pools=len(pools),
            active_pools=sum(1 for p in pools if p.is_active and not p.is_completed),
            completed_pools=sum(1 for p in pools if p.is_completed),
            total_raised=sum(p.current_amount for p in pools),
        )
        logger.debug("System overview: %s", overview.model_dump())
        return overview
