"""
workflows/pools.py

Contribution pools opened by verified NGOs against approved cases.

Rules
-----
- One pool per case, and only while the case is ``approved``.
- Anyone holding a caller identity may contribute; registration is not
  required.  Contributions are append-only.
- ``current_amount`` only grows.  The first contribution that brings it to
  or past ``target_amount`` completes the pool and marks the case
  ``funded``; a completed pool accepts nothing further.  The amount is not
  capped at the target, so the completing contribution may overshoot.
- A deadline, when set, is checked when a contribution arrives.  A pool
  whose deadline has been reached or passed (``now >= deadline``) refuses
  contributions, so a zero-day deadline expires immediately.  Nothing
  closes a pool in the background.

Every transition reads, checks and writes inside one store transaction and
never waits on anything outside the store while doing so.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum

from storage.db import Store
from storage.models import (
    CaseStatus,
    ContributeRequest,
    Contribution,
    ContributionPool,
    CreatePoolRequest,
    UserRole,
)
from workflows.auth import ADMIN, NGO, AuthorizationGate
from workflows.errors import Conflict, Expired, Forbidden, InvalidState, NotFound
from workflows.utils import Clock, IdFactory, generate_id, utc_now

logger = logging.getLogger(__name__)


class PoolScope(str, Enum):
    all = "all"
    active = "active"
    ngo = "ngo"


class ContributionScope(str, Enum):
    pool = "pool"
    caller = "caller"


class ContributionPoolEngine:
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

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def create_pool(self, identity: str, request: CreatePoolRequest) -> str:
        """
        Open a pool for an approved case on behalf of the calling NGO.

        Returns:
            The new pool id.

        Raises:
            Forbidden:    If the caller is not an NGO.
            NotVerified:  If the NGO's verification is not approved.
            NotFound:     If the case does not exist.
            InvalidState: If the case is not approved.
            Conflict:     If the case already has a pool.
        """
        with self.store.transaction():
            ngo = self.gate.authorize_verified(
                identity,
                NGO,
                "Only NGOs can create contribution pools",
                "NGO must be verified to create contribution pools",
            )

            case = self.store.get_case(request.case_id)
            if case is None:
                logger.warning("create_pool: case %s not found", request.case_id)
                raise NotFound("Case not found")
            if case.status != CaseStatus.approved:
                logger.warning(
                    "create_pool: case %s is %s, not approved", case.id, case.status.value
                )
                raise InvalidState("Can only create pools for approved cases")
            if self.store.get_pool_by_case(case.id) is not None:
                logger.warning("create_pool: case %s already has a pool", case.id)
                raise Conflict("A contribution pool already exists for this case")

            now = self.clock()
            deadline = None
            if request.deadline_days is not None:
                deadline = now + timedelta(days=request.deadline_days)

            pool = ContributionPool(
                id=self.id_factory("pool"),
                case_id=case.id,
                ngo_id=ngo.id,
                ngo_name=ngo.name,
                title=request.title,
                description=request.description,
                target_amount=request.target_amount,
                created_at=now,
                deadline=deadline,
            )
            self.store.store_pool(pool)
            self.store.append_audit(ngo.id, "pool_created", pool.id)

        logger.info(
            "Pool %s opened by NGO %s for case %s (target=%d, deadline=%s)",
            pool.id, ngo.id, case.id, pool.target_amount, deadline,
        )
        return pool.id

    def contribute(self, identity: str, request: ContributeRequest) -> str:
        """
        Record a contribution from *identity* and advance the pool.

        Returns:
            The new contribution id.

        Raises:
            NotFound:     If the pool does not exist.
            InvalidState: If the pool is inactive or already completed.
            Expired:      If the clock has reached or passed the pool's deadline.
        """
        with self.store.transaction():
            pool = self.store.get_pool(request.pool_id)
            if pool is None:
                logger.warning("contribute: pool %s not found", request.pool_id)
                raise NotFound("Pool not found")
            if not pool.is_active:
                raise InvalidState("Pool is not active")
            if pool.is_completed:
                raise InvalidState("Pool is already completed")

            now = self.clock()
            if pool.deadline is not None and now >= pool.deadline:
                logger.warning("contribute: pool %s expired at %s", pool.id, pool.deadline)
                raise Expired("Pool deadline has passed")

            contribution = Contribution(
                id=self.id_factory("contrib"),
                pool_id=pool.id,
                contributor=identity,
                amount=request.amount,
                message=request.message,
                is_anonymous=request.is_anonymous,
                contributed_at=now,
            )
            self.store.store_contribution(contribution)

            current = pool.current_amount + request.amount
            completed = current >= pool.target_amount
            pool = pool.model_copy(update={
                "current_amount": current,
                "contributors_count": pool.contributors_count + 1,
                "is_completed": completed,
            })
            self.store.store_pool(pool)
            self.store.append_audit(identity, "contribution_made", contribution.id)

            if completed:
                self._mark_case_funded(pool)

        logger.info(
            "Contribution %s of %d to pool %s (%d/%d)",
            contribution.id, request.amount, pool.id, pool.current_amount, pool.target_amount,
        )
        return contribution.id

    def _mark_case_funded(self, pool: ContributionPool) -> None:
        # Caller holds the store transaction.
        case = self.store.get_case(pool.case_id)
        if case is None:
            logger.error("Pool %s completed but case %s is missing", pool.id, pool.case_id)
            return
        self.store.store_case(case.model_copy(update={"status": CaseStatus.funded}))
        self.store.append_audit(pool.ngo_id, "case_funded", case.id)
        logger.info("Pool %s reached its target; case %s funded", pool.id, case.id)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get_pool(self, pool_id: str) -> ContributionPool:
        pool = self.store.get_pool(pool_id)
        if pool is None:
            raise NotFound("Pool not found")
        return pool

    def list_pools(self, scope: PoolScope = PoolScope.all) -> list[ContributionPool]:
        """All pools, or only those still accepting contributions."""
        return self.store.list_pools(active_only=PoolScope(scope) == PoolScope.active)

    def pools_by_ngo(self, identity: str, ngo_id: str) -> list[ContributionPool]:
        """An NGO sees only its own pools; the admin sees any NGO's."""
        user = self.gate.authorize(identity, NGO | ADMIN)
        if user.role == UserRole.ngo and user.id != ngo_id:
            logger.warning("NGO %s attempted to list pools of %s", user.id, ngo_id)
            raise Forbidden("You can only view your own pools")
        return self.store.list_pools(ngo_id=ngo_id)

    def contributions_by_pool(self, pool_id: str) -> list[Contribution]:
        return self.store.list_contributions(pool_id=pool_id)

    def contributions_by_caller(self, identity: str) -> list[Contribution]:
        return self.store.list_contributions(contributor=identity)
