"""
workflows/auth.py

Caller resolution, role gating and user registration.

Responsibilities
----------------
- :class:`AuthorizationGate` turns an opaque caller identity into a ``User``
  and checks its role (and, for NGO operations, its verification) before a
  workflow operation does anything else.
- :class:`UserRegistry` registers identities and enforces the
  singleton-admin rule: the first admin registration sets a store-wide flag
  and every later one is refused, for the lifetime of the store.

The identity token is trusted as supplied by the host runtime; no
credentials are checked here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from storage.db import Store
from storage.models import RegisterUserRequest, User, UserRole, VerificationStatus
from workflows.errors import Conflict, Forbidden, NotVerified, Unauthenticated
from workflows.utils import Clock, IdFactory, generate_id, utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Role sets
# ---------------------------------------------------------------------------

ADMIN = frozenset({UserRole.admin})
PATIENT = frozenset({UserRole.patient})
NGO = frozenset({UserRole.ngo})
CREDENTIALED = frozenset({UserRole.doctor, UserRole.ngo})

_INITIAL_STATUS: dict[UserRole, VerificationStatus] = {
    UserRole.admin: VerificationStatus.approved,
    UserRole.doctor: VerificationStatus.pending,
    UserRole.ngo: VerificationStatus.pending,
    UserRole.patient: VerificationStatus.not_required,
}


class AuthorizationGate:
    """Resolve the caller and assert its role is in a permitted set."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def resolve(self, identity: str) -> User:
        """
        Return the user mapped to *identity*.

        Raises:
            Unauthenticated: If no user is registered for *identity*.
        """
        user = self.store.get_user_by_identity(identity)
        if user is None:
            logger.warning("Unknown caller identity '%s'", identity)
            raise Unauthenticated("User not found")
        return user

    def authorize(
        self,
        identity: str,
        allowed_roles: Iterable[UserRole],
        message: str = "Access denied",
    ) -> User:
        """
        Return the caller's user if its role is in *allowed_roles*.

        Raises:
            Unauthenticated: If *identity* is unknown.
            Forbidden:       With *message*, if the role is not permitted.
        """
        user = self.resolve(identity)
        self.check(user, allowed_roles, message)
        logger.debug("Authorized %s as %s", user.id, user.role.value)
        return user

    @staticmethod
    def check(user: User, allowed_roles: Iterable[UserRole], message: str = "Access denied") -> None:
        """Raise :class:`Forbidden` unless ``user.role`` is in *allowed_roles*."""
        if user.role not in frozenset(allowed_roles):
            logger.warning("Denied %s (role=%s): %s", user.id, user.role.value, message)
            raise Forbidden(message)

    def authorize_verified(
        self,
        identity: str,
        allowed_roles: Iterable[UserRole],
        message: str = "Access denied",
        unverified_message: str = "Verification required",
    ) -> User:
        """
        Like :meth:`authorize`, and additionally require an approved
        verification.

        Raises:
            NotVerified: If the user's verification status is not approved.
        """
        user = self.authorize(identity, allowed_roles, message)
        if user.verification_status != VerificationStatus.approved:
            logger.warning(
                "Denied %s: verification status is %s",
                user.id, user.verification_status.value,
            )
            raise NotVerified(unverified_message)
        return user


class UserRegistry:
    """Registration and lookup of users by id or caller identity."""

    def __init__(
        self,
        store: Store,
        clock: Clock = utc_now,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    def register(self, identity: str, request: RegisterUserRequest) -> User:
        """
        Register *identity* with the role and details in *request*.

        Admins start approved, doctors and NGOs pending, patients
        not_required.

        Raises:
            Conflict: If *identity* already has an account, or if an admin
                      is requested after one has ever been registered.
        """
        now = self.clock()
        with self.store.transaction():
            if self.store.identity_has_account(identity):
                logger.warning("Registration refused: identity '%s' already registered", identity)
                raise Conflict("Principal already has an account")

            if request.role == UserRole.admin:
                if self.store.admin_exists():
                    logger.warning("Registration refused: admin already exists")
                    raise Conflict("Admin already exists")
                self.store.set_admin_exists(True)

            user = User(
                id=self.id_factory("user"),
                name=request.name,
                email=request.email,
                role=request.role,
                identity=identity,
                license_number=request.license_number,
                created_at=now,
                last_active=now,
                verification_status=_INITIAL_STATUS[request.role],
            )
            self.store.store_user(user)
            self.store.append_audit(user.id, "user_registered", user.id)

        logger.info("Registered user id=%s role=%s", user.id, user.role.value)
        return user

    def get_user(self, user_id: str) -> User | None:
        return self.store.get_user(user_id)

    def get_user_by_identity(self, identity: str) -> User | None:
        return self.store.get_user_by_identity(identity)

    def identity_has_account(self, identity: str) -> bool:
        return self.store.identity_has_account(identity)

    def admin_exists(self) -> bool:
        return self.store.admin_exists()
