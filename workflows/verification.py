"""
workflows/verification.py

Credential verification of doctors and NGOs.

Request lifecycle
-----------------
    (no request) ──submit──▶ pending ──process──▶ approved | rejected
                                 ▲                              │
                                 └──────── resubmit ◀───────────┘ (rejected only)

A user holds a copy of their most recent request in
``User.verification_request``; ``User.verification_status`` mirrors that
request's status.  Both submission and processing write the request and the
owning user inside a single store transaction, so no reader ever sees one
updated without the other.
"""

from __future__ import annotations

import logging

from storage.db import Store
from storage.models import (
    SubmitVerificationRequest,
    User,
    UserRole,
    VerificationRequest,
    VerificationStatus,
    VerificationStatusInfo,
    VerificationType,
)
from workflows.auth import ADMIN, CREDENTIALED, AuthorizationGate
from workflows.errors import Conflict, Forbidden, InvalidState, NotFound
from workflows.utils import Clock, IdFactory, generate_id, utc_now

logger = logging.getLogger(__name__)

_TYPE_FOR_ROLE = {
    UserRole.doctor: VerificationType.doctor,
    UserRole.ngo: VerificationType.ngo,
}

_OUTCOMES = (VerificationStatus.approved, VerificationStatus.rejected)


def _decision(status: VerificationStatus | str) -> VerificationStatus:
    """Coerce *status* to an approve/reject outcome or raise InvalidState."""
    try:
        status = VerificationStatus(status)
    except ValueError:
        raise InvalidState(f"Unknown verification status '{status}'") from None
    if status not in _OUTCOMES:
        raise InvalidState("Verification can only be approved or rejected")
    return status


class VerificationWorkflow:
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

    def submit(self, identity: str, request: SubmitVerificationRequest) -> str:
        """
        File a verification request for the calling doctor or NGO.

        Returns:
            The new request id.

        Raises:
            Forbidden: If the caller is not a doctor or NGO.
            Conflict:  If the caller's current request is pending or approved.
        """
        with self.store.transaction():
            user = self.gate.authorize(
                identity,
                CREDENTIALED,
                "Only doctors and NGOs can submit verification requests",
            )

            existing = user.verification_request
            if existing is not None:
                if existing.status == VerificationStatus.pending:
                    logger.warning("Duplicate verification submission by %s", user.id)
                    raise Conflict("You already have a pending verification request")
                if existing.status == VerificationStatus.approved:
                    logger.warning("Verification resubmitted by approved user %s", user.id)
                    raise Conflict("You are already verified")

            verification = VerificationRequest(
                id=self.id_factory("verify"),
                requester_id=user.id,
                verification_type=_TYPE_FOR_ROLE[user.role],
                institution_name=request.institution_name,
                institution_website=request.institution_website,
                license_authority=request.license_authority,
                license_authority_website=request.license_authority_website,
                license_number=request.license_number,
                documents=request.documents,
                submitted_at=self.clock(),
            )
            self.store.store_verification_request(verification)
            self.store.store_user(
                user.model_copy(update={
                    "verification_status": VerificationStatus.pending,
                    "verification_request": verification,
                })
            )
            self.store.append_audit(user.id, "verification_submitted", verification.id)

        logger.info(
            "Verification request %s submitted by %s (%s)",
            verification.id, user.id, verification.verification_type.value,
        )
        return verification.id

    def process(
        self,
        identity: str,
        request_id: str,
        status: VerificationStatus | str,
        admin_notes: list[str] | None = None,
    ) -> str:
        """
        Approve or reject a pending request and propagate the outcome to its
        owner.

        Returns:
            A status message, e.g. ``"Verification request approved"``.

        Raises:
            Forbidden:    If the caller is not the admin.
            NotFound:     If *request_id* is unknown.
            InvalidState: If *status* is neither approved nor rejected, or
                          the request has already been processed.
        """
        with self.store.transaction():
            admin = self.gate.authorize(identity, ADMIN, "Admin access required")
            status = _decision(status)

            verification = self.store.get_verification_request(request_id)
            if verification is None:
                logger.warning("process: verification request %s not found", request_id)
                raise NotFound("Verification request not found")
            if verification.status != VerificationStatus.pending:
                logger.warning(
                    "process: request %s already %s", request_id, verification.status.value
                )
                raise InvalidState("Verification request has already been processed")

            verification = verification.model_copy(update={
                "status": status,
                "processed_at": self.clock(),
                "processed_by": admin.id,
                "admin_notes": list(admin_notes or []),
            })
            self.store.store_verification_request(verification)

            owner = self.store.get_user(verification.requester_id)
            if owner is not None:
                self.store.store_user(
                    owner.model_copy(update={
                        "verification_status": status,
                        "verification_request": verification,
                    })
                )
            else:
                logger.error(
                    "Verification request %s references missing user %s",
                    verification.id, verification.requester_id,
                )
            self.store.append_audit(admin.id, f"verification_{status.value}", verification.id)

        logger.info("Verification request %s %s by %s", request_id, status.value, admin.id)
        return f"Verification request {status.value}"

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, identity: str, request_id: str) -> VerificationRequest:
        """Admin sees any request; a doctor or NGO only their own."""
        user = self.gate.authorize(identity, ADMIN | CREDENTIALED)
        verification = self.store.get_verification_request(request_id)
        if verification is None:
            raise NotFound("Verification request not found")
        if user.role != UserRole.admin and verification.requester_id != user.id:
            logger.warning("%s attempted to read verification request %s", user.id, request_id)
            raise Forbidden("You can only view your own verification request")
        return verification

    def mine(self, identity: str) -> VerificationRequest | None:
        user = self.gate.authorize(identity, CREDENTIALED)
        return user.verification_request

    def list_all(self, identity: str) -> list[VerificationRequest]:
        self.gate.authorize(identity, ADMIN, "Admin access required")
        return self.store.list_verification_requests()

    def list_pending(self, identity: str) -> list[VerificationRequest]:
        self.gate.authorize(identity, ADMIN, "Admin access required")
        return self.store.list_verification_requests(status=VerificationStatus.pending)

    def list_by_type(
        self, identity: str, verification_type: VerificationType
    ) -> list[VerificationRequest]:
        self.gate.authorize(identity, ADMIN, "Admin access required")
        return self.store.list_verification_requests(
            verification_type=VerificationType(verification_type)
        )

    def status_info(self, identity: str, user_id: str) -> VerificationStatusInfo:
        """Admin view of one doctor's or NGO's verification state."""
        self.gate.authorize(identity, ADMIN, "Admin access required")
        user: User | None = self.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.role not in CREDENTIALED:
            raise InvalidState("User is not a doctor or NGO")
        return VerificationStatusInfo(
            user_id=user.id,
            name=user.name,
            role=user.role,
            verification_status=user.verification_status,
            verification_request=user.verification_request,
        )
