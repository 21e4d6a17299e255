"""
storage/models.py

Pydantic v2 data models for the MedSeal verification and funding engine.

These models describe the records kept by the store (users, verification
requests, patient cases, contribution pools, contributions) and the request
shapes accepted by the workflow layer.  They are NOT ORM models; persistence
is handled entirely by db.py.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, PositiveInt, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """The four roles a registered identity can hold."""
    doctor = "doctor"
    patient = "patient"
    admin = "admin"
    ngo = "ngo"


class VerificationStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    not_required = "not_required"


class VerificationType(str, Enum):
    """Which kind of credential a verification request covers."""
    doctor = "doctor"
    ngo = "ngo"


class CaseStatus(str, Enum):
    """Lifecycle states of a patient funding case."""
    pending = "pending"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"
    funded = "funded"      # set by the pool engine, not by review
    closed = "closed"


class UrgencyLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ---------------------------------------------------------------------------
# Domain models
# ---------------------------------------------------------------------------


class VerificationRequest(BaseModel):
    """Credentials submitted by a doctor or NGO for admin review."""
    id: str
    requester_id: str
    verification_type: VerificationType
    institution_name: str
    institution_website: str = ""
    license_authority: str = ""
    license_authority_website: str = ""
    license_number: str = Field(
        description="Medical licence number, or registration number for an NGO."
    )
    documents: list[str] = Field(default_factory=list)
    submitted_at: datetime
    processed_at: datetime | None = None
    processed_by: str | None = None
    admin_notes: list[str] = Field(default_factory=list)
    status: VerificationStatus = VerificationStatus.pending


class User(BaseModel):
    """A registered identity.  ``identity`` is the opaque caller token."""
    id: str
    name: str
    email: str
    role: UserRole
    identity: str
    license_number: str = ""
    created_at: datetime
    last_active: datetime | None = None
    verification_status: VerificationStatus
    verification_request: VerificationRequest | None = Field(
        default=None,
        description="Copy of the user's most recent verification request.",
    )


class PatientCase(BaseModel):
    """
    A patient's funding request.

    Everything except the id, owner and status columns is encrypted at rest.
    """
    id: str
    patient_id: str
    patient_name: str
    patient_contact: str
    title: str
    description: str
    medical_condition: str
    required_amount: int
    documents: list[str] = Field(default_factory=list)
    urgency: UrgencyLevel
    status: CaseStatus = CaseStatus.pending
    created_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    admin_notes: str | None = None


class ContributionPool(BaseModel):
    id: str
    case_id: str
    ngo_id: str
    ngo_name: str
    title: str
    description: str
    target_amount: int
    current_amount: int = 0
    contributors_count: int = 0
    created_at: datetime
    deadline: datetime | None = None
    is_active: bool = True
    is_completed: bool = False


class Contribution(BaseModel):
    """One pledge to a pool.  Never updated after it is written."""
    id: str
    pool_id: str
    contributor: str = Field(description="Caller identity token of the contributor.")
    amount: int
    message: str | None = None
    is_anonymous: bool = False
    contributed_at: datetime


class AuditEntry(BaseModel):
    """One row of the append-only audit log."""
    id: int
    actor: str
    action: str
    entity_id: str | None = None
    timestamp: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterUserRequest(BaseModel):
    name: str
    email: str
    role: UserRole
    license_number: str = ""

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if "@" not in value or "." not in value:
            raise ValueError("Invalid email address")
        return value


class SubmitVerificationRequest(BaseModel):
    institution_name: str
    institution_website: str = ""
    license_authority: str = ""
    license_authority_website: str = ""
    license_number: str
    documents: list[str] = Field(default_factory=list)


class SubmitCaseRequest(BaseModel):
    title: str
    description: str
    medical_condition: str
    required_amount: PositiveInt
    documents: list[str] = Field(default_factory=list)
    urgency: UrgencyLevel = UrgencyLevel.medium


class CreatePoolRequest(BaseModel):
    case_id: str
    target_amount: PositiveInt
    title: str
    description: str = ""
    deadline_days: int | None = Field(default=None, ge=0)


class ContributeRequest(BaseModel):
    pool_id: str
    amount: PositiveInt
    message: str | None = None
    is_anonymous: bool = False


# ---------------------------------------------------------------------------
# Read-side summaries
# ---------------------------------------------------------------------------


class VerificationStatusInfo(BaseModel):
    user_id: str
    name: str
    role: UserRole
    verification_status: VerificationStatus
    verification_request: VerificationRequest | None = None


class UserStats(BaseModel):
    user_id: str
    name: str
    email: str
    role: UserRole
    verification_status: VerificationStatus
    created_at: datetime
    last_active: datetime | None = None
    cases_submitted: int = 0
    pools_managed: int = 0
    contributions_made: int = 0
    amount_contributed: int = 0


class SystemOverview(BaseModel):
    total_doctors: int
    total_patients: int
    total_ngos: int
    verified_doctors: int
    unverified_doctors: int
    verified_ngos: int
    pending_verifications: int
    cases_by_status: dict[str, int] = Field(default_factory=dict)
    total_pools: int
    active_pools: int
    completed_pools: int
    total_raised: int
