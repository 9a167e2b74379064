"""
Registration Admin Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Re-use enums from models (they work with Pydantic too!)
from maktab.modules.registrations.models import ApplicationStatus, RegistrationType
from maktab.modules.students.models import StudentStatus

# ============================================
# Requests
# ============================================


class ApproveRequest(BaseModel):
    """Approve a single application."""

    reviewer_name: str = Field(..., min_length=1, max_length=200)
    assigned_group: str | None = Field(None, max_length=10)
    maktab: str | None = Field(None, pattern="^(boys|girls)$")


class ApproveGroupRequest(BaseModel):
    """Approve several applications from one guardian."""

    application_ids: list[UUID] = Field(..., min_length=1)
    reviewer_name: str = Field(..., min_length=1, max_length=200)
    group_assignments: dict[UUID, str] = Field(default_factory=dict)
    maktab_overrides: dict[UUID, str] = Field(default_factory=dict)
    sibling_count: int | None = Field(None, ge=1)


# Reason and justification are checked for blank text by the orchestrator,
# so the schema only bounds their length.
class RejectRequest(BaseModel):
    reviewer_name: str = Field(..., min_length=1, max_length=200)
    reason: str = Field("", max_length=2000)


class ManualApproveRequest(BaseModel):
    approver_name: str = Field(..., min_length=1, max_length=200)
    justification: str = Field("", max_length=2000)


class ManualApproveGroupRequest(ManualApproveRequest):
    student_ids: list[UUID] = Field(..., min_length=1)


class CancelRequest(BaseModel):
    canceller_name: str = Field(..., min_length=1, max_length=200)
    reason: str = Field("", max_length=2000)


# ============================================
# Responses
# ============================================


class WarningResponse(BaseModel):
    service: str
    message: str
    tier: str
    student_ids: list[UUID] = Field(default_factory=list)


class PendingApplicationItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    date_of_birth: date
    gender: str
    registration_type: RegistrationType
    status: ApplicationStatus
    medical_notes: str | None = None
    created_at: datetime


class PendingFamilyResponse(BaseModel):
    guardian_email: EmailStr
    guardian_name: str
    applications: list[PendingApplicationItem]


class StudentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_code: str
    name: str
    maktab: str
    student_group: str | None = None
    status: StudentStatus
    guardian_email: str | None = None
    application_id: UUID | None = None
    stripe_customer_id: str | None = None
    checkout_session_id: str | None = None
    created_at: datetime


class PaymentSessionResponse(BaseModel):
    session_id: str
    url: str
    student_ids: list[UUID]
    discount_applied: bool


class ApprovalResponse(BaseModel):
    students: list[StudentResponse]
    payment_sessions: list[PaymentSessionResponse]
    warnings: list[WarningResponse]
    message: str


class DecisionResponse(BaseModel):
    message: str
    warnings: list[WarningResponse] = Field(default_factory=list)


class ManualApproveGroupResponse(BaseModel):
    activated: list[UUID]
    already_active: list[UUID]
    failed: dict[UUID, str]
    warnings: list[WarningResponse]


class PaymentLinkResponse(BaseModel):
    session: PaymentSessionResponse
    warnings: list[WarningResponse]
