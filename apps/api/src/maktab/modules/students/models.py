"""
Student Models

Enrolled students and their audit trail. A student row is created when an
application is approved and starts in ``pending_payment`` until payment
is confirmed or an admin bypasses it.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Sequence,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from maktab.core.database import Base

# Human-readable codes: MI0001, MI0002, ...
STUDENT_CODE_SEQUENCE = Sequence("student_code_seq", metadata=Base.metadata)


class StudentStatus(str, enum.Enum):
    """Enrollment status of a student."""

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    LEFT = "left"


class EnrolledStudent(Base):
    """
    Authoritative student record.

    Created only by the provisioner. ``billing_batch_id`` ties together the
    students approved in one operation so a payment link can be re-issued
    for the whole family.
    """

    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        server_default=text("'MI' || lpad(nextval('student_code_seq')::text, 4, '0')"),
    )

    # Identity and placement
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    maktab: Mapped[str] = mapped_column(String(10), nullable=False)
    student_group: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[StudentStatus] = mapped_column(
        Enum(StudentStatus, name="student_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=StudentStatus.PENDING_PAYMENT,
    )
    admission_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Copied from the application
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    place_of_birth: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    ethnic_origin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    medical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    post_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    home_contact: Mapped[str | None] = mapped_column(String(20), nullable=True)
    mobile_contact: Mapped[str | None] = mapped_column(String(20), nullable=True)
    guardian_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    guardian_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Provisioning links
    application_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pending_registrations.id", ondelete="SET NULL"),
        nullable=True,
    )
    billing_batch_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    sibling_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    has_other_maktab: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Payment references
    stripe_customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_students_status", "status"),
        Index("ix_students_guardian_email", "guardian_email"),
        Index("ix_students_billing_batch", "billing_batch_id", "maktab"),
    )


@dataclass
class StudentRecord:
    """
    Plain copy of a student's columns, detached from any session.

    A failed write rolls the shared session back and expires every loaded
    instance, so the approval pipeline keeps these copies instead of ORM
    rows once a student has been read or created.
    """

    id: uuid.UUID
    student_code: str
    name: str
    maktab: str
    student_group: str | None
    status: StudentStatus
    guardian_email: str | None
    guardian_name: str | None
    application_id: uuid.UUID | None
    billing_batch_id: uuid.UUID | None
    sibling_count: int
    has_other_maktab: bool
    stripe_customer_id: str | None
    checkout_session_id: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, student: "EnrolledStudent") -> "StudentRecord":
        return cls(
            id=student.id,
            student_code=student.student_code,
            name=student.name,
            maktab=student.maktab,
            student_group=student.student_group,
            status=student.status,
            guardian_email=student.guardian_email,
            guardian_name=student.guardian_name,
            application_id=student.application_id,
            billing_batch_id=student.billing_batch_id,
            sibling_count=student.sibling_count,
            has_other_maktab=student.has_other_maktab,
            stripe_customer_id=student.stripe_customer_id,
            checkout_session_id=student.checkout_session_id,
            created_at=student.created_at,
        )


class StudentAuditLog(Base):
    """Audit trail of admin actions taken on a student."""

    __tablename__ = "student_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # No FK: entries must outlive the student they describe
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    student_name: Mapped[str] = mapped_column(String(300), nullable=False)
    maktab: Mapped[str] = mapped_column(String(10), nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_student_audit_logs_student_id", "student_id"),)
