"""
Registration Models

Database model for guardian-submitted maktab applications awaiting an
admin decision. One row per child.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from maktab.core.database import Base


class ApplicationStatus(str, enum.Enum):
    """Status of a pending registration."""

    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    APPROVED = "approved"
    REJECTED = "rejected"


class RegistrationType(str, enum.Enum):
    """Program track requested by the guardian."""

    MAKTAB = "maktab"
    HIFZ = "hifz"


class PendingRegistration(Base):
    """
    Maktab registration application.

    Created by the public intake form. Mutated only by approve/reject
    decisions; never deleted by the approval pipeline.
    """

    __tablename__ = "pending_registrations"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Child
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    place_of_birth: Mapped[str] = mapped_column(String(100), nullable=False)
    gender: Mapped[str] = mapped_column(String(10), nullable=False)
    ethnic_origin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    medical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Address and contact
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    post_code: Mapped[str] = mapped_column(String(10), nullable=False)
    home_contact: Mapped[str | None] = mapped_column(String(20), nullable=True)
    mobile_contact: Mapped[str] = mapped_column(String(20), nullable=False)
    mother_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    mother_mobile: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Guardian
    guardian_name: Mapped[str] = mapped_column(String(200), nullable=False)
    guardian_email: Mapped[str] = mapped_column(String(255), nullable=False)

    registration_type: Mapped[RegistrationType] = mapped_column(
        Enum(RegistrationType, name="registration_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RegistrationType.MAKTAB,
    )

    # Decision tracking
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="registration_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_group: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Audit timestamps
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
        Index("ix_pending_registrations_status", "status"),
        Index("ix_pending_registrations_guardian_email", "guardian_email"),
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(part for part in parts if part)
