"""
Student Repository

Database operations for enrolled students and their audit logs.
"""

import logging
from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from maktab.modules.registrations.errors import StoreWriteError
from maktab.modules.registrations.models import ApplicationStatus, PendingRegistration
from maktab.modules.students.models import (
    EnrolledStudent,
    StudentAuditLog,
    StudentRecord,
    StudentStatus,
)

logger = logging.getLogger(__name__)

# Valid status transitions
VALID_STUDENT_TRANSITIONS: dict[StudentStatus, set[StudentStatus]] = {
    StudentStatus.PENDING_PAYMENT: {StudentStatus.ACTIVE, StudentStatus.LEFT},
    StudentStatus.ACTIVE: {StudentStatus.LEFT},
    StudentStatus.LEFT: set(),  # Terminal
}


class InvalidStudentTransitionError(ValueError):
    """Raised when an invalid student status transition is attempted."""

    def __init__(self, current_status: StudentStatus, new_status: StudentStatus):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Invalid student status transition: {current_status.value} -> {new_status.value}"
        )


class StudentRepository:
    """Repository for student database operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        application: PendingRegistration,
        maktab: str,
        student_group: str | None,
        billing_batch_id: UUID,
        sibling_count: int,
        has_other_maktab: bool,
    ) -> EnrolledStudent:
        """
        Insert a pending_payment student built from an application.

        The database assigns ``student_code``; the row is refreshed so the
        caller sees it.

        Raises:
            StoreWriteError: If the insert fails
        """
        # Rollback expires the application, so log with the id read up front
        application_id = application.id
        student = EnrolledStudent(
            name=application.full_name,
            maktab=maktab,
            student_group=student_group,
            status=StudentStatus.PENDING_PAYMENT,
            admission_date=date.today(),
            date_of_birth=application.date_of_birth,
            place_of_birth=application.place_of_birth,
            gender=application.gender,
            ethnic_origin=application.ethnic_origin,
            medical_notes=application.medical_notes,
            address=application.address,
            post_code=application.post_code,
            home_contact=application.home_contact,
            mobile_contact=application.mobile_contact,
            guardian_name=application.guardian_name,
            guardian_email=application.guardian_email.strip().lower(),
            application_id=application_id,
            billing_batch_id=billing_batch_id,
            sibling_count=sibling_count,
            has_other_maktab=has_other_maktab,
        )
        try:
            db.add(student)
            await db.commit()
            await db.refresh(student)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to create student for application {application_id}: {e}")
            raise StoreWriteError(
                f"Failed to create student for application {application_id}"
            ) from e

        logger.info(f"Created student {student.student_code} ({student.id}) in {maktab} maktab")
        return student

    @staticmethod
    async def get_by_id(db: AsyncSession, student_id: UUID) -> EnrolledStudent | None:
        result = await db.execute(select(EnrolledStudent).where(EnrolledStudent.id == student_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_ids(
        db: AsyncSession, student_ids: Iterable[UUID]
    ) -> dict[UUID, EnrolledStudent]:
        id_list = list(student_ids)
        if not id_list:
            return {}
        result = await db.execute(select(EnrolledStudent).where(EnrolledStudent.id.in_(id_list)))
        return {student.id: student for student in result.scalars().all()}

    @staticmethod
    async def delete(
        db: AsyncSession,
        student_id: UUID,
        *,
        expected_status: StudentStatus | None = None,
    ) -> bool:
        """
        Delete a student, optionally only while it is in ``expected_status``.

        Returns:
            True if a row was deleted

        Raises:
            StoreWriteError: If the delete fails
        """
        stmt = delete(EnrolledStudent).where(EnrolledStudent.id == student_id)
        if expected_status is not None:
            stmt = stmt.where(EnrolledStudent.status == expected_status)

        try:
            result = await db.execute(stmt.returning(EnrolledStudent.id))
            deleted = result.scalar_one_or_none() is not None
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to delete student {student_id}: {e}")
            raise StoreWriteError(f"Failed to delete student {student_id}") from e
        return deleted

    @staticmethod
    async def update_status(
        db: AsyncSession,
        student_id: UUID,
        status: StudentStatus,
        *,
        expected: StudentStatus,
    ) -> bool:
        """
        Move a student from ``expected`` to ``status``.

        Returns:
            True if the row was updated, False if it was no longer in ``expected``

        Raises:
            InvalidStudentTransitionError: If expected -> status is not allowed
            StoreWriteError: If the write fails
        """
        if status not in VALID_STUDENT_TRANSITIONS.get(expected, set()):
            raise InvalidStudentTransitionError(expected, status)

        try:
            result = await db.execute(
                update(EnrolledStudent)
                .where(EnrolledStudent.id == student_id, EnrolledStudent.status == expected)
                .values(status=status)
                .returning(EnrolledStudent.id)
            )
            updated = result.scalar_one_or_none() is not None
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to update student {student_id}: {e}")
            raise StoreWriteError(f"Failed to update student {student_id}") from e
        return updated

    @staticmethod
    async def set_payment_reference(
        db: AsyncSession,
        student_ids: list[UUID],
        *,
        customer_id: str,
        checkout_session_id: str,
    ) -> None:
        """Record the billing customer and outstanding checkout session."""
        try:
            await db.execute(
                update(EnrolledStudent)
                .where(EnrolledStudent.id.in_(student_ids))
                .values(stripe_customer_id=customer_id, checkout_session_id=checkout_session_id)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StoreWriteError(f"Failed to record payment reference for {student_ids}") from e

    @staticmethod
    async def list_pending_payment(
        db: AsyncSession, maktab: str | None = None
    ) -> list[EnrolledStudent]:
        query = select(EnrolledStudent).where(
            EnrolledStudent.status == StudentStatus.PENDING_PAYMENT
        )
        if maktab:
            query = query.where(EnrolledStudent.maktab == maktab)
        result = await db.execute(query.order_by(EnrolledStudent.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def list_billing_group(
        db: AsyncSession,
        billing_batch_id: UUID,
        maktab: str,
    ) -> list[EnrolledStudent]:
        """Outstanding students billed together with the same approval."""
        result = await db.execute(
            select(EnrolledStudent)
            .where(
                EnrolledStudent.billing_batch_id == billing_batch_id,
                EnrolledStudent.maktab == maktab,
                EnrolledStudent.status == StudentStatus.PENDING_PAYMENT,
            )
            .order_by(EnrolledStudent.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_orphans(db: AsyncSession) -> list[EnrolledStudent]:
        """
        pending_payment students with no approved application behind them.

        These are left behind when a rollback delete fails.
        """
        result = await db.execute(
            select(EnrolledStudent)
            .outerjoin(
                PendingRegistration,
                EnrolledStudent.application_id == PendingRegistration.id,
            )
            .where(
                EnrolledStudent.status == StudentStatus.PENDING_PAYMENT,
                or_(
                    PendingRegistration.id.is_(None),
                    PendingRegistration.status != ApplicationStatus.APPROVED,
                ),
            )
            .order_by(EnrolledStudent.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_audit_log(
        db: AsyncSession,
        *,
        student: StudentRecord,
        action: str,
        performed_by: str,
    ) -> None:
        student_id = student.id
        db.add(
            StudentAuditLog(
                student_id=student_id,
                student_name=student.name,
                maktab=student.maktab,
                action=action,
                performed_by=performed_by,
            )
        )
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StoreWriteError(f"Failed to write audit log for student {student_id}") from e
