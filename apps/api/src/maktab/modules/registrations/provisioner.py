"""
Student provisioning and compensation.

The record store has no transactions spanning several calls, so every
forward write that must be reversible pushes its undo onto a
CompensationStack. On failure the stack is unwound newest first.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from maktab.core.events import EventBus, event_bus
from maktab.modules.registrations.errors import CompensationError, StoreWriteError
from maktab.modules.registrations.events import CompensationFailed
from maktab.modules.registrations.models import PendingRegistration
from maktab.modules.registrations.placement import Placement
from maktab.modules.students.models import StudentRecord, StudentStatus
from maktab.modules.students.repository import StudentRepository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


@dataclass
class UndoStep:
    name: str
    record_id: Any
    undo: Callable[[], Awaitable[Any]]


class CompensationStack:
    """Undo actions for the writes completed so far in one operation."""

    def __init__(self, bus: EventBus | None = None):
        self._steps: list[UndoStep] = []
        self.bus = bus or event_bus

    def __len__(self) -> int:
        return len(self._steps)

    def push(self, name: str, record_id: Any, undo: Callable[[], Awaitable[Any]]) -> None:
        self._steps.append(UndoStep(name, record_id, undo))

    def clear(self) -> None:
        """Forget all undos once the operation's writes are complete."""
        self._steps.clear()

    async def unwind(self) -> list[CompensationError]:
        """
        Run every undo, newest first.

        A failing undo does not stop the others. Failures are returned,
        never raised.
        """
        errors: list[CompensationError] = []
        while self._steps:
            step = self._steps.pop()
            try:
                await step.undo()
                logger.info(f"Compensated {step.name} for {step.record_id}")
            except Exception as e:
                error = e if isinstance(e, CompensationError) else CompensationError(
                    step.name, step.record_id, e
                )
                logger.critical(
                    f"Compensation {step.name} failed for {step.record_id}: {e}. "
                    "Manual cleanup required.",
                    exc_info=True,
                )
                self.bus.publish(CompensationFailed(step.name, str(step.record_id), str(e)))
                errors.append(error)
        return errors


class Provisioner:
    async def create_student(
        self,
        db: AsyncSession,
        application: PendingRegistration,
        placement: Placement,
        *,
        billing_batch_id: UUID,
        sibling_count: int,
        has_other_maktab: bool,
    ) -> StudentRecord:
        """
        Insert the student for an application. The store assigns the student code.

        Returns a detached record; later rollbacks on ``db`` cannot expire it.
        """
        student = await StudentRepository.create(
            db,
            application=application,
            maktab=placement.maktab,
            student_group=placement.group,
            billing_batch_id=billing_batch_id,
            sibling_count=sibling_count,
            has_other_maktab=has_other_maktab,
        )
        return StudentRecord.from_model(student)

    async def compensate(self, db: AsyncSession, student: StudentRecord) -> None:
        """
        Delete a student created earlier in the same operation.

        Raises:
            CompensationError: If the delete fails. The student is left as
                an orphaned pending_payment record for manual cleanup.
        """
        try:
            deleted = await StudentRepository.delete(
                db, student.id, expected_status=StudentStatus.PENDING_PAYMENT
            )
        except StoreWriteError as e:
            logger.critical(
                f"Orphaned student {student.student_code} ({student.id}): rollback delete "
                f"failed, manual cleanup required: {e}"
            )
            await self._record_orphan(db, student, e)
            raise CompensationError("delete_student", student.id, e) from e

        if not deleted:
            logger.warning(f"Student {student.id} was already removed or no longer pending")

    async def _record_orphan(
        self, db: AsyncSession, student: StudentRecord, cause: Exception
    ) -> None:
        try:
            await StudentRepository.add_audit_log(
                db,
                student=student,
                action=f"SYSTEM: rollback failed, manual cleanup required ({cause})",
                performed_by=SYSTEM_ACTOR,
            )
        except StoreWriteError as e:
            logger.error(f"Could not write orphan audit log for {student.id}: {e}")
