"""
Registrations Repository

Database operations for pending registrations.

Design Principles:
- Single responsibility - only database operations, no business logic
- Every write commits on its own; there is no transaction spanning calls
- Decisions use status-guarded conditional updates so two concurrent
  decisions on one application cannot both succeed
- Write failures roll the session back and raise StoreWriteError
"""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from maktab.modules.registrations.errors import StoreWriteError
from maktab.modules.registrations.models import ApplicationStatus, PendingRegistration

logger = logging.getLogger(__name__)


async def get_by_id(db: AsyncSession, id: UUID) -> PendingRegistration | None:
    """Get a registration by ID."""
    result = await db.execute(select(PendingRegistration).where(PendingRegistration.id == id))
    return result.scalar_one_or_none()


async def get_by_ids(db: AsyncSession, ids: Iterable[UUID]) -> dict[UUID, PendingRegistration]:
    """Get registrations keyed by ID. Missing IDs are absent from the result."""
    id_list = list(ids)
    if not id_list:
        return {}
    result = await db.execute(
        select(PendingRegistration).where(PendingRegistration.id.in_(id_list))
    )
    return {registration.id: registration for registration in result.scalars().all()}


async def list_by_status(
    db: AsyncSession,
    status: ApplicationStatus,
) -> list[PendingRegistration]:
    """Get registrations in a status, newest first."""
    result = await db.execute(
        select(PendingRegistration)
        .where(PendingRegistration.status == status)
        .order_by(PendingRegistration.created_at.desc())
    )
    return list(result.scalars().all())


# Valid status transitions
VALID_STATUS_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.AWAITING_PAYMENT,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.AWAITING_PAYMENT: {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.APPROVED: set(),  # Terminal
    ApplicationStatus.REJECTED: set(),  # Terminal
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(
        self,
        current_status: ApplicationStatus,
        new_status: ApplicationStatus,
    ):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {sorted(s.value for s in valid_transitions)}"
        )


async def _conditional_update(
    db: AsyncSession,
    id: UUID,
    expected: ApplicationStatus,
    values: dict,
) -> bool:
    try:
        result = await db.execute(
            update(PendingRegistration)
            .where(PendingRegistration.id == id, PendingRegistration.status == expected)
            .values(**values)
            .returning(PendingRegistration.id)
        )
        updated = result.scalar_one_or_none() is not None
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to update registration {id}: {e}", exc_info=True)
        raise StoreWriteError(f"Failed to update registration {id}") from e
    return updated


async def update_status(
    db: AsyncSession,
    id: UUID,
    status: ApplicationStatus,
    *,
    expected: ApplicationStatus,
    **fields,
) -> bool:
    """
    Move a registration from ``expected`` to ``status``.

    Only rows still in ``expected`` are touched, so a concurrent decision
    makes this a no-op instead of overwriting it.

    Args:
        db: Database session
        id: Registration ID
        status: New status
        expected: Status the row must currently have
        **fields: Additional columns to set (reviewed_at, reviewed_by, ...)

    Returns:
        True if the row was updated, False if it was no longer in ``expected``

    Raises:
        InvalidStatusTransitionError: If expected -> status is not allowed
        StoreWriteError: If the write fails
    """
    if status not in VALID_STATUS_TRANSITIONS.get(expected, set()):
        raise InvalidStatusTransitionError(expected, status)

    values = {"status": status}
    for key, value in fields.items():
        if hasattr(PendingRegistration, key):
            values[key] = value

    return await _conditional_update(db, id, expected, values)


async def reset_to_pending(
    db: AsyncSession,
    id: UUID,
    *,
    from_status: ApplicationStatus,
) -> bool:
    """
    Undo a decision made earlier in the same operation.

    Not a normal lifecycle transition; used only by compensation.

    Returns:
        True if the row was reset
    """
    return await _conditional_update(
        db,
        id,
        from_status,
        {
            "status": ApplicationStatus.PENDING,
            "reviewed_at": None,
            "reviewed_by": None,
            "assigned_group": None,
            "rejection_reason": None,
        },
    )
