"""
Registration domain events.

Published on the in-process event bus after the state they describe is
committed.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from maktab.core.events import EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentsProvisioned:
    billing_batch_id: UUID
    application_ids: list[UUID]
    student_ids: list[UUID]
    guardian_email: str
    reviewed_by: str


@dataclass(frozen=True)
class ApplicationRejected:
    application_id: UUID
    guardian_email: str
    reviewed_by: str
    reason: str


@dataclass(frozen=True)
class StudentActivated:
    student_id: UUID
    performed_by: str
    justification: str


@dataclass(frozen=True)
class RegistrationCancelled:
    student_id: UUID
    student_code: str
    performed_by: str
    reason: str


@dataclass(frozen=True)
class CompensationFailed:
    step: str
    record_id: str
    error: str
    related_ids: list[str] = field(default_factory=list)


async def log_event(event) -> None:
    if isinstance(event, CompensationFailed):
        logger.critical(f"Event {type(event).__name__}: {event}")
    else:
        logger.info(f"Event {type(event).__name__}: {event}")


def register_event_logging(bus: EventBus) -> None:
    """Subscribe the audit logger to every registration event."""
    for event_type in (
        StudentsProvisioned,
        ApplicationRejected,
        StudentActivated,
        RegistrationCancelled,
        CompensationFailed,
    ):
        bus.subscribe(event_type, log_event)
