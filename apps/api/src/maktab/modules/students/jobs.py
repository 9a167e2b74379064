"""
Students Background Jobs

A failed rollback can leave a pending_payment student with no approved
registration behind it. This job finds such students and logs them at
CRITICAL so an operator can clean them up. It never deletes anything.
"""

import logging
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from maktab.core.config import settings
from maktab.core.database import async_session_maker
from maktab.core.scheduler import register_job
from maktab.modules.students.repository import StudentRepository

logger = logging.getLogger(__name__)

JOB_ID_REPORT_ORPHANS = "students_report_orphans"


async def report_orphaned_students() -> dict[str, Any]:
    """
    Log every orphaned student.

    Returns:
        Summary with the orphan count and their ids
    """
    logger.info("Starting orphaned student report job")

    async with async_session_maker() as db:
        orphans = await StudentRepository.list_orphans(db)

    for student in orphans:
        logger.critical(
            f"Orphaned student {student.student_code} ({student.id}): "
            f"application={student.application_id}, guardian={student.guardian_email}. "
            "Manual cleanup required."
        )

    logger.info(f"Orphaned student report complete: {len(orphans)} found")
    return {
        "orphans": len(orphans),
        "student_ids": [str(student.id) for student in orphans],
    }


def register_student_jobs() -> None:
    """Register student background jobs with the scheduler."""
    register_job(
        job_id=JOB_ID_REPORT_ORPHANS,
        func=report_orphaned_students,
        trigger=IntervalTrigger(minutes=settings.orphan_report_interval_minutes),
    )
    logger.info("Student background jobs registered")
