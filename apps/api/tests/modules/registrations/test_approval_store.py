"""
Approval rollback against a real database session.

Runs the orchestrator on sqlite so a failed write really rolls the session
back and expires every loaded row. Failures are injected at the cursor.
"""

from collections.abc import AsyncGenerator
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import DefaultClause, event, func, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from maktab.core.database import Base
from maktab.modules.payments.discounts import SiblingDiscountPolicy
from maktab.modules.payments.issuer import PaymentSessionIssuer
from maktab.modules.registrations.errors import StoreWriteError
from maktab.modules.registrations.models import ApplicationStatus, PendingRegistration
from maktab.modules.registrations.orchestrator import ApprovalOrchestrator
from maktab.modules.students.models import EnrolledStudent


class FailOnStatement:
    """Raise OperationalError on the ``nth`` statement matching ``predicate``."""

    def __init__(self, predicate, nth: int = 1):
        self.predicate = predicate
        self.nth = nth
        self.seen = 0

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        if not self.predicate(statement):
            return
        self.seen += 1
        if self.seen == self.nth:
            raise OperationalError(statement, parameters, Exception("disk I/O error"))


def is_application_status_write(statement: str) -> bool:
    return statement.startswith("UPDATE pending_registrations")


def is_student_insert(statement: str) -> bool:
    return statement.startswith("INSERT INTO students ")


def is_payment_reference_write(statement: str) -> bool:
    return statement.startswith("UPDATE students") and "stripe_customer_id" in statement


@pytest_asyncio.fixture
async def engine(tmp_path, monkeypatch):
    """File-backed sqlite engine with the student code default made portable."""
    monkeypatch.setattr(
        EnrolledStudent.__table__.c.student_code,
        "server_default",
        DefaultClause(text("('MI' || lower(hex(randomblob(4))))")),
    )
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def fail_on(engine):
    """Attach a failing statement hook to the engine."""
    hooks = []

    def _attach(predicate, nth: int = 1) -> FailOnStatement:
        hook = FailOnStatement(predicate, nth)
        event.listen(engine.sync_engine, "before_cursor_execute", hook)
        hooks.append(hook)
        return hook

    yield _attach

    for hook in hooks:
        event.remove(engine.sync_engine, "before_cursor_execute", hook)


@pytest.fixture
def orchestrator(payment_provider, dispatcher, bus):
    return ApprovalOrchestrator(
        issuer=PaymentSessionIssuer(payment_provider, timeout_seconds=5),
        dispatcher=dispatcher,
        policy=SiblingDiscountPolicy(threshold=3, amount_off=2000, duration_months=60),
        bus=bus,
    )


@pytest.fixture
def add_applications(session_maker):
    """Insert pending applications from one guardian and return their ids."""

    async def _add(*first_names: str, guardian_email: str = "parent@example.com"):
        applications = [
            PendingRegistration(
                first_name=first_name,
                last_name="Patel",
                date_of_birth=date(2016, 4, 2),
                place_of_birth="Leicester",
                gender="male",
                address="12 Test Road",
                post_code="LE1 1AA",
                mobile_contact="07700900000",
                guardian_name="Amina Patel",
                guardian_email=guardian_email,
            )
            for first_name in first_names
        ]
        async with session_maker() as session:
            session.add_all(applications)
            await session.commit()
            return [application.id for application in applications]

    return _add


async def count_students(session_maker) -> int:
    async with session_maker() as session:
        result = await session.execute(select(func.count()).select_from(EnrolledStudent))
        return result.scalar_one()


async def application_statuses(session_maker, ids) -> list[ApplicationStatus]:
    async with session_maker() as session:
        result = await session.execute(
            select(PendingRegistration.id, PendingRegistration.status).where(
                PendingRegistration.id.in_(ids)
            )
        )
        found = dict(result.all())
        return [found[i] for i in ids]


class TestApprovalCommits:
    @pytest.mark.asyncio
    async def test_approval_persists_student_and_payment_reference(
        self, orchestrator, db_session, session_maker, add_applications
    ):
        (application_id,) = await add_applications("Yusuf")

        result = await orchestrator.approve_single(db_session, application_id, "Ustadh Bilal")

        assert result.warnings == []
        async with session_maker() as session:
            student = await session.get(EnrolledStudent, result.students[0].id)
        assert student.student_code.startswith("MI")
        assert student.checkout_session_id == result.payment_sessions[0].session_id
        assert await application_statuses(session_maker, [application_id]) == [
            ApplicationStatus.APPROVED
        ]


class TestApprovalRollsBack:
    @pytest.mark.asyncio
    async def test_status_write_failure_deletes_the_student(
        self, orchestrator, db_session, session_maker, add_applications, fail_on
    ):
        (application_id,) = await add_applications("Yusuf")
        fail_on(is_application_status_write)

        with pytest.raises(StoreWriteError) as exc_info:
            await orchestrator.approve_single(db_session, application_id, "Ustadh Bilal")

        assert exc_info.value.cleanup_incomplete is False
        assert exc_info.value.tier == "retryable"
        assert await count_students(session_maker) == 0
        assert await application_statuses(session_maker, [application_id]) == [
            ApplicationStatus.PENDING
        ]

    @pytest.mark.asyncio
    async def test_third_insert_failure_removes_earlier_siblings(
        self, orchestrator, db_session, session_maker, add_applications, fail_on, dispatcher
    ):
        ids = await add_applications("Yusuf", "Ibrahim", "Musa")
        inserts = fail_on(is_student_insert, nth=3)

        with pytest.raises(StoreWriteError) as exc_info:
            await orchestrator.approve_group(db_session, ids, "Ustadh Bilal")

        assert inserts.seen == 3
        assert exc_info.value.cleanup_incomplete is False
        assert await count_students(session_maker) == 0
        assert await application_statuses(session_maker, ids) == [ApplicationStatus.PENDING] * 3
        dispatcher.send_payment_link.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_status_write_failure_resets_the_first(
        self, orchestrator, db_session, session_maker, add_applications, fail_on
    ):
        ids = await add_applications("Yusuf", "Ibrahim")
        fail_on(is_application_status_write, nth=2)

        with pytest.raises(StoreWriteError):
            await orchestrator.approve_group(db_session, ids, "Ustadh Bilal")

        assert await count_students(session_maker) == 0
        assert await application_statuses(session_maker, ids) == [ApplicationStatus.PENDING] * 2


class TestPostCommitStoreFailure:
    @pytest.mark.asyncio
    async def test_payment_reference_failure_is_a_warning(
        self, orchestrator, db_session, session_maker, add_applications, fail_on, dispatcher
    ):
        (application_id,) = await add_applications("Yusuf")
        fail_on(is_payment_reference_write)

        result = await orchestrator.approve_single(db_session, application_id, "Ustadh Bilal")

        assert [w.service for w in result.warnings] == ["store"]
        assert result.warnings[0].student_ids == [result.students[0].id]
        assert await count_students(session_maker) == 1
        assert await application_statuses(session_maker, [application_id]) == [
            ApplicationStatus.APPROVED
        ]
        dispatcher.send_payment_link.assert_awaited_once()
        assert dispatcher.send_payment_link.call_args.kwargs["student_names"] == ["Yusuf Patel"]

    @pytest.mark.asyncio
    async def test_group_payment_reference_failure_still_emails(
        self, orchestrator, db_session, session_maker, add_applications, fail_on, dispatcher
    ):
        ids = await add_applications("Yusuf", "Ibrahim")
        fail_on(is_payment_reference_write)

        result = await orchestrator.approve_group(db_session, ids, "Ustadh Bilal")

        assert len(result.students) == 2
        assert [w.service for w in result.warnings] == ["store"]
        assert await count_students(session_maker) == 2
        dispatcher.send_payment_link.assert_awaited_once()
