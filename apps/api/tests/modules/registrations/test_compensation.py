"""
Tests for the compensation stack and student rollback.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from maktab.core.events import EventBus
from maktab.modules.registrations.errors import CompensationError, StoreWriteError
from maktab.modules.registrations.events import CompensationFailed
from maktab.modules.registrations.placement import Placement
from maktab.modules.registrations.provisioner import CompensationStack, Provisioner
from maktab.modules.students.models import StudentRecord, StudentStatus


class TestCompensationStack:
    @pytest.mark.asyncio
    async def test_unwinds_newest_first(self):
        order = []
        stack = CompensationStack(EventBus())

        for name in ("first", "second", "third"):
            stack.push(name, name, AsyncMock(side_effect=lambda n=name: order.append(n)))

        errors = await stack.unwind()

        assert errors == []
        assert order == ["third", "second", "first"]
        assert len(stack) == 0

    @pytest.mark.asyncio
    async def test_failing_undo_does_not_stop_the_rest(self):
        bus = EventBus()
        published = []

        async def capture(event):
            published.append(event)

        bus.subscribe(CompensationFailed, capture)
        survivor = AsyncMock()
        stack = CompensationStack(bus)
        stack.push("delete_student", "s1", survivor)
        stack.push("reset_application", "a1", AsyncMock(side_effect=StoreWriteError("down")))

        errors = await stack.unwind()
        await bus.drain()

        survivor.assert_awaited_once()
        assert len(errors) == 1
        assert isinstance(errors[0], CompensationError)
        assert errors[0].step == "reset_application"
        assert published[0].record_id == "a1"

    @pytest.mark.asyncio
    async def test_clear_forgets_undos(self):
        undo = AsyncMock()
        stack = CompensationStack(EventBus())
        stack.push("delete_student", "s1", undo)

        stack.clear()
        await stack.unwind()

        undo.assert_not_awaited()


class TestProvisionerCompensate:
    @pytest.mark.asyncio
    async def test_deletes_only_pending_payment_student(self, mock_db, new_student, student_store):
        student = StudentRecord.from_model(new_student())

        await Provisioner().compensate(mock_db, student)

        assert student.id not in student_store.students

    @pytest.mark.asyncio
    async def test_student_activated_meanwhile_is_kept(self, mock_db, new_student, student_store):
        student = StudentRecord.from_model(new_student(status=StudentStatus.ACTIVE))

        await Provisioner().compensate(mock_db, student)

        assert student.id in student_store.students

    @pytest.mark.asyncio
    async def test_failed_delete_raises_and_records_orphan(
        self, mock_db, new_student, student_store
    ):
        student = StudentRecord.from_model(new_student())
        student_store.fail_delete = True

        with pytest.raises(CompensationError) as exc_info:
            await Provisioner().compensate(mock_db, student)

        assert exc_info.value.record_id == student.id
        assert student_store.audit_log[0]["student_id"] == student.id
        assert student_store.audit_log[0]["performed_by"] == "SYSTEM"


class TestProvisionerCreate:
    @pytest.mark.asyncio
    async def test_returns_detached_record(self, mock_db, new_application, student_store):
        application = new_application()

        record = await Provisioner().create_student(
            mock_db,
            application,
            Placement(maktab="boys", group="A1"),
            billing_batch_id=uuid4(),
            sibling_count=1,
            has_other_maktab=False,
        )

        assert isinstance(record, StudentRecord)
        stored = student_store.students[record.id]
        assert record.student_code == stored.student_code
        assert record.application_id == application.id
