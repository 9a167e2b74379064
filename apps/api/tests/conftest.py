"""
Shared fixtures for registration pipeline tests.

The record store and payment provider are replaced with in-memory fakes
so orchestrator tests can inject failures at any write.
"""

from datetime import UTC, date, datetime
from itertools import count
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest

from maktab.core import locks
from maktab.core.events import EventBus
from maktab.modules.payments.discounts import SiblingDiscountPolicy
from maktab.modules.payments.issuer import PaymentSessionIssuer
from maktab.modules.payments.provider import CheckoutSession
from maktab.modules.registrations.errors import ExternalServiceError, StoreWriteError
from maktab.modules.registrations.models import (
    ApplicationStatus,
    PendingRegistration,
    RegistrationType,
)
from maktab.modules.registrations.orchestrator import ApprovalOrchestrator
from maktab.modules.registrations.repository import (
    VALID_STATUS_TRANSITIONS,
    InvalidStatusTransitionError,
)
from maktab.modules.students.models import EnrolledStudent, StudentStatus

# ============================================
# Fakes
# ============================================


class FakeApplicationStore:
    """Stands in for the registrations repository module."""

    VALID_STATUS_TRANSITIONS = VALID_STATUS_TRANSITIONS

    def __init__(self):
        self.applications: dict[UUID, PendingRegistration] = {}
        self.fail_status_write_for: set[UUID] = set()
        self.fail_reset = False

    def add(self, application):
        self.applications[application.id] = application
        return application

    async def get_by_id(self, db, id):
        return self.applications.get(id)

    async def get_by_ids(self, db, ids):
        return {i: self.applications[i] for i in ids if i in self.applications}

    async def list_by_status(self, db, status):
        found = [a for a in self.applications.values() if a.status == status]
        return sorted(found, key=lambda a: a.created_at, reverse=True)

    async def update_status(self, db, id, status, *, expected, **fields):
        if status not in VALID_STATUS_TRANSITIONS.get(expected, set()):
            raise InvalidStatusTransitionError(expected, status)
        if id in self.fail_status_write_for:
            raise StoreWriteError(f"Failed to update registration {id}")
        application = self.applications.get(id)
        if application is None or application.status != expected:
            return False
        application.status = status
        for key, value in fields.items():
            setattr(application, key, value)
        return True

    async def reset_to_pending(self, db, id, *, from_status):
        if self.fail_reset:
            raise StoreWriteError(f"Failed to update registration {id}")
        application = self.applications.get(id)
        if application is None or application.status != from_status:
            return False
        application.status = ApplicationStatus.PENDING
        application.reviewed_at = None
        application.reviewed_by = None
        application.assigned_group = None
        application.rejection_reason = None
        return True


class FakeStudentStore:
    """Stands in for StudentRepository."""

    def __init__(self):
        self.students: dict[UUID, EnrolledStudent] = {}
        self.audit_log: list[dict] = []
        self.create_calls = 0
        self.fail_create_on: int | None = None  # 1-based call number
        self.fail_delete = False
        self.fail_update_for: set[UUID] = set()
        self.fail_audit = False
        self.fail_payment_reference = False
        self._codes = count(1)

    def add(self, student):
        self.students[student.id] = student
        return student

    async def create(
        self,
        db,
        *,
        application,
        maktab,
        student_group,
        billing_batch_id,
        sibling_count,
        has_other_maktab,
    ):
        self.create_calls += 1
        if self.fail_create_on == self.create_calls:
            raise StoreWriteError(f"Failed to create student for application {application.id}")
        student = make_student(
            name=application.full_name,
            maktab=maktab,
            student_group=student_group,
            guardian_email=application.guardian_email.strip().lower(),
            guardian_name=application.guardian_name,
            application_id=application.id,
            billing_batch_id=billing_batch_id,
            sibling_count=sibling_count,
            has_other_maktab=has_other_maktab,
            student_code=f"MI{next(self._codes):04d}",
        )
        return self.add(student)

    async def get_by_id(self, db, student_id):
        return self.students.get(student_id)

    async def get_by_ids(self, db, student_ids):
        return {i: self.students[i] for i in student_ids if i in self.students}

    async def delete(self, db, student_id, *, expected_status=None):
        if self.fail_delete:
            raise StoreWriteError(f"Failed to delete student {student_id}")
        student = self.students.get(student_id)
        if student is None:
            return False
        if expected_status is not None and student.status != expected_status:
            return False
        del self.students[student_id]
        return True

    async def update_status(self, db, student_id, status, *, expected):
        if student_id in self.fail_update_for:
            raise StoreWriteError(f"Failed to update student {student_id}")
        student = self.students.get(student_id)
        if student is None or student.status != expected:
            return False
        student.status = status
        return True

    async def set_payment_reference(self, db, student_ids, *, customer_id, checkout_session_id):
        if self.fail_payment_reference:
            raise StoreWriteError(f"Failed to record payment reference for {student_ids}")
        for student_id in student_ids:
            self.students[student_id].stripe_customer_id = customer_id
            self.students[student_id].checkout_session_id = checkout_session_id

    async def list_pending_payment(self, db, maktab=None):
        return [
            s
            for s in self.students.values()
            if s.status == StudentStatus.PENDING_PAYMENT and (maktab is None or s.maktab == maktab)
        ]

    async def list_billing_group(self, db, billing_batch_id, maktab):
        return [
            s
            for s in self.students.values()
            if s.billing_batch_id == billing_batch_id
            and s.maktab == maktab
            and s.status == StudentStatus.PENDING_PAYMENT
        ]

    async def list_orphans(self, db):
        return []

    async def add_audit_log(self, db, *, student, action, performed_by):
        if self.fail_audit:
            raise StoreWriteError(f"Failed to write audit log for student {student.id}")
        entry = {"student_id": student.id, "action": action, "performed_by": performed_by}
        self.audit_log.append(entry)
        return entry


class FakePaymentProvider:
    """In-memory PaymentProvider that records every call."""

    def __init__(self):
        self.customers: dict[tuple[str, str], str] = {}
        self.coupons: dict[str, dict] = {}
        self.sessions: list[dict] = []
        self.fail_checkout = False

    async def find_or_create_customer(self, email, name, maktab):
        key = (maktab, email)
        if key not in self.customers:
            self.customers[key] = f"cus_{len(self.customers) + 1}"
        return self.customers[key]

    async def ensure_discount_definition(self, coupon_id, discount, quantity, maktab):
        self.coupons.setdefault(
            coupon_id,
            {"amount_off": discount.amount_off * quantity, "months": discount.duration_months},
        )
        return coupon_id

    async def create_checkout_session(self, *, customer_id, maktab, quantity, coupon_id, metadata):
        if self.fail_checkout:
            raise ExternalServiceError("payment", "card network unavailable")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "id": session_id,
                "customer_id": customer_id,
                "maktab": maktab,
                "quantity": quantity,
                "coupon_id": coupon_id,
                "metadata": metadata,
            }
        )
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")


# ============================================
# Factories
# ============================================


def make_application(
    *,
    first_name="Yusuf",
    last_name="Patel",
    gender="male",
    guardian_email="parent@example.com",
    guardian_name="Amina Patel",
    registration_type=RegistrationType.MAKTAB,
    status=ApplicationStatus.PENDING,
):
    application = MagicMock(spec=PendingRegistration)
    application.id = uuid4()
    application.first_name = first_name
    application.middle_name = None
    application.last_name = last_name
    application.full_name = f"{first_name} {last_name}"
    application.date_of_birth = date(2016, 4, 2)
    application.place_of_birth = "Leicester"
    application.gender = gender
    application.ethnic_origin = None
    application.medical_notes = None
    application.address = "12 Test Road"
    application.post_code = "LE1 1AA"
    application.home_contact = None
    application.mobile_contact = "07700900000"
    application.mother_name = None
    application.mother_mobile = None
    application.guardian_name = guardian_name
    application.guardian_email = guardian_email
    application.registration_type = registration_type
    application.status = status
    application.reviewed_at = None
    application.reviewed_by = None
    application.rejection_reason = None
    application.assigned_group = None
    application.created_at = datetime.now(UTC)
    return application


def make_student(
    *,
    name="Yusuf Patel",
    maktab="boys",
    student_group="A1",
    status=StudentStatus.PENDING_PAYMENT,
    guardian_email="parent@example.com",
    guardian_name="Amina Patel",
    application_id=None,
    billing_batch_id=None,
    sibling_count=1,
    has_other_maktab=False,
    student_code="MI0100",
):
    student = MagicMock(spec=EnrolledStudent)
    student.id = uuid4()
    student.student_code = student_code
    student.name = name
    student.maktab = maktab
    student.student_group = student_group
    student.status = status
    student.guardian_email = guardian_email
    student.guardian_name = guardian_name
    student.application_id = application_id
    student.billing_batch_id = billing_batch_id
    student.sibling_count = sibling_count
    student.has_other_maktab = has_other_maktab
    student.stripe_customer_id = None
    student.checkout_session_id = None
    student.created_at = datetime.now(UTC)
    return student


# ============================================
# Fixtures
# ============================================


@pytest.fixture(autouse=True)
def clear_memory_locks():
    """Record locks fall back to memory in tests; start each test clean."""
    locks._memory_locks.clear()
    locks._memory_lock_users.clear()
    yield
    locks._memory_locks.clear()
    locks._memory_lock_users.clear()


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def application_store():
    store = FakeApplicationStore()
    with patch("maktab.modules.registrations.orchestrator.repository", store):
        yield store


@pytest.fixture
def student_store():
    store = FakeStudentStore()
    with (
        patch("maktab.modules.registrations.orchestrator.StudentRepository", store),
        patch("maktab.modules.registrations.provisioner.StudentRepository", store),
    ):
        yield store


@pytest.fixture
def payment_provider():
    return FakePaymentProvider()


@pytest.fixture
def dispatcher():
    """Notification dispatcher that always succeeds."""
    dispatcher = MagicMock()
    dispatcher.send_payment_link = AsyncMock(return_value=None)
    dispatcher.send_approval_confirmation = AsyncMock(return_value=None)
    dispatcher.send_rejection = AsyncMock(return_value=None)
    return dispatcher


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def orchestrator(application_store, student_store, payment_provider, dispatcher, bus):
    return ApprovalOrchestrator(
        issuer=PaymentSessionIssuer(payment_provider, timeout_seconds=5),
        dispatcher=dispatcher,
        policy=SiblingDiscountPolicy(threshold=3, amount_off=2000, duration_months=60),
        bus=bus,
        manual_approval_attempts=2,
    )


@pytest.fixture
def new_application(application_store):
    """Factory adding a pending application to the fake store."""

    def _new(**kwargs):
        return application_store.add(make_application(**kwargs))

    return _new


@pytest.fixture
def new_student(student_store):
    """Factory adding a student to the fake store."""

    def _new(**kwargs):
        return student_store.add(make_student(**kwargs))

    return _new


@pytest.fixture
def application_factory():
    """Factory for detached applications (no store)."""
    return make_application


@pytest.fixture
def student_factory():
    """Factory for detached students (no store)."""
    return make_student
