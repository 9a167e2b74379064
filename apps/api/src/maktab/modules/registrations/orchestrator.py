"""
Registration Approval Orchestrator

Turns pending registrations into enrolled, billed students.

Every public operation runs as one sequential unit of work:

1. Validate the command and preconditions (no writes yet)
2. Perform the authoritative writes, pushing an undo for each onto a
   CompensationStack; any failure unwinds the stack and is surfaced
3. After commit, issue payment sessions and send emails. Failures here
   are logged and returned as warnings; the enrollment stands.

Concurrent decisions on one record are serialized with record locks, and
every status write is additionally guarded by the status it expects.
"""

import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache, partial
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from maktab.core.config import settings
from maktab.core.events import EventBus, event_bus
from maktab.core.locks import LockUnavailableError, record_lock
from maktab.modules.notifications.dispatcher import NotificationDispatcher
from maktab.modules.payments.discounts import SiblingDiscountPolicy, compute_discount
from maktab.modules.payments.issuer import PaymentSession, PaymentSessionIssuer, StudentRef
from maktab.modules.payments.provider import StripePaymentProvider
from maktab.modules.registrations import repository
from maktab.modules.registrations.errors import (
    ApplicationConflictError,
    ApplicationNotFoundError,
    ExternalServiceError,
    InvalidApplicationStateError,
    InvalidStudentStateError,
    OperationWarning,
    RecordBusyError,
    RegistrationPipelineError,
    StoreWriteError,
    StudentNotFoundError,
    ValidationError,
)
from maktab.modules.registrations.events import (
    ApplicationRejected,
    RegistrationCancelled,
    StudentActivated,
    StudentsProvisioned,
)
from maktab.modules.registrations.models import ApplicationStatus, PendingRegistration
from maktab.modules.registrations.placement import Placement, resolve_placement
from maktab.modules.registrations.provisioner import CompensationStack, Provisioner
from maktab.modules.students.models import EnrolledStudent, StudentRecord, StudentStatus
from maktab.modules.students.repository import StudentRepository

logger = logging.getLogger(__name__)


# ============================================
# Results
# ============================================


@dataclass
class BillingGroup:
    """Students from one approval sharing a guardian and maktab, billed together."""

    guardian_email: str
    guardian_name: str
    maktab: str
    sibling_count: int
    has_other_maktab: bool
    students: list[StudentRecord] = field(default_factory=list)

    @property
    def student_ids(self) -> list[UUID]:
        return [student.id for student in self.students]


@dataclass
class ApprovalResult:
    students: list[StudentRecord] = field(default_factory=list)
    payment_sessions: list[PaymentSession] = field(default_factory=list)
    warnings: list[OperationWarning] = field(default_factory=list)


@dataclass
class DecisionResult:
    warnings: list[OperationWarning] = field(default_factory=list)


@dataclass
class ManualApprovalResult:
    activated: list[UUID] = field(default_factory=list)
    already_active: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)
    warnings: list[OperationWarning] = field(default_factory=list)


@dataclass
class PaymentLinkResult:
    session: PaymentSession
    warnings: list[OperationWarning] = field(default_factory=list)


@dataclass
class PendingFamily:
    """Pending registrations submitted under one guardian email."""

    guardian_email: str
    guardian_name: str
    applications: list[PendingRegistration] = field(default_factory=list)


# ============================================
# Helpers
# ============================================


def _require_text(value: str | None, field_name: str, error_code: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"A {field_name} is required", error_code=error_code)
    return value.strip()


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@asynccontextmanager
async def _locked(kind: str, ids: Iterable) -> AsyncIterator[None]:
    try:
        async with record_lock(kind, ids):
            yield
    except LockUnavailableError as e:
        logger.warning(f"Lock not acquired: {e.key}")
        raise RecordBusyError(e.key) from e


async def _rollback(stack: CompensationStack, error: Exception) -> Exception:
    """
    Unwind the stack after ``error``.

    Compensation failures never replace the original error: they are
    attached to it, or to a StoreWriteError wrapping it.
    """
    compensation_errors = await stack.unwind()
    if not compensation_errors:
        return error

    if isinstance(error, StoreWriteError):
        error.compensation_errors.extend(compensation_errors)
        return error

    wrapped = StoreWriteError(f"{error}. Rollback incomplete, manual cleanup required.")
    wrapped.compensation_errors.extend(compensation_errors)
    return wrapped


# ============================================
# Orchestrator
# ============================================


class ApprovalOrchestrator:
    """Saga controller for registration decisions."""

    def __init__(
        self,
        *,
        provisioner: Provisioner | None = None,
        issuer: PaymentSessionIssuer | None = None,
        dispatcher: NotificationDispatcher | None = None,
        policy: SiblingDiscountPolicy | None = None,
        bus: EventBus | None = None,
        manual_approval_attempts: int | None = None,
    ):
        self.provisioner = provisioner or Provisioner()
        self.issuer = issuer or PaymentSessionIssuer(StripePaymentProvider())
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.policy = policy or SiblingDiscountPolicy.from_settings()
        self.bus = bus or event_bus
        self.manual_approval_attempts = max(
            1, manual_approval_attempts or settings.manual_approval_attempts
        )

    # --------------------------------------------
    # Approval
    # --------------------------------------------

    async def approve_single(
        self,
        db: AsyncSession,
        application_id: UUID,
        reviewer_name: str,
        assigned_group: str | None = None,
        maktab: str | None = None,
    ) -> ApprovalResult:
        """
        Approve one application and provision its student.

        The student is created first; if the application status write then
        fails the student is deleted again before the error is surfaced.

        Raises:
            ValidationError: Bad input or application not pending
            StoreWriteError: A write failed (rolled back; check cleanup_incomplete)
        """
        reviewer_name = _require_text(reviewer_name, "reviewer name", "REVIEWER_REQUIRED")
        logger.info(f"{reviewer_name} approving application {application_id}")

        async with _locked("application", [application_id]):
            application = await repository.get_by_id(db, application_id)
            if not application:
                logger.warning(f"Application not found: {application_id}")
                raise ApplicationNotFoundError(application_id)
            self._require_pending(application)
            placement = resolve_placement(application, assigned_group, maktab)
            guardian_name = application.guardian_name

            billing_batch_id = uuid4()
            stack = CompensationStack(self.bus)
            try:
                student = await self.provisioner.create_student(
                    db,
                    application,
                    placement,
                    billing_batch_id=billing_batch_id,
                    sibling_count=1,
                    has_other_maktab=False,
                )
                stack.push(
                    "delete_student", student.id, partial(self.provisioner.compensate, db, student)
                )
                await self._mark_approved(db, application_id, placement, reviewer_name, stack)
            except Exception as e:
                failure = await _rollback(stack, e)
                logger.error(f"Approval of {application_id} failed and was rolled back: {e}")
                if failure is e:
                    raise
                raise failure from e
            stack.clear()

        logger.info(f"Application {application_id} approved as student {student.student_code}")
        self.bus.publish(
            StudentsProvisioned(
                billing_batch_id=billing_batch_id,
                application_ids=[application_id],
                student_ids=[student.id],
                guardian_email=student.guardian_email,
                reviewed_by=reviewer_name,
            )
        )

        result = ApprovalResult(students=[student])
        group = BillingGroup(
            guardian_email=student.guardian_email,
            guardian_name=guardian_name,
            maktab=student.maktab,
            sibling_count=1,
            has_other_maktab=False,
            students=[student],
        )
        await self._issue_and_notify(db, [group], result)
        return result

    async def approve_group(
        self,
        db: AsyncSession,
        application_ids: list[UUID],
        reviewer_name: str,
        group_assignments: dict[UUID, str] | None = None,
        maktab_overrides: dict[UUID, str] | None = None,
        sibling_count: int | None = None,
    ) -> ApprovalResult:
        """
        Approve a family's applications all-or-nothing.

        Students are created sequentially in input order, then every
        application is marked approved. A failure at either stage deletes
        every student created by this call and returns all applications to
        pending. On success one payment session is issued per billing group
        (guardian + maktab).

        Args:
            db: Database session
            application_ids: Applications to approve, all from one guardian
            reviewer_name: Display name of the reviewing admin
            group_assignments: application id -> group; hifz applications may be omitted
            maktab_overrides: application id -> maktab, where gender placement is wrong
            sibling_count: Family size for the discount check when it exceeds
                this batch (children registered earlier). Defaults to the batch size.

        Raises:
            ValidationError: Bad input, mixed guardians, or an application not pending
            StoreWriteError: A write failed (rolled back; check cleanup_incomplete)
        """
        reviewer_name = _require_text(reviewer_name, "reviewer name", "REVIEWER_REQUIRED")
        if not application_ids:
            raise ValidationError("No applications selected", error_code="NO_APPLICATIONS")
        if len(set(application_ids)) != len(application_ids):
            raise ValidationError("Duplicate application ids", error_code="DUPLICATE_APPLICATIONS")
        group_assignments = group_assignments or {}
        maktab_overrides = maktab_overrides or {}

        logger.info(f"{reviewer_name} approving {len(application_ids)} applications as a group")

        async with _locked("application", application_ids):
            found = await repository.get_by_ids(db, application_ids)
            applications: list[PendingRegistration] = []
            for application_id in application_ids:
                application = found.get(application_id)
                if not application:
                    raise ApplicationNotFoundError(application_id)
                self._require_pending(application)
                applications.append(application)

            guardian_emails = {_normalize_email(a.guardian_email) for a in applications}
            if len(guardian_emails) > 1:
                logger.warning(f"Group approval rejected, mixed guardians: {guardian_emails}")
                raise ValidationError(
                    "All applications in a group must share the same guardian email",
                    error_code="GUARDIAN_MISMATCH",
                )

            placements = [
                resolve_placement(a, group_assignments.get(a.id), maktab_overrides.get(a.id))
                for a in applications
            ]
            has_other_maktab = len({p.maktab for p in placements}) > 1
            family_size = max(len(applications), sibling_count or 0)
            guardian_name = applications[0].guardian_name

            billing_batch_id = uuid4()
            stack = CompensationStack(self.bus)
            students: list[StudentRecord] = []
            try:
                for application, placement in zip(applications, placements):
                    student = await self.provisioner.create_student(
                        db,
                        application,
                        placement,
                        billing_batch_id=billing_batch_id,
                        sibling_count=family_size,
                        has_other_maktab=has_other_maktab,
                    )
                    stack.push(
                        "delete_student",
                        student.id,
                        partial(self.provisioner.compensate, db, student),
                    )
                    students.append(student)

                for application_id, placement in zip(application_ids, placements):
                    await self._mark_approved(db, application_id, placement, reviewer_name, stack)
            except Exception as e:
                failure = await _rollback(stack, e)
                logger.error(
                    f"Group approval failed after {len(students)} of {len(applications)} "
                    f"students; rolled back: {e}"
                )
                if failure is e:
                    raise
                raise failure from e
            stack.clear()

        logger.info(
            f"Approved {len(students)} applications for {guardian_emails.pop()} "
            f"(batch {billing_batch_id})"
        )
        self.bus.publish(
            StudentsProvisioned(
                billing_batch_id=billing_batch_id,
                application_ids=list(application_ids),
                student_ids=[s.id for s in students],
                guardian_email=students[0].guardian_email,
                reviewed_by=reviewer_name,
            )
        )

        result = ApprovalResult(students=students)
        groups = self._billing_groups(students, guardian_name, family_size, has_other_maktab)
        await self._issue_and_notify(db, groups, result)
        return result

    async def reject(
        self,
        db: AsyncSession,
        application_id: UUID,
        reviewer_name: str,
        reason: str,
    ) -> DecisionResult:
        """
        Reject an application. A reason is mandatory.

        Raises:
            ValidationError: Missing reason, or application already decided
        """
        reason = _require_text(reason, "rejection reason", "REASON_REQUIRED")
        reviewer_name = _require_text(reviewer_name, "reviewer name", "REVIEWER_REQUIRED")

        async with _locked("application", [application_id]):
            application = await repository.get_by_id(db, application_id)
            if not application:
                raise ApplicationNotFoundError(application_id)

            current = application.status
            if ApplicationStatus.REJECTED not in repository.VALID_STATUS_TRANSITIONS[current]:
                raise InvalidApplicationStateError(
                    application_id, current.value, "pending or awaiting_payment"
                )
            guardian_email = application.guardian_email
            guardian_name = application.guardian_name
            student_name = application.full_name

            updated = await repository.update_status(
                db,
                application_id,
                ApplicationStatus.REJECTED,
                expected=current,
                reviewed_at=datetime.now(UTC),
                reviewed_by=reviewer_name,
                rejection_reason=reason,
            )
            if not updated:
                raise ApplicationConflictError(application_id)

        logger.info(f"Application {application_id} rejected by {reviewer_name}")
        self.bus.publish(
            ApplicationRejected(
                application_id=application_id,
                guardian_email=guardian_email,
                reviewed_by=reviewer_name,
                reason=reason,
            )
        )

        result = DecisionResult()
        warning = await self.dispatcher.send_rejection(
            to_email=guardian_email,
            guardian_name=guardian_name,
            student_name=student_name,
            reason=reason,
        )
        if warning:
            result.warnings.append(warning)
        return result

    # --------------------------------------------
    # Manual fee bypass
    # --------------------------------------------

    async def manual_approve(
        self,
        db: AsyncSession,
        student_id: UUID,
        approver_name: str,
        justification: str,
    ) -> DecisionResult:
        """
        Activate a pending_payment student without payment.

        No payment session is created or cancelled; any outstanding one
        becomes moot.

        Raises:
            ValidationError: Missing justification, or student not pending_payment
        """
        justification = _require_text(justification, "justification", "JUSTIFICATION_REQUIRED")
        approver_name = _require_text(approver_name, "approver name", "APPROVER_REQUIRED")

        student, _ = await self._activate(
            db, student_id, approver_name, justification, allow_active=False
        )

        result = DecisionResult()
        warning = await self.dispatcher.send_approval_confirmation(
            to_email=student.guardian_email,
            guardian_name=student.guardian_name or "",
            student_ids=[student.id],
            student_names=[student.name],
            maktab=student.maktab,
        )
        if warning:
            result.warnings.append(warning)
        return result

    async def manual_approve_group(
        self,
        db: AsyncSession,
        student_ids: list[UUID],
        approver_name: str,
        justification: str,
    ) -> ManualApprovalResult:
        """
        Activate several students without payment.

        Each student is handled on its own and retried on store failures;
        students already active count as done. There is no group rollback.
        One confirmation email is sent per guardian.
        """
        justification = _require_text(justification, "justification", "JUSTIFICATION_REQUIRED")
        approver_name = _require_text(approver_name, "approver name", "APPROVER_REQUIRED")
        if not student_ids:
            raise ValidationError("No students selected", error_code="NO_STUDENTS")

        result = ManualApprovalResult()
        activated: list[StudentRecord] = []

        for student_id in dict.fromkeys(student_ids):
            for attempt in range(1, self.manual_approval_attempts + 1):
                try:
                    student, changed = await self._activate(
                        db, student_id, approver_name, justification, allow_active=True
                    )
                except (StoreWriteError, RecordBusyError) as e:
                    logger.warning(
                        f"Manual approval of {student_id} failed "
                        f"(attempt {attempt}/{self.manual_approval_attempts}): {e}"
                    )
                    if attempt == self.manual_approval_attempts:
                        result.failed[student_id] = e.message
                    continue
                except RegistrationPipelineError as e:
                    result.failed[student_id] = e.message
                    break

                if changed:
                    result.activated.append(student_id)
                    activated.append(student)
                else:
                    result.already_active.append(student_id)
                break

        logger.info(
            f"Manual group approval by {approver_name}: {len(result.activated)} activated, "
            f"{len(result.already_active)} already active, {len(result.failed)} failed"
        )

        by_guardian: OrderedDict[str, list[StudentRecord]] = OrderedDict()
        for student in activated:
            by_guardian.setdefault(_normalize_email(student.guardian_email), []).append(student)

        for guardian_email, students in by_guardian.items():
            maktabs = {s.maktab for s in students}
            warning = await self.dispatcher.send_approval_confirmation(
                to_email=guardian_email,
                guardian_name=students[0].guardian_name or "",
                student_ids=[s.id for s in students],
                student_names=[s.name for s in students],
                maktab=maktabs.pop() if len(maktabs) == 1 else None,
            )
            if warning:
                result.warnings.append(warning)

        return result

    # --------------------------------------------
    # Cancellation and resend
    # --------------------------------------------

    async def cancel_registration(
        self,
        db: AsyncSession,
        student_id: UUID,
        canceller_name: str,
        reason: str,
    ) -> DecisionResult:
        """
        Delete a pending_payment student. Irreversible.

        The originating application is left as it is.

        Raises:
            ValidationError: Missing reason, or student not pending_payment
        """
        reason = _require_text(reason, "cancellation reason", "REASON_REQUIRED")
        canceller_name = _require_text(canceller_name, "canceller name", "CANCELLER_REQUIRED")

        async with _locked("student", [student_id]):
            student = await self._load_student(db, student_id)
            if student.status != StudentStatus.PENDING_PAYMENT:
                raise InvalidStudentStateError(
                    student_id, student.status.value, StudentStatus.PENDING_PAYMENT.value
                )

            deleted = await StudentRepository.delete(
                db, student_id, expected_status=StudentStatus.PENDING_PAYMENT
            )
            if not deleted:
                await self._raise_student_changed(db, student_id)

            # Audit entries carry no FK, so they outlive the deleted row
            try:
                await StudentRepository.add_audit_log(
                    db,
                    student=student,
                    action=f"Registration cancelled: {reason}",
                    performed_by=canceller_name,
                )
            except StoreWriteError as e:
                logger.error(f"Student {student_id} cancelled but audit log failed: {e}")

        logger.info(f"Registration {student.student_code} cancelled by {canceller_name}")
        self.bus.publish(
            RegistrationCancelled(
                student_id=student_id,
                student_code=student.student_code,
                performed_by=canceller_name,
                reason=reason,
            )
        )
        return DecisionResult()

    async def resend_payment_link(self, db: AsyncSession, student_id: UUID) -> PaymentLinkResult:
        """
        Issue a fresh payment session for a pending_payment student.

        The session covers every outstanding student from the same approval
        and maktab, priced with the family size recorded at approval. No
        student or application status changes.

        Raises:
            ValidationError: Student missing or not pending_payment
            ExternalServiceError: Payment provider failed
        """
        student = await self._load_student(db, student_id)
        if student.status != StudentStatus.PENDING_PAYMENT:
            raise InvalidStudentStateError(
                student_id, student.status.value, StudentStatus.PENDING_PAYMENT.value
            )

        members = [student]
        if student.billing_batch_id:
            batch = await StudentRepository.list_billing_group(
                db, student.billing_batch_id, student.maktab
            )
            members = [StudentRecord.from_model(s) for s in batch] or [student]

        group = BillingGroup(
            guardian_email=_normalize_email(student.guardian_email),
            guardian_name=student.guardian_name or "",
            maktab=student.maktab,
            sibling_count=student.sibling_count,
            has_other_maktab=student.has_other_maktab,
            students=members,
        )

        logger.info(f"Resending payment link for {len(members)} student(s) with {student_id}")
        session = await self._issue(group)

        result = PaymentLinkResult(session=session)
        await self._after_issue(db, group, session, result.warnings)
        return result

    # --------------------------------------------
    # Queries
    # --------------------------------------------

    async def list_pending_registrations(self, db: AsyncSession) -> list[PendingFamily]:
        """Pending registrations grouped by guardian email, newest first."""
        applications = await repository.list_by_status(db, ApplicationStatus.PENDING)
        families: OrderedDict[str, PendingFamily] = OrderedDict()
        for application in applications:
            key = _normalize_email(application.guardian_email)
            family = families.get(key)
            if family is None:
                family = families[key] = PendingFamily(
                    guardian_email=key, guardian_name=application.guardian_name
                )
            family.applications.append(application)
        return list(families.values())

    async def list_pending_payment_students(
        self, db: AsyncSession, maktab: str | None = None
    ) -> list[EnrolledStudent]:
        return await StudentRepository.list_pending_payment(db, maktab)

    async def find_orphaned_students(self, db: AsyncSession) -> list[EnrolledStudent]:
        return await StudentRepository.list_orphans(db)

    # --------------------------------------------
    # Internals
    # --------------------------------------------

    @staticmethod
    def _require_pending(application: PendingRegistration) -> None:
        if application.status != ApplicationStatus.PENDING:
            logger.warning(
                f"Cannot approve application {application.id}: status={application.status.value}"
            )
            raise InvalidApplicationStateError(
                application.id, application.status.value, ApplicationStatus.PENDING.value
            )

    async def _mark_approved(
        self,
        db: AsyncSession,
        application_id: UUID,
        placement: Placement,
        reviewer_name: str,
        stack: CompensationStack,
    ) -> None:
        updated = await repository.update_status(
            db,
            application_id,
            ApplicationStatus.APPROVED,
            expected=ApplicationStatus.PENDING,
            reviewed_at=datetime.now(UTC),
            reviewed_by=reviewer_name,
            assigned_group=placement.group,
        )
        if not updated:
            logger.warning(f"Application {application_id} was decided concurrently")
            raise ApplicationConflictError(application_id)
        stack.push(
            "reset_application",
            application_id,
            partial(
                repository.reset_to_pending,
                db,
                application_id,
                from_status=ApplicationStatus.APPROVED,
            ),
        )

    @staticmethod
    async def _load_student(db: AsyncSession, student_id: UUID) -> StudentRecord:
        student = await StudentRepository.get_by_id(db, student_id)
        if not student:
            raise StudentNotFoundError(student_id)
        return StudentRecord.from_model(student)

    async def _activate(
        self,
        db: AsyncSession,
        student_id: UUID,
        approver_name: str,
        justification: str,
        *,
        allow_active: bool,
    ) -> tuple[StudentRecord, bool]:
        """Returns the student and whether this call changed its status."""
        async with _locked("student", [student_id]):
            student = await self._load_student(db, student_id)
            if allow_active and student.status == StudentStatus.ACTIVE:
                return student, False
            if student.status != StudentStatus.PENDING_PAYMENT:
                raise InvalidStudentStateError(
                    student_id, student.status.value, StudentStatus.PENDING_PAYMENT.value
                )

            updated = await StudentRepository.update_status(
                db, student_id, StudentStatus.ACTIVE, expected=StudentStatus.PENDING_PAYMENT
            )
            if not updated:
                await self._raise_student_changed(db, student_id)
            student.status = StudentStatus.ACTIVE

            try:
                await StudentRepository.add_audit_log(
                    db,
                    student=student,
                    action=f"Manual approval (payment bypassed): {justification}",
                    performed_by=approver_name,
                )
            except StoreWriteError as e:
                logger.error(f"Student {student_id} activated but audit log failed: {e}")

        logger.info(f"Student {student.student_code} manually approved by {approver_name}")
        self.bus.publish(
            StudentActivated(
                student_id=student_id, performed_by=approver_name, justification=justification
            )
        )
        return student, True

    @staticmethod
    async def _raise_student_changed(db: AsyncSession, student_id: UUID) -> None:
        current = await StudentRepository.get_by_id(db, student_id)
        if not current:
            raise StudentNotFoundError(student_id)
        raise InvalidStudentStateError(
            student_id, current.status.value, StudentStatus.PENDING_PAYMENT.value
        )

    @staticmethod
    def _billing_groups(
        students: list[StudentRecord],
        guardian_name: str,
        sibling_count: int,
        has_other_maktab: bool,
    ) -> list[BillingGroup]:
        groups: OrderedDict[tuple[str, str], BillingGroup] = OrderedDict()
        for student in students:
            key = (_normalize_email(student.guardian_email), student.maktab)
            if key not in groups:
                groups[key] = BillingGroup(
                    guardian_email=key[0],
                    guardian_name=guardian_name,
                    maktab=student.maktab,
                    sibling_count=sibling_count,
                    has_other_maktab=has_other_maktab,
                )
            groups[key].students.append(student)
        return list(groups.values())

    async def _issue(self, group: BillingGroup) -> PaymentSession:
        discount = compute_discount(group.sibling_count, self.policy)
        return await self.issuer.issue_session(
            [StudentRef(id=s.id, name=s.name) for s in group.students],
            group.guardian_email,
            group.guardian_name,
            group.maktab,
            discount,
        )

    async def _issue_and_notify(
        self,
        db: AsyncSession,
        groups: list[BillingGroup],
        result: ApprovalResult,
    ) -> None:
        """Post-commit: one session and one email per billing group. Never raises."""
        for group in groups:
            try:
                session = await self._issue(group)
            except ExternalServiceError as e:
                logger.error(
                    f"Payment session for {group.guardian_email} ({group.maktab}) failed: {e}"
                )
                result.warnings.append(OperationWarning.from_error(e, group.student_ids))
                continue

            result.payment_sessions.append(session)
            await self._after_issue(db, group, session, result.warnings)

    async def _after_issue(
        self,
        db: AsyncSession,
        group: BillingGroup,
        session: PaymentSession,
        warnings: list[OperationWarning],
    ) -> None:
        try:
            await StudentRepository.set_payment_reference(
                db,
                group.student_ids,
                customer_id=session.customer_id,
                checkout_session_id=session.session_id,
            )
        except StoreWriteError as e:
            logger.error(f"Could not record payment session {session.session_id}: {e}")
            warnings.append(
                OperationWarning(service="store", message=e.message, student_ids=group.student_ids)
            )
        else:
            for student in group.students:
                student.stripe_customer_id = session.customer_id
                student.checkout_session_id = session.session_id

        warning = await self.dispatcher.send_payment_link(
            to_email=group.guardian_email,
            guardian_name=group.guardian_name,
            student_ids=group.student_ids,
            student_names=[s.name for s in group.students],
            maktab=group.maktab,
            checkout_url=session.url,
            discount_applied=session.discount_applied,
            has_other_maktab=group.has_other_maktab,
        )
        if warning:
            warnings.append(warning)


@lru_cache
def get_orchestrator() -> ApprovalOrchestrator:
    """FastAPI dependency returning the process-wide orchestrator."""
    return ApprovalOrchestrator()
