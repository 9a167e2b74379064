"""
Students Admin Router

Endpoints for students awaiting payment:
- GET /admin/students/pending-payment - Students awaiting payment
- GET /admin/students/orphans - Students left behind by a failed rollback
- POST /admin/students/{id}/manual-approve - Activate without payment
- POST /admin/students/manual-approve - Activate several without payment
- POST /admin/students/{id}/cancel - Cancel a pending_payment registration
- POST /admin/students/{id}/resend-payment-link - Issue a fresh payment link
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from maktab.core.database import get_db
from maktab.modules.registrations.admin_router import (
    handle_pipeline_error,
    internal_error,
    session_to_response,
    warnings_to_response,
)
from maktab.modules.registrations.errors import RegistrationPipelineError
from maktab.modules.registrations.orchestrator import ApprovalOrchestrator, get_orchestrator
from maktab.modules.registrations.schemas import (
    CancelRequest,
    DecisionResponse,
    ManualApproveGroupRequest,
    ManualApproveGroupResponse,
    ManualApproveRequest,
    PaymentLinkResponse,
    StudentResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/pending-payment", response_model=list[StudentResponse])
async def list_pending_payment(
    maktab: str | None = Query(None, pattern="^(boys|girls)$"),
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> list[StudentResponse]:
    students = await orchestrator.list_pending_payment_students(db, maktab)
    return [StudentResponse.model_validate(s) for s in students]


@router.get("/orphans", response_model=list[StudentResponse])
async def list_orphans(
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> list[StudentResponse]:
    """Students awaiting payment with no approved registration behind them."""
    students = await orchestrator.find_orphaned_students(db)
    return [StudentResponse.model_validate(s) for s in students]


@router.post("/manual-approve", response_model=ManualApproveGroupResponse)
async def manual_approve_group(
    request: ManualApproveGroupRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> ManualApproveGroupResponse:
    try:
        result = await orchestrator.manual_approve_group(
            db, request.student_ids, request.approver_name, request.justification
        )
        return ManualApproveGroupResponse(
            activated=result.activated,
            already_active=result.already_active,
            failed=result.failed,
            warnings=warnings_to_response(result.warnings),
        )
    except RegistrationPipelineError as e:
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "manually approving students") from e


@router.post("/{student_id}/manual-approve", response_model=DecisionResponse)
async def manual_approve(
    student_id: UUID,
    request: ManualApproveRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> DecisionResponse:
    try:
        result = await orchestrator.manual_approve(
            db, student_id, request.approver_name, request.justification
        )
        return DecisionResponse(
            message="Student activated without payment",
            warnings=warnings_to_response(result.warnings),
        )
    except RegistrationPipelineError as e:
        logger.warning(f"Manual approval of {student_id} failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "manually approving student") from e


@router.post("/{student_id}/cancel", response_model=DecisionResponse)
async def cancel(
    student_id: UUID,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> DecisionResponse:
    try:
        await orchestrator.cancel_registration(
            db, student_id, request.canceller_name, request.reason
        )
        return DecisionResponse(message="Registration cancelled")
    except RegistrationPipelineError as e:
        logger.warning(f"Cancellation of {student_id} failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "cancelling registration") from e


@router.post("/{student_id}/resend-payment-link", response_model=PaymentLinkResponse)
async def resend_payment_link(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> PaymentLinkResponse:
    try:
        result = await orchestrator.resend_payment_link(db, student_id)
        return PaymentLinkResponse(
            session=session_to_response(result.session),
            warnings=warnings_to_response(result.warnings),
        )
    except RegistrationPipelineError as e:
        logger.warning(f"Resend for {student_id} failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "resending payment link") from e
