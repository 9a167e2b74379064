"""
Registrations Admin Router

API endpoints for maktab administrators to decide pending registrations.

Endpoints:
- GET /admin/registrations/pending - Pending registrations grouped by guardian
- POST /admin/registrations/{id}/approve - Approve one registration
- POST /admin/registrations/approve-group - Approve a family's registrations together
- POST /admin/registrations/{id}/reject - Reject a registration

Error responses carry ``{"error", "message", "tier"}`` so the admin UI can
tell "fix your input" from "retry" from "contact support". Payment or
email failures after a successful decision are returned as ``warnings``
on a 200 response.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from maktab.core.database import get_db
from maktab.modules.payments.issuer import PaymentSession
from maktab.modules.registrations.errors import (
    OperationWarning,
    RegistrationPipelineError,
    error_detail,
)
from maktab.modules.registrations.orchestrator import (
    ApprovalOrchestrator,
    ApprovalResult,
    get_orchestrator,
)
from maktab.modules.registrations.schemas import (
    ApprovalResponse,
    ApproveGroupRequest,
    ApproveRequest,
    DecisionResponse,
    PaymentSessionResponse,
    PendingApplicationItem,
    PendingFamilyResponse,
    RejectRequest,
    StudentResponse,
    WarningResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Helper Functions
# ============================================


def handle_pipeline_error(e: RegistrationPipelineError) -> None:
    """Convert pipeline errors to HTTPExceptions."""
    raise HTTPException(status_code=e.status_code, detail=error_detail(e)) from e


def internal_error(e: Exception, action: str) -> HTTPException:
    logger.exception(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )


def warnings_to_response(warnings: list[OperationWarning]) -> list[WarningResponse]:
    return [
        WarningResponse(
            service=w.service, message=w.message, tier=w.tier, student_ids=w.student_ids
        )
        for w in warnings
    ]


def session_to_response(session: PaymentSession) -> PaymentSessionResponse:
    return PaymentSessionResponse(
        session_id=session.session_id,
        url=session.url,
        student_ids=session.student_ids,
        discount_applied=session.discount_applied,
    )


def _approval_to_response(result: ApprovalResult) -> ApprovalResponse:
    count = len(result.students)
    message = f"Approved {count} registration{'s' if count != 1 else ''}"
    if result.warnings:
        message += "; some follow-up steps failed, resend the payment link"
    return ApprovalResponse(
        students=[StudentResponse.model_validate(s) for s in result.students],
        payment_sessions=[session_to_response(s) for s in result.payment_sessions],
        warnings=warnings_to_response(result.warnings),
        message=message,
    )


# ============================================
# Endpoints
# ============================================


@router.get(
    "/pending",
    response_model=list[PendingFamilyResponse],
    summary="List Pending Registrations",
)
async def list_pending(
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> list[PendingFamilyResponse]:
    """Pending registrations grouped by guardian email, newest first."""
    families = await orchestrator.list_pending_registrations(db)
    return [
        PendingFamilyResponse(
            guardian_email=family.guardian_email,
            guardian_name=family.guardian_name,
            applications=[PendingApplicationItem.model_validate(a) for a in family.applications],
        )
        for family in families
    ]


@router.post(
    "/approve-group",
    response_model=ApprovalResponse,
    summary="Approve Sibling Registrations",
    description="""
Approve several registrations from one guardian in a single step.

All students are created before any registration is marked approved.
If anything fails, every student created by the request is removed and
all registrations stay `pending`.

One payment link is sent per maktab; the sibling discount applies when
the family registers 3 or more children.
""",
    responses={
        400: {"description": "Invalid input or mixed guardians"},
        404: {"description": "Registration not found"},
        409: {"description": "Registration already decided or busy"},
        503: {"description": "Store write failed (see tier)"},
    },
)
async def approve_group(
    request: ApproveGroupRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    try:
        result = await orchestrator.approve_group(
            db,
            request.application_ids,
            request.reviewer_name,
            group_assignments=request.group_assignments,
            maktab_overrides=request.maktab_overrides,
            sibling_count=request.sibling_count,
        )
        return _approval_to_response(result)
    except RegistrationPipelineError as e:
        logger.warning(f"Group approval failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "approving registration group") from e


@router.post(
    "/{application_id}/approve",
    response_model=ApprovalResponse,
    summary="Approve Registration",
    responses={
        400: {"description": "Missing or invalid group"},
        404: {"description": "Registration not found"},
        409: {"description": "Registration already decided or busy"},
        503: {"description": "Store write failed (see tier)"},
    },
)
async def approve(
    application_id: UUID,
    request: ApproveRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    try:
        result = await orchestrator.approve_single(
            db,
            application_id,
            request.reviewer_name,
            assigned_group=request.assigned_group,
            maktab=request.maktab,
        )
        return _approval_to_response(result)
    except RegistrationPipelineError as e:
        logger.warning(f"Approval of {application_id} failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "approving registration") from e


@router.post(
    "/{application_id}/reject",
    response_model=DecisionResponse,
    summary="Reject Registration",
)
async def reject(
    application_id: UUID,
    request: RejectRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator),
) -> DecisionResponse:
    try:
        result = await orchestrator.reject(
            db, application_id, request.reviewer_name, request.reason
        )
        return DecisionResponse(
            message="Registration rejected",
            warnings=warnings_to_response(result.warnings),
        )
    except RegistrationPipelineError as e:
        logger.warning(f"Rejection of {application_id} failed: {e.message}")
        handle_pipeline_error(e)
    except Exception as e:
        raise internal_error(e, "rejecting registration") from e
