"""
Notification Dispatcher

Best-effort delivery of guardian emails. Called only after the state the
email describes is committed. Never raises: a failed or slow send is
logged and returned as an OperationWarning for the caller to surface.
"""

import asyncio
import logging
from collections.abc import Awaitable
from uuid import UUID

from maktab.core.config import settings
from maktab.core.email import (
    send_payment_link,
    send_registration_confirmation,
    send_registration_rejection,
)
from maktab.modules.registrations.errors import OperationWarning

logger = logging.getLogger(__name__)

SERVICE_NAME = "email"


class NotificationDispatcher:
    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds or settings.email_timeout_seconds

    async def _deliver(
        self,
        kind: str,
        to_email: str,
        student_ids: list[UUID],
        send: Awaitable[bool],
    ) -> OperationWarning | None:
        try:
            sent = await asyncio.wait_for(send, timeout=self.timeout_seconds)
        except TimeoutError:
            logger.error(f"Timed out sending {kind} email to {to_email}")
            return OperationWarning(
                service=SERVICE_NAME,
                message=f"{kind} email timed out after {self.timeout_seconds} seconds",
                student_ids=student_ids,
            )
        except Exception as e:
            # Don't fail the request - email is non-critical
            logger.error(f"Failed to send {kind} email to {to_email}: {e}", exc_info=True)
            return OperationWarning(
                service=SERVICE_NAME,
                message=f"{kind} email failed: {e}",
                student_ids=student_ids,
            )

        if not sent:
            return OperationWarning(
                service=SERVICE_NAME,
                message=f"{kind} email could not be delivered",
                student_ids=student_ids,
            )

        logger.info(f"Sent {kind} email to {to_email}")
        return None

    async def send_payment_link(
        self,
        *,
        to_email: str,
        guardian_name: str,
        student_ids: list[UUID],
        student_names: list[str],
        maktab: str,
        checkout_url: str,
        discount_applied: bool,
        has_other_maktab: bool,
    ) -> OperationWarning | None:
        return await self._deliver(
            "payment link",
            to_email,
            student_ids,
            send_payment_link(
                to_email=to_email,
                guardian_name=guardian_name,
                student_names=student_names,
                maktab=maktab,
                checkout_url=checkout_url,
                discount_applied=discount_applied,
                has_other_maktab=has_other_maktab,
            ),
        )

    async def send_approval_confirmation(
        self,
        *,
        to_email: str,
        guardian_name: str,
        student_ids: list[UUID],
        student_names: list[str],
        maktab: str | None,
    ) -> OperationWarning | None:
        return await self._deliver(
            "confirmation",
            to_email,
            student_ids,
            send_registration_confirmation(
                to_email=to_email,
                guardian_name=guardian_name,
                student_names=student_names,
                maktab=maktab,
            ),
        )

    async def send_rejection(
        self,
        *,
        to_email: str,
        guardian_name: str,
        student_name: str,
        reason: str,
    ) -> OperationWarning | None:
        return await self._deliver(
            "rejection",
            to_email,
            [],
            send_registration_rejection(
                to_email=to_email,
                guardian_name=guardian_name,
                student_name=student_name,
                reason=reason,
            ),
        )
