"""
Payment Session Issuer

Builds one combined checkout per billing group: every child a guardian
registered in one maktab is paid for in a single session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from maktab.core.config import settings
from maktab.core.locks import LockUnavailableError, record_lock
from maktab.modules.payments.discounts import DiscountDecision
from maktab.modules.payments.provider import SERVICE_NAME, PaymentProvider
from maktab.modules.registrations.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentRef:
    id: UUID
    name: str


@dataclass(frozen=True)
class PaymentSession:
    """Reference to an external checkout. Expires on the provider side after 24 hours."""

    session_id: str
    customer_id: str
    student_ids: list[UUID]
    discount_applied: bool
    url: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def discount_coupon_id(maktab: str, quantity: int) -> str:
    """Deterministic coupon id; the amount scales with the number of children billed."""
    return f"sibling_discount_{maktab}_x{quantity}"


class PaymentSessionIssuer:
    def __init__(self, provider: PaymentProvider, timeout_seconds: float | None = None):
        self.provider = provider
        self.timeout_seconds = timeout_seconds or settings.payment_timeout_seconds

    async def issue_session(
        self,
        students: list[StudentRef],
        guardian_email: str,
        guardian_name: str,
        maktab: str,
        discount: DiscountDecision,
    ) -> PaymentSession:
        """
        Create a checkout covering ``students``.

        Issuance for one guardian is serialized so concurrent calls resolve
        to the same billing customer.

        Raises:
            ExternalServiceError: On provider failure, timeout, or if another
                issuance for the guardian holds the lock
        """
        if not students:
            raise ValueError("Cannot issue a payment session for zero students")

        email = guardian_email.strip().lower()
        try:
            async with record_lock("guardian", [email]):
                return await asyncio.wait_for(
                    self._issue(students, email, guardian_name, maktab, discount),
                    timeout=self.timeout_seconds,
                )
        except TimeoutError as e:
            logger.error(f"Payment session for {email} timed out after {self.timeout_seconds}s")
            raise ExternalServiceError(
                SERVICE_NAME, f"timed out after {self.timeout_seconds} seconds"
            ) from e
        except LockUnavailableError as e:
            raise ExternalServiceError(
                SERVICE_NAME, "another payment link is being issued for this guardian"
            ) from e

    async def _issue(
        self,
        students: list[StudentRef],
        email: str,
        guardian_name: str,
        maktab: str,
        discount: DiscountDecision,
    ) -> PaymentSession:
        quantity = len(students)
        customer_id = await self.provider.find_or_create_customer(email, guardian_name, maktab)

        coupon_id = None
        if discount.applies:
            logger.info(f"Applying sibling discount for {quantity} children in {maktab}")
            coupon_id = await self.provider.ensure_discount_definition(
                discount_coupon_id(maktab, quantity), discount, quantity, maktab
            )

        checkout = await self.provider.create_checkout_session(
            customer_id=customer_id,
            maktab=maktab,
            quantity=quantity,
            coupon_id=coupon_id,
            metadata={
                "student_ids": ",".join(str(s.id) for s in students),
                "student_names": ", ".join(s.name for s in students),
                "maktab": maktab,
                "sibling_discount_applied": "true" if discount.applies else "false",
            },
        )

        return PaymentSession(
            session_id=checkout.id,
            customer_id=customer_id,
            student_ids=[s.id for s in students],
            discount_applied=discount.applies,
            url=checkout.url,
        )
