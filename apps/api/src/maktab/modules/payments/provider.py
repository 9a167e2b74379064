"""
Payment Provider

Boundary to the external billing system. The boys and girls maktabs bill
through separate Stripe accounts, so every call is made with the API key
and prices configured for the student's maktab.

The Stripe SDK is synchronous; calls run in the thread pool to keep the
event loop free.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Protocol

import stripe

from maktab.core.config import Settings, settings
from maktab.modules.payments.discounts import DiscountDecision
from maktab.modules.registrations.errors import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "payment"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class PaymentProvider(Protocol):
    async def find_or_create_customer(self, email: str, name: str, maktab: str) -> str: ...

    async def ensure_discount_definition(
        self, coupon_id: str, discount: DiscountDecision, quantity: int, maktab: str
    ) -> str: ...

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        maktab: str,
        quantity: int,
        coupon_id: str | None,
        metadata: dict[str, str],
    ) -> CheckoutSession: ...


@dataclass(frozen=True)
class MaktabStripeConfig:
    api_key: str
    admission_price_id: str
    subscription_price_id: str


def _maktab_config(config: Settings, maktab: str) -> MaktabStripeConfig:
    api_key = getattr(config, f"stripe_secret_key_{maktab}", None)
    admission = getattr(config, f"stripe_admission_price_id_{maktab}", None)
    subscription = getattr(config, f"stripe_subscription_price_id_{maktab}", None)
    if not api_key or not admission or not subscription:
        logger.error(f"Missing Stripe configuration for {maktab} maktab")
        raise ExternalServiceError(SERVICE_NAME, f"Stripe is not configured for the {maktab} maktab")
    return MaktabStripeConfig(api_key, admission, subscription)


class StripePaymentProvider:
    """PaymentProvider backed by Stripe Checkout."""

    def __init__(self, config: Settings | None = None):
        self.config = config or settings

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call {getattr(func, '__qualname__', func)} failed: {e}")
            raise ExternalServiceError(SERVICE_NAME, e.user_message or str(e)) from e

    async def find_or_create_customer(self, email: str, name: str, maktab: str) -> str:
        """
        Reuse the guardian's billing customer, creating one only if none exists.

        The create call carries an idempotency key derived from the email so
        a retried create cannot produce a second customer.
        """
        cfg = _maktab_config(self.config, maktab)
        email = email.strip().lower()

        existing = await self._call(stripe.Customer.list, email=email, limit=1, api_key=cfg.api_key)
        if existing.data:
            customer_id = existing.data[0].id
            logger.info(f"Found existing customer: {customer_id}")
            return customer_id

        idempotency_key = "customer-" + hashlib.sha256(f"{maktab}:{email}".encode()).hexdigest()
        customer = await self._call(
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"maktab": maktab},
            api_key=cfg.api_key,
            idempotency_key=idempotency_key,
        )
        logger.info(f"Created new customer: {customer.id}")
        return customer.id

    async def ensure_discount_definition(
        self, coupon_id: str, discount: DiscountDecision, quantity: int, maktab: str
    ) -> str:
        """Retrieve the coupon, creating it on first use."""
        cfg = _maktab_config(self.config, maktab)
        try:
            await asyncio.to_thread(stripe.Coupon.retrieve, coupon_id, api_key=cfg.api_key)
            return coupon_id
        except stripe.InvalidRequestError:
            logger.info(f"Creating sibling discount coupon: {coupon_id}")
        except stripe.StripeError as e:
            raise ExternalServiceError(SERVICE_NAME, str(e)) from e

        per_child = discount.amount_off / 100
        await self._call(
            stripe.Coupon.create,
            id=coupon_id,
            amount_off=discount.amount_off * quantity,
            currency=self.config.stripe_currency,
            duration="repeating",
            duration_in_months=discount.duration_months,
            name=f"Sibling Discount - {quantity}x £{per_child:g} off"[:40],
            metadata={"maktab": maktab, "children": str(quantity)},
            api_key=cfg.api_key,
        )
        return coupon_id

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        maktab: str,
        quantity: int,
        coupon_id: str | None,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """One checkout: admission fee x N plus monthly subscription x N."""
        cfg = _maktab_config(self.config, maktab)
        params = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [
                {"price": cfg.admission_price_id, "quantity": quantity},
                {"price": cfg.subscription_price_id, "quantity": quantity},
            ],
            "mode": "subscription",
            "success_url": self.config.payment_success_url,
            "cancel_url": self.config.payment_cancel_url,
            "metadata": metadata,
            "customer_update": {"address": "auto"},
            "billing_address_collection": "required",
        }
        # Stripe rejects promotion codes alongside explicit discounts
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        else:
            params["allow_promotion_codes"] = True

        session = await self._call(stripe.checkout.Session.create, api_key=cfg.api_key, **params)
        logger.info(f"Created checkout session: {session.id}")
        return CheckoutSession(id=session.id, url=session.url)
