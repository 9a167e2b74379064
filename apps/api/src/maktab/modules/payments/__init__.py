"""
Payments Module

Sibling discount pricing and checkout session issuance through Stripe.
One checkout is issued per billing group (guardian + maktab).
"""

from .discounts import DiscountDecision, SiblingDiscountPolicy, compute_discount
from .issuer import PaymentSession, PaymentSessionIssuer, StudentRef
from .provider import CheckoutSession, PaymentProvider, StripePaymentProvider

__all__ = [
    "CheckoutSession",
    "DiscountDecision",
    "PaymentProvider",
    "PaymentSession",
    "PaymentSessionIssuer",
    "SiblingDiscountPolicy",
    "StripePaymentProvider",
    "StudentRef",
    "compute_discount",
]
