"""
Sibling discount policy.

Families registering THRESHOLD or more children get a flat monthly
reduction per child for a fixed number of months. The discount does not
scale further with more children.
"""

from dataclasses import dataclass

from maktab.core.config import Settings, settings


@dataclass(frozen=True)
class SiblingDiscountPolicy:
    threshold: int = 3
    amount_off: int = 2000  # per child per month, minor units
    duration_months: int = 60
    currency: str = "gbp"

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SiblingDiscountPolicy":
        config = config or settings
        return cls(
            threshold=config.sibling_discount_threshold,
            amount_off=config.sibling_discount_amount_off,
            duration_months=config.sibling_discount_months,
            currency=config.stripe_currency,
        )


@dataclass(frozen=True)
class DiscountDecision:
    applies: bool
    amount_off: int
    duration_months: int


NO_DISCOUNT = DiscountDecision(applies=False, amount_off=0, duration_months=0)


def compute_discount(
    sibling_count: int,
    policy: SiblingDiscountPolicy | None = None,
) -> DiscountDecision:
    """Decide whether the sibling discount applies for a family of this size."""
    policy = policy or SiblingDiscountPolicy.from_settings()
    if sibling_count < policy.threshold:
        return NO_DISCOUNT
    return DiscountDecision(
        applies=True,
        amount_off=policy.amount_off,
        duration_months=policy.duration_months,
    )
