# app/services/fee_calculator.py
#
# Turns a resolved base amount into what the student pays for one
# fee item.
#
#   1. full-free override        → 0
#   2. custom override amount    → replaces the base
#   3. otherwise                 → base - summed override discounts (>= 0)
#   4. scholarships on what is left, total discount capped at that amount
#
# Two strategies exist for step 2 and the integrating caller must
# pick one:
#   comprehensive  custom amount still goes through step 4
#   simplified     custom amount is final

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from app.schemas.fees import (
    CalculationStrategy, FeeKind, ItemCalculation,
    ResolvedOverrides, Scholarship, ScholarshipType,
)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def scholarship_discount(
    amount: Decimal,
    fee_kind: FeeKind,
    fee_category_id: Optional[str],
    scholarships: Iterable[Scholarship],
) -> Decimal:
    """
    Sum of applicable scholarship discounts on `amount`. A full
    waiver takes the whole amount and stops the scan. Never more
    than `amount`.
    """
    total = ZERO
    for scholarship in scholarships:
        if not scholarship.applies(fee_kind, fee_category_id):
            continue
        if scholarship.scholarship_type == ScholarshipType.full_waiver:
            total = amount
            break
        if scholarship.scholarship_type == ScholarshipType.percentage and scholarship.discount_percentage:
            total += amount * scholarship.discount_percentage / 100
        elif scholarship.scholarship_type == ScholarshipType.fixed and scholarship.discount_amount:
            total += scholarship.discount_amount
    return min(total, amount)


def compute_item(
    base_amount: Decimal,
    fee_category_id: Optional[str],
    fee_kind: FeeKind,
    overrides: ResolvedOverrides,
    scholarships: Iterable[Scholarship],
    strategy: CalculationStrategy,
) -> ItemCalculation:
    base = max(ZERO, Decimal(str(base_amount)))

    if overrides.global_full_waiver:
        return ItemCalculation(base_amount=money(base), discount=money(base), final=ZERO)

    override = overrides.for_category(fee_category_id)

    if override is not None and override.is_full_free:
        return ItemCalculation(base_amount=money(base), discount=money(base), final=ZERO)

    if override is not None and override.custom_fee_amount is not None:
        amount = max(ZERO, override.custom_fee_amount)
        if CalculationStrategy(strategy) == CalculationStrategy.simplified:
            return _result(base, amount)
    else:
        discount = override.discount_amount if override is not None else ZERO
        amount = max(ZERO, base - discount)

    amount -= scholarship_discount(amount, FeeKind(fee_kind), fee_category_id, scholarships)
    return _result(base, max(ZERO, amount))


def _result(base: Decimal, final: Decimal) -> ItemCalculation:
    final = money(final)
    # A custom amount above the base is a surcharge, not a negative discount.
    discount = max(ZERO, money(base) - final)
    return ItemCalculation(base_amount=money(base), discount=discount, final=final)
