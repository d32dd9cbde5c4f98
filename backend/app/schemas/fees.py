# app/schemas/fees.py
#
# Fee schedule side: categories, effective-dated versions,
# student overrides, scholarships and the fee profile.
# Rows come back from PostgREST as dicts; `from_row` turns them
# into these models so the engine works with Decimals and dates.

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date
from decimal import Decimal
from enum import Enum


class FeeKind(str, Enum):
    """Classification stored on fee_categories.fee_type."""
    tuition   = "tuition"
    transport = "transport"
    custom    = "custom"


class FeeCycle(str, Enum):
    monthly   = "monthly"
    quarterly = "quarterly"
    yearly    = "yearly"
    one_time  = "one-time"


class ScholarshipType(str, Enum):
    percentage  = "percentage"
    fixed       = "fixed"
    full_waiver = "full_waiver"


class ScholarshipScope(str, Enum):
    all               = "all"
    tuition_only      = "tuition_only"
    transport_only    = "transport_only"
    specific_category = "specific_category"


class CalculationStrategy(str, Enum):
    # custom override amount is still discounted by scholarships
    comprehensive = "comprehensive"
    # custom override amount is final
    simplified    = "simplified"


def to_decimal(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def to_optional_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def to_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ── Fee versions ─────────────────────────────────────────────
class FeeVersion(BaseModel):
    id: Optional[str] = None
    scope_id: Optional[str] = None          # class_group_id (null = all classes)
    fee_category_id: Optional[str] = None   # null for transport
    route_name: Optional[str] = None        # transport only
    fee_cycle: FeeCycle
    amount: Decimal
    version_number: int
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict) -> "FeeVersion":
        return cls(
            id=row.get("id"),
            scope_id=row.get("class_group_id"),
            fee_category_id=row.get("fee_category_id"),
            route_name=row.get("route_name"),
            fee_cycle=row["fee_cycle"],
            amount=to_decimal(row.get("amount")),
            version_number=int(row.get("version_number") or 1),
            effective_from=to_date(row["effective_from_date"]),
            effective_to=to_date(row.get("effective_to_date")),
            is_active=bool(row.get("is_active", True)),
        )

    def covers(self, as_of: date) -> bool:
        """
        Active versions apply inside their window. A closed version
        (effective_to set by the next hike) still applies inside its
        window. An open-ended inactive version was withdrawn.
        """
        if self.effective_from > as_of:
            return False
        if self.effective_to is not None and self.effective_to < as_of:
            return False
        return self.is_active or self.effective_to is not None


class FeeHikeRequest(BaseModel):
    class_group_id: Optional[str] = None
    fee_category_id: Optional[str] = None
    route_name: Optional[str] = None
    fee_cycle: FeeCycle = FeeCycle.monthly
    amount: Decimal = Field(gt=0, decimal_places=2)
    effective_from: date


class FeeVersionResponse(BaseModel):
    id: Optional[str] = None
    class_group_id: Optional[str] = None
    fee_category_id: Optional[str] = None
    route_name: Optional[str] = None
    fee_cycle: FeeCycle
    amount: Decimal
    version_number: int
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool


# ── Student overrides & scholarships ─────────────────────────
class StudentFeeOverride(BaseModel):
    fee_category_id: Optional[str] = None   # null = applies to every category
    is_full_free: bool = False
    custom_fee_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    @classmethod
    def from_row(cls, row: dict) -> "StudentFeeOverride":
        return cls(
            fee_category_id=row.get("fee_category_id"),
            is_full_free=bool(row.get("is_full_free")),
            custom_fee_amount=to_optional_decimal(row.get("custom_fee_amount")),
            discount_amount=to_optional_decimal(row.get("discount_amount")),
            effective_from=to_date(row.get("effective_from")),
            effective_to=to_date(row.get("effective_to")),
        )


class CategoryOverride(BaseModel):
    """Result of stacking every active override row for one category."""
    is_full_free: bool = False
    custom_fee_amount: Optional[Decimal] = None
    discount_amount: Decimal = Decimal("0")


class ResolvedOverrides(BaseModel):
    per_category: dict[str, CategoryOverride] = {}
    global_full_waiver: bool = False

    def for_category(self, fee_category_id: Optional[str]) -> Optional[CategoryOverride]:
        if fee_category_id is None:
            return None
        return self.per_category.get(fee_category_id)


class Scholarship(BaseModel):
    scholarship_type: ScholarshipType
    applies_to: ScholarshipScope = ScholarshipScope.all
    fee_category_id: Optional[str] = None
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None

    @classmethod
    def from_row(cls, row: dict) -> "Scholarship":
        return cls(
            scholarship_type=row["scholarship_type"],
            applies_to=row.get("applies_to") or ScholarshipScope.all,
            fee_category_id=row.get("fee_category_id"),
            discount_percentage=to_optional_decimal(row.get("discount_percentage")),
            discount_amount=to_optional_decimal(row.get("discount_amount")),
        )

    def applies(self, fee_kind: FeeKind, fee_category_id: Optional[str]) -> bool:
        if self.applies_to == ScholarshipScope.all:
            return True
        if self.applies_to == ScholarshipScope.tuition_only:
            return fee_kind == FeeKind.tuition
        if self.applies_to == ScholarshipScope.transport_only:
            return fee_kind == FeeKind.transport
        return (
            self.fee_category_id is not None
            and self.fee_category_id == fee_category_id
        )


class StudentFeeProfile(BaseModel):
    transport_enabled: bool = True
    transport_route: Optional[str] = None
    transport_fee_override: Optional[Decimal] = None
    tuition_fee_cycle: Optional[FeeCycle] = None
    transport_fee_cycle: FeeCycle = FeeCycle.monthly

    @classmethod
    def from_row(cls, row: Optional[dict]) -> "StudentFeeProfile":
        if not row:
            return cls()
        enabled = row.get("transport_enabled")
        return cls(
            transport_enabled=True if enabled is None else bool(enabled),
            transport_route=row.get("transport_route") or None,
            transport_fee_override=to_optional_decimal(row.get("transport_fee_override")),
            tuition_fee_cycle=row.get("tuition_fee_cycle") or None,
            transport_fee_cycle=row.get("transport_fee_cycle") or FeeCycle.monthly,
        )


# ── Calculation ──────────────────────────────────────────────
class ItemCalculation(BaseModel):
    base_amount: Decimal
    discount: Decimal
    final: Decimal


class FeeItem(BaseModel):
    """
    One billable line for a student on a billing date, before
    proration: which fee, which cycle, and what it costs after
    overrides and scholarships.
    """
    fee_type: str                           # class-fee | transport-fee | custom-fee
    fee_kind: FeeKind
    fee_category_id: Optional[str] = None
    fee_name: str
    fee_cycle: FeeCycle
    base_amount: Decimal
    discount_amount: Decimal = Decimal("0")
    final_amount: Decimal
    version_number: Optional[int] = None
    start_date: date                        # drives cycle gating
    transport_route_name: Optional[str] = None
