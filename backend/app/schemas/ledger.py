# app/schemas/ledger.py
#
# The monthly ledger side: one MonthlyFeeComponent row per fee
# item per calendar month, the drafts the generator produces,
# and the grouped read model served to the statement screen.

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from decimal import Decimal
from enum import Enum

from app.schemas.fees import FeeCycle, to_date, to_decimal


class ComponentFeeType(str, Enum):
    class_fee     = "class-fee"
    transport_fee = "transport-fee"
    custom_fee    = "custom-fee"


class ComponentStatus(str, Enum):
    pending        = "pending"
    partially_paid = "partially-paid"
    paid           = "paid"
    overdue        = "overdue"      # display only, never written by the engine


MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


class ComponentDraft(BaseModel):
    """What generation wants a ledger row to say for one month."""
    student_id: str
    fee_category_id: Optional[str] = None
    fee_type: ComponentFeeType
    fee_name: str
    fee_cycle: FeeCycle
    period_year: int
    period_month: int
    period_start: date
    period_end: date
    fee_amount: Decimal
    due_date: date
    effective_from: Optional[date] = None
    transport_route_name: Optional[str] = None

    @property
    def match_key(self) -> tuple:
        return (
            self.student_id,
            self.period_year,
            self.period_month,
            self.fee_type.value,
            self.fee_category_id,
        )

    def insert_payload(self) -> dict:
        return {
            "student_id":           self.student_id,
            "fee_category_id":      self.fee_category_id,
            "fee_type":             self.fee_type.value,
            "fee_name":             self.fee_name,
            "fee_cycle":            self.fee_cycle.value,
            "period_year":          self.period_year,
            "period_month":         self.period_month,
            "period_start":         self.period_start.isoformat(),
            "period_end":           self.period_end.isoformat(),
            "fee_amount":           float(self.fee_amount),
            "paid_amount":          0,
            "pending_amount":       float(self.fee_amount),
            "status":               ComponentStatus.pending.value,
            "due_date":             self.due_date.isoformat(),
            "effective_from":       self.effective_from.isoformat() if self.effective_from else None,
            "transport_route_name": self.transport_route_name,
        }


class MonthlyFeeComponent(BaseModel):
    id: Optional[str] = None
    student_id: str
    fee_category_id: Optional[str] = None
    fee_type: str
    fee_name: Optional[str] = None
    period_year: int
    period_month: int
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    fee_amount: Decimal
    paid_amount: Decimal = Decimal("0")
    pending_amount: Decimal
    status: str = ComponentStatus.pending.value
    due_date: Optional[date] = None
    transport_route_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "MonthlyFeeComponent":
        return cls(
            id=row.get("id"),
            student_id=row["student_id"],
            fee_category_id=row.get("fee_category_id"),
            fee_type=row["fee_type"],
            fee_name=row.get("fee_name"),
            period_year=int(row["period_year"]),
            period_month=int(row["period_month"]),
            period_start=to_date(row.get("period_start")),
            period_end=to_date(row.get("period_end")),
            fee_amount=to_decimal(row.get("fee_amount")),
            paid_amount=to_decimal(row.get("paid_amount")),
            pending_amount=to_decimal(row.get("pending_amount")),
            status=row.get("status") or ComponentStatus.pending.value,
            due_date=to_date(row.get("due_date")),
            transport_route_name=row.get("transport_route_name"),
        )


# ── Generation results ───────────────────────────────────────
class GenerationResult(BaseModel):
    student_id: str
    generated: int = 0
    updated: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: bool = False       # another run for this student was in flight


class StudentError(BaseModel):
    student_id: str
    error: str


class GenerationJobResult(BaseModel):
    target_year: int
    target_month: int
    total_students: int = 0
    processed: int = 0
    skipped: int = 0            # another run for the student was in flight
    generated: int = 0
    updated: int = 0
    failed: int = 0
    conflicts: int = 0
    errors: List[StudentError] = []


# ── Ledger read model ────────────────────────────────────────
class LedgerComponent(BaseModel):
    id: Optional[str] = None
    fee_type: str
    fee_name: Optional[str] = None
    fee_category_id: Optional[str] = None
    fee_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    status: str                 # stored status, or "overdue" derived for display
    stored_status: str
    due_date: Optional[date] = None
    late_fine: Decimal = Decimal("0")


class LedgerMonth(BaseModel):
    month: str                  # "Mar 2024"
    year: int
    month_number: int
    components: List[LedgerComponent] = []
    total_fee: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")


class LedgerSummary(BaseModel):
    total_fee: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    total_late_fine: Decimal = Decimal("0")
    overdue_count: int = 0


class LedgerResponse(BaseModel):
    student_id: str
    start_year: int
    end_year: int
    months: List[LedgerMonth] = []
    summary: LedgerSummary = LedgerSummary()
    page: int = 1
    limit: Optional[int] = None
    total_months: int = 0
    total_pages: int = 1


class ComponentsExistResponse(BaseModel):
    student_id: str
    year: int
    month: int
    exists: bool


class GenerationJobRequest(BaseModel):
    """Body of the scheduler trigger. Empty = current month, every school."""
    target_year: Optional[int] = Field(None, ge=2000, le=2100)
    target_month: Optional[int] = Field(None, ge=1, le=12)
    school_id: Optional[str] = None
