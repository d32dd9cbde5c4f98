# app/services/ledger_service.py
#
# Read path: stored monthly_fee_components grouped into a
# month-by-month statement. Nothing here writes. "overdue" and the
# late fine are worked out for display only; the stored status
# column is returned alongside as stored_status.

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging
import math

from app.core.database import SchoolDB
from app.core.exceptions import FeeDataError, LedgerReadError
from app.schemas.fees import to_decimal
from app.schemas.ledger import (
    ComponentStatus, LedgerComponent, LedgerMonth, LedgerResponse,
    LedgerSummary, MONTH_NAMES, MonthlyFeeComponent,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
OPEN_STATUSES = (ComponentStatus.pending.value, ComponentStatus.partially_paid.value)


def display_status(component: MonthlyFeeComponent, today: date) -> str:
    if (
        component.status in OPEN_STATUSES
        and component.due_date is not None
        and component.due_date < today
        and component.pending_amount > 0
    ):
        return ComponentStatus.overdue.value
    return component.status


def fine_for(rules: list[dict], due_date: Optional[date], pending: Decimal, today: date) -> Decimal:
    """
    Late fine for one component: the rule with the largest
    days_after_due not beyond the days overdue, capped by
    max_fine_amount.
    """
    if due_date is None or pending <= 0:
        return ZERO
    days_overdue = (today - due_date).days
    if days_overdue <= 0:
        return ZERO

    eligible = [r for r in rules if int(r.get("days_after_due") or 0) <= days_overdue]
    if not eligible:
        return ZERO
    rule = max(eligible, key=lambda r: int(r.get("days_after_due") or 0))

    fine_type = rule.get("fine_type")
    if fine_type == "fixed":
        fine = to_decimal(rule.get("fine_amount"))
    elif fine_type == "percentage":
        fine = pending * to_decimal(rule.get("fine_percentage")) / 100
    elif fine_type == "per_day":
        fine = to_decimal(rule.get("fine_amount")) * days_overdue
    else:
        fine = ZERO

    if rule.get("max_fine_amount"):
        fine = min(fine, to_decimal(rule.get("max_fine_amount")))
    return max(ZERO, fine).quantize(CENT, rounding=ROUND_HALF_UP)


async def load_fine_rules(db: SchoolDB, today: date) -> list[dict]:
    day = today.isoformat()
    return await db.read(
        db.select("fine_rules")
        .eq("is_active", True)
        .or_(f"effective_to.is.null,effective_to.gte.{day}"),
        "load_fine_rules",
    )


def group_months(
    components: list[MonthlyFeeComponent],
    rules: list[dict],
    today: date,
) -> tuple[list[LedgerMonth], LedgerSummary]:
    months: dict[tuple, LedgerMonth] = {}
    summary = LedgerSummary()

    for comp in components:
        key = (comp.period_year, comp.period_month)
        month = months.get(key)
        if month is None:
            month = LedgerMonth(
                month=f"{MONTH_NAMES[comp.period_month - 1]} {comp.period_year}",
                year=comp.period_year,
                month_number=comp.period_month,
            )
            months[key] = month

        status = display_status(comp, today)
        late_fine = (
            fine_for(rules, comp.due_date, comp.pending_amount, today)
            if status == ComponentStatus.overdue.value else ZERO
        )
        month.components.append(LedgerComponent(
            id=comp.id,
            fee_type=comp.fee_type,
            fee_name=comp.fee_name,
            fee_category_id=comp.fee_category_id,
            fee_amount=comp.fee_amount,
            paid_amount=comp.paid_amount,
            pending_amount=comp.pending_amount,
            status=status,
            stored_status=comp.status,
            due_date=comp.due_date,
            late_fine=late_fine,
        ))
        month.total_fee += comp.fee_amount
        month.total_paid += comp.paid_amount
        month.total_pending += comp.pending_amount

        summary.total_fee += comp.fee_amount
        summary.total_paid += comp.paid_amount
        summary.total_pending += comp.pending_amount
        summary.total_late_fine += late_fine
        if status == ComponentStatus.overdue.value:
            summary.overdue_count += 1

    ordered = [months[k] for k in sorted(months)]
    return ordered, summary


async def ledger(
    db: SchoolDB,
    student_id: str,
    start_year: int,
    end_year: int,
    today: date,
    page: int = 1,
    limit: Optional[int] = None,
) -> LedgerResponse:
    """
    Month-by-month statement for start_year..end_year, oldest first.
    Any read failure raises LedgerReadError; there is no partial result.
    """
    try:
        rows = await db.read(
            db.select("monthly_fee_components")
            .eq("student_id", student_id)
            .gte("period_year", start_year)
            .lte("period_year", end_year)
            .order("period_year")
            .order("period_month"),
            "ledger",
        )
        rules = await load_fine_rules(db, today)
    except FeeDataError as e:
        raise LedgerReadError(student_id, e.detail) from e

    components = [MonthlyFeeComponent.from_row(r) for r in rows]
    months, summary = group_months(components, rules, today)

    total_months = len(months)
    logger.debug(f"[ledger] student {student_id} {start_year}-{end_year}: {total_months} months, {summary.overdue_count} overdue")
    if limit:
        total_pages = max(1, math.ceil(total_months / limit))
        offset = (page - 1) * limit
        months = months[offset:offset + limit]
    else:
        page, total_pages = 1, 1

    return LedgerResponse(
        student_id=student_id,
        start_year=start_year,
        end_year=end_year,
        months=months,
        summary=summary,
        page=page,
        limit=limit,
        total_months=total_months,
        total_pages=total_pages,
    )
