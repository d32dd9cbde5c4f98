# app/services/component_generator.py
#
# Write path of the ledger: fee schedule + student adjustments
# → one monthly_fee_components row per billable fee item per month.
#
# generate(db, student, year, month)   drafts for one month (no writes)
# upsert_component(db, draft)          idempotent write of one draft
# generate_for_student(...)            admission month → target month
# ensure_exists(...)                   generate_for_student through today
#
# The upsert matches on (student, year, month, fee_type, category)
# and never writes paid_amount or status on an existing row. The
# update is conditional on the paid_amount it read, so a payment that
# lands mid-regeneration makes the write miss and retry instead of
# leaving a stale pending_amount behind.

from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging

from app.core.database import SchoolDB
from app.schemas.fees import (
    CalculationStrategy, FeeCycle, FeeItem, FeeKind, to_date, to_decimal,
)
from app.schemas.ledger import (
    ComponentDraft, ComponentFeeType, GenerationResult,
)
from app.services import fee_version_service as versions
from app.services import override_service as overrides
from app.services.fee_calculator import compute_item
from app.utils.periods import (
    MonthRange, billing_date, due_date_for, month_index,
    period_end, period_start, quarter_of,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
COMPONENTS_TABLE = "monthly_fee_components"

# (school_id, student_id) pairs with a generation in flight in this process
_in_flight: set = set()


# ── Cycle gating & proration ─────────────────────────────────

def should_bill(cycle: FeeCycle, start_date: date, year: int, month: int) -> bool:
    """
    Whether a fee with this cycle, first owed on `start_date`,
    produces a charge in (year, month).
    """
    cycle = FeeCycle(cycle)
    if month_index(year, month) < month_index(start_date.year, start_date.month):
        return False

    if cycle == FeeCycle.monthly:
        return True
    if cycle == FeeCycle.quarterly:
        if month not in (1, 4, 7, 10):
            return False
        if year == start_date.year:
            return quarter_of(month) >= quarter_of(start_date.month)
        return year > start_date.year
    if cycle == FeeCycle.yearly:
        return month == 1 and year >= start_date.year
    if cycle == FeeCycle.one_time:
        return (year, month) == (start_date.year, start_date.month)
    return False


def prorate(amount: Decimal, cycle: FeeCycle) -> Decimal:
    """Share of a full-cycle amount billed in one triggering month."""
    cycle = FeeCycle(cycle)
    amount = Decimal(str(amount))
    if cycle == FeeCycle.quarterly:
        amount = amount / 3
    elif cycle == FeeCycle.yearly:
        amount = amount / 12
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ── Fee items ────────────────────────────────────────────────

async def load_student(db: SchoolDB, student_id: str) -> Optional[dict]:
    rows = await db.read(
        db.select("students", "id, class_group_id, admission_date, status")
        .eq("id", student_id)
        .limit(1),
        "load_student",
    )
    return rows[0] if rows else None


async def build_fee_items(
    db: SchoolDB,
    student: dict,
    as_of: date,
    strategy: CalculationStrategy,
    categories: Optional[dict] = None,
) -> list[FeeItem]:
    """
    Every fee the student owes as of `as_of`, at full-cycle amounts
    after overrides and scholarships. Class, transport and opted-in
    optional fees; anything without a covering version is left out.
    """
    student_id = student["id"]
    class_group_id = student.get("class_group_id")
    admitted = to_date(student.get("admission_date")) or as_of
    if categories is None:
        categories = await versions.load_categories(db)

    resolved = await overrides.overrides_for(db, student_id, as_of)
    scholarships = await overrides.scholarships_for(db, student_id, as_of)
    profile = await overrides.fee_profile_for(db, student_id, as_of)

    def item(fee_type, fee_kind, category_id, name, cycle, base, version_number, starts, route=None):
        calc = compute_item(base, category_id, fee_kind, resolved, scholarships, strategy)
        return FeeItem(
            fee_type=fee_type.value,
            fee_kind=fee_kind,
            fee_category_id=category_id,
            fee_name=name,
            fee_cycle=cycle,
            base_amount=calc.base_amount,
            discount_amount=calc.discount,
            final_amount=calc.final,
            version_number=version_number,
            start_date=max(starts, admitted),
            transport_route_name=route,
        )

    items = []

    if class_group_id:
        for fee in await versions.resolve_class_fees(
            db, class_group_id, as_of, categories, profile.tuition_fee_cycle
        ):
            items.append(item(
                ComponentFeeType.class_fee, fee.fee_kind, fee.fee_category_id, fee.category_name,
                fee.version.fee_cycle, fee.version.amount,
                fee.version.version_number, fee.version.effective_from,
            ))

    if profile.transport_enabled:
        route = await overrides.transport_route_for(db, student_id, profile)
        if route:
            version = await versions.resolve(
                db, versions.TRANSPORT_FEES,
                {"class_group_id": class_group_id, "route_name": route},
                profile.transport_fee_cycle, as_of,
            )
            if profile.transport_fee_override is not None:
                base = profile.transport_fee_override
            elif version is not None:
                base = version.amount
            else:
                base = None
            if base is not None:
                items.append(item(
                    ComponentFeeType.transport_fee, FeeKind.transport, None, f"Transport - {route}",
                    profile.transport_fee_cycle, base,
                    version.version_number if version else None,
                    version.effective_from if version else admitted,
                    route,
                ))

    for category_id in await overrides.optional_fee_opt_ins(db, student_id, as_of):
        category = categories.get(category_id) or {}
        for version in await versions.resolve_optional_fees(db, class_group_id, category_id, as_of):
            items.append(item(
                ComponentFeeType.custom_fee, FeeKind.custom, category_id, category.get("name") or "Optional Fee",
                version.fee_cycle, version.amount,
                version.version_number, version.effective_from,
            ))

    return items


# ── Drafts ───────────────────────────────────────────────────

def drafts_for_month(
    student_id: str,
    items: list[FeeItem],
    year: int,
    month: int,
    due_day: int,
) -> list[ComponentDraft]:
    drafts = []
    seen = set()
    for fee in items:
        if not should_bill(fee.fee_cycle, fee.start_date, year, month):
            continue
        draft = ComponentDraft(
            student_id=student_id,
            fee_category_id=None if fee.fee_kind == FeeKind.transport else fee.fee_category_id,
            fee_type=fee.fee_type,
            fee_name=fee.fee_name,
            fee_cycle=fee.fee_cycle,
            period_year=year,
            period_month=month,
            period_start=period_start(year, month),
            period_end=period_end(year, month),
            fee_amount=prorate(fee.final_amount, fee.fee_cycle),
            due_date=due_date_for(year, month, due_day),
            effective_from=fee.start_date,
            transport_route_name=fee.transport_route_name,
        )
        if draft.match_key in seen:
            logger.warning(
                f"[generate] student {student_id} {year}-{month:02d}: two "
                f"{fee.fee_type} items for category {fee.fee_category_id}, keeping the first"
            )
            continue
        seen.add(draft.match_key)
        drafts.append(draft)
    return drafts


async def generate(
    db: SchoolDB,
    student_id: str,
    year: int,
    month: int,
    strategy: CalculationStrategy,
    due_day: int,
    student: Optional[dict] = None,
    categories: Optional[dict] = None,
) -> list[ComponentDraft]:
    """
    Drafts for one month. An unknown student, a month before
    admission, or a student with no fee assigned all give [].
    Read failures raise FeeDataError.
    """
    if student is None:
        student = await load_student(db, student_id)
    if not student:
        logger.info(f"[generate] student {student_id} not found in school {db.school_id}")
        return []

    admitted = to_date(student.get("admission_date")) or period_start(year, month)
    if month_index(year, month) < month_index(admitted.year, admitted.month):
        return []

    as_of = billing_date(year, month, admitted)
    items = await build_fee_items(db, student, as_of, strategy, categories)
    return drafts_for_month(student_id, items, year, month, due_day)


# ── Upsert ───────────────────────────────────────────────────

def _match_query(db: SchoolDB, draft: ComponentDraft):
    query = (
        db.select(COMPONENTS_TABLE, "id, paid_amount, pending_amount, status")
        .eq("student_id", draft.student_id)
        .eq("period_year", draft.period_year)
        .eq("period_month", draft.period_month)
        .eq("fee_type", draft.fee_type.value)
    )
    if draft.fee_category_id is None:
        return query.is_("fee_category_id", "null")
    return query.eq("fee_category_id", draft.fee_category_id)


async def upsert_component(
    db: SchoolDB,
    draft: ComponentDraft,
    max_retries: int,
) -> str:
    """
    Write one draft. Returns "generated", "updated", "conflict"
    or "failed". Never raises; failures are logged so sibling
    components still get written.
    """
    label = (
        f"{draft.student_id} {draft.period_year}-{draft.period_month:02d} "
        f"{draft.fee_type.value}/{draft.fee_category_id}"
    )
    try:
        for attempt in range(1, max_retries + 1):
            existing = await db.fetch_first(_match_query(db, draft))

            if existing is None:
                await db.insert(COMPONENTS_TABLE, draft.insert_payload())
                return "generated"

            paid_at_read = to_decimal(existing.get("paid_amount"))
            changed = await db.update_where(
                COMPONENTS_TABLE,
                {
                    "fee_amount":           float(draft.fee_amount),
                    "pending_amount":       float(max(Decimal("0"), draft.fee_amount - paid_at_read)),
                    "fee_name":             draft.fee_name,
                    "transport_route_name": draft.transport_route_name,
                    "due_date":             draft.due_date.isoformat(),
                    "updated_at":           datetime.now(timezone.utc).isoformat(),
                },
                id=existing["id"],
                paid_amount=existing.get("paid_amount"),
            )
            if changed:
                return "updated"

            logger.warning(f"[upsert] {label}: paid_amount moved under us (attempt {attempt}/{max_retries})")

        logger.warning(f"[upsert] {label}: giving up after {max_retries} attempts, row left untouched")
        return "conflict"

    except Exception as e:
        logger.error(f"[upsert] {label}: write failed: {e}")
        return "failed"


# ── Per-student runs ─────────────────────────────────────────

async def generate_for_student(
    db: SchoolDB,
    student_id: str,
    through_year: int,
    through_month: int,
    strategy: CalculationStrategy,
    due_day: int,
    max_retries: int,
) -> GenerationResult:
    """
    Generate and upsert every month from the student's admission
    month through (through_year, through_month).

    A read failure aborts this student (FeeDataError propagates).
    Write failures on single components are counted, not raised.
    A second call for the same student while one is running in
    this process returns immediately with skipped=True.
    """
    result = GenerationResult(student_id=student_id)
    key = (db.school_id, student_id)
    if key in _in_flight:
        logger.warning(f"[generate] student {student_id} already being generated, skipping")
        result.skipped = True
        return result

    _in_flight.add(key)
    try:
        student = await load_student(db, student_id)
        if not student:
            logger.info(f"[generate] student {student_id} not found in school {db.school_id}")
            return result

        admitted = to_date(student.get("admission_date")) or date(through_year, 1, 1)
        categories = await versions.load_categories(db)

        for year, month in MonthRange(admitted, date(through_year, through_month, 1)):
            drafts = await generate(
                db, student_id, year, month, strategy, due_day,
                student=student, categories=categories,
            )
            for draft in drafts:
                outcome = await upsert_component(db, draft, max_retries)
                if outcome == "generated":
                    result.generated += 1
                elif outcome == "updated":
                    result.updated += 1
                elif outcome == "conflict":
                    result.conflicts += 1
                else:
                    result.failed += 1

        logger.debug(
            f"[generate] student {student_id} through {through_year}-{through_month:02d}: "
            f"{result.generated} new, {result.updated} updated, "
            f"{result.failed} failed, {result.conflicts} conflicts"
        )
        return result
    finally:
        _in_flight.discard(key)


async def ensure_exists(
    db: SchoolDB,
    student_id: str,
    today: date,
    strategy: CalculationStrategy,
    due_day: int,
    max_retries: int,
) -> GenerationResult:
    """Bring the student's ledger up to date through the current month."""
    return await generate_for_student(
        db, student_id, today.year, today.month, strategy, due_day, max_retries,
    )


async def check_components_exist(db: SchoolDB, student_id: str, year: int, month: int) -> bool:
    rows = await db.read(
        db.select(COMPONENTS_TABLE, "id")
        .eq("student_id", student_id)
        .eq("period_year", year)
        .eq("period_month", month)
        .limit(1),
        "check_components_exist",
    )
    return bool(rows)

