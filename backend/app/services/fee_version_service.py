# app/services/fee_version_service.py
#
# Effective-dated fee schedules.
#
# Every fee amount lives in a version chain per (scope, cycle):
#   class_fee_versions       scope = class_group_id + fee_category_id
#   transport_fee_versions   scope = class_group_id + route_name
#   optional_fee_versions    scope = class_group_id (null = all classes) + fee_category_id
#
# A hike never edits an amount. It appends version N+1, then closes
# the current version (effective_to = day before the new start,
# is_active = false). Billing a month always resolves with that
# month's date, so a hike can never change a past month's amount.

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional
import logging

from app.core.database import SchoolDB
from app.core.exceptions import FeeVersionConflictError
from app.schemas.fees import FeeCycle, FeeKind, FeeVersion
from app.services.activity_service import log_activity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VersionTable:
    name: str
    scope_columns: tuple


CLASS_FEES     = VersionTable("class_fee_versions", ("class_group_id", "fee_category_id"))
TRANSPORT_FEES = VersionTable("transport_fee_versions", ("class_group_id", "route_name"))
OPTIONAL_FEES  = VersionTable("optional_fee_versions", ("class_group_id", "fee_category_id"))


@dataclass(frozen=True)
class ClassFee:
    """A resolved class-fee version together with its category."""
    version: FeeVersion
    fee_category_id: str
    category_name: str
    fee_kind: FeeKind


# ── Pure selection ───────────────────────────────────────────

def select_version(
    versions: Iterable[FeeVersion],
    cycle: FeeCycle,
    as_of: date,
) -> Optional[FeeVersion]:
    """
    The version in force on `as_of` for one cycle: highest
    version_number among those whose window covers the date.
    """
    candidates = [
        v for v in versions
        if v.fee_cycle == FeeCycle(cycle) and v.covers(as_of)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda v: v.version_number)


# ── Queries ──────────────────────────────────────────────────

def _scoped(query, table: VersionTable, scope: dict):
    for column in table.scope_columns:
        value = scope.get(column)
        query = query.is_(column, "null") if value is None else query.eq(column, value)
    return query


def _covering(query, as_of: date):
    day = as_of.isoformat()
    return (
        query
        .lte("effective_from_date", day)
        .or_(f"effective_to_date.is.null,effective_to_date.gte.{day}")
    )


async def resolve(
    db: SchoolDB,
    table: VersionTable,
    scope: dict,
    cycle: FeeCycle,
    as_of: date,
) -> Optional[FeeVersion]:
    """
    Single version active on `as_of` for the scope key and cycle,
    or None when nothing covers the date (the fee contributes nothing).
    """
    query = _covering(
        _scoped(db.select(table.name), table, scope).eq("fee_cycle", FeeCycle(cycle).value),
        as_of,
    )
    rows = await db.read(query, f"resolve:{table.name}")
    return select_version((FeeVersion.from_row(r) for r in rows), cycle, as_of)


async def load_categories(db: SchoolDB) -> dict[str, dict]:
    rows = await db.read(
        db.select("fee_categories", "id, name, code, fee_type, is_active"),
        "load_categories",
    )
    return {r["id"]: r for r in rows}


async def resolve_class_fees(
    db: SchoolDB,
    class_group_id: str,
    as_of: date,
    categories: dict[str, dict],
    tuition_cycle: Optional[FeeCycle] = None,
) -> list[ClassFee]:
    """
    Every class-fee item in force for the class on `as_of`, one per
    (category, cycle). Transport-classified categories are skipped;
    transport is priced from the route tables instead.
    """
    query = _covering(
        db.select(CLASS_FEES.name).eq("class_group_id", class_group_id),
        as_of,
    )
    rows = await db.read(query, "resolve_class_fees")

    grouped: dict[tuple, list[FeeVersion]] = {}
    for row in rows:
        version = FeeVersion.from_row(row)
        grouped.setdefault((version.fee_category_id, version.fee_cycle), []).append(version)

    fees = []
    for (category_id, cycle), versions in sorted(
        grouped.items(), key=lambda kv: (str(kv[0][0]), kv[0][1].value)
    ):
        category = categories.get(category_id) or {}
        kind = FeeKind(category.get("fee_type") or FeeKind.custom.value)
        if kind == FeeKind.transport:
            continue
        if kind == FeeKind.tuition and tuition_cycle and cycle != FeeCycle(tuition_cycle):
            continue
        version = select_version(versions, cycle, as_of)
        if version is None:
            continue
        fees.append(ClassFee(
            version=version,
            fee_category_id=category_id,
            category_name=category.get("name") or "Class Fee",
            fee_kind=kind,
        ))
    return fees


async def resolve_optional_fees(
    db: SchoolDB,
    class_group_id: Optional[str],
    fee_category_id: str,
    as_of: date,
) -> list[FeeVersion]:
    """
    Optional fee versions for one category. A class-specific schedule
    wins over the all-classes one (class_group_id null).
    """
    query = _covering(
        db.select(OPTIONAL_FEES.name).eq("fee_category_id", fee_category_id),
        as_of,
    )
    rows = await db.read(query, "resolve_optional_fees")
    versions = [FeeVersion.from_row(r) for r in rows]

    specific = [v for v in versions if class_group_id and v.scope_id == class_group_id]
    general = [v for v in versions if v.scope_id is None]
    chosen = specific or general

    resolved = []
    for cycle in sorted({v.fee_cycle for v in chosen}, key=lambda c: c.value):
        version = select_version(chosen, cycle, as_of)
        if version is not None:
            resolved.append(version)
    return resolved


# ── Hikes ────────────────────────────────────────────────────

async def hike(
    db: SchoolDB,
    table: VersionTable,
    scope: dict,
    cycle: FeeCycle,
    new_amount: Decimal,
    effective_from: date,
    created_by: Optional[str] = None,
) -> FeeVersion:
    """
    Append a new version starting `effective_from`, then close the one
    it supersedes. Raises FeeVersionConflictError when the new start
    is not after the current version's start.
    """
    if Decimal(str(new_amount)) <= 0:
        raise FeeVersionConflictError("Fee amount must be greater than zero")

    cycle = FeeCycle(cycle)
    history = await db.read(
        _scoped(db.select(table.name), table, scope)
        .eq("fee_cycle", cycle.value)
        .order("version_number", desc=True),
        f"hike:{table.name}",
    )
    versions = [FeeVersion.from_row(r) for r in history]
    latest_number = max((v.version_number for v in versions), default=0)

    to_close = [
        v for v in versions
        if v.is_active and (v.effective_to is None or v.effective_to >= effective_from)
    ]
    for current in to_close:
        if current.effective_from >= effective_from:
            raise FeeVersionConflictError(
                f"Version {current.version_number} already starts on "
                f"{current.effective_from.isoformat()}; a hike must start after it"
            )

    payload = {column: scope.get(column) for column in table.scope_columns}
    payload.update({
        "fee_cycle":           cycle.value,
        "amount":              float(new_amount),
        "version_number":      latest_number + 1,
        "effective_from_date": effective_from.isoformat(),
        "effective_to_date":   None,
        "is_active":           True,
        "created_by":          created_by,
    })
    # Until the old version is closed the two overlap; the higher
    # version_number wins, so every date stays covered.
    created = await db.insert(table.name, payload)

    closed_through = effective_from - timedelta(days=1)
    for current in to_close:
        await db.update_where(
            table.name,
            {
                "effective_to_date": closed_through.isoformat(),
                "is_active":         False,
                "updated_at":        datetime.now(timezone.utc).isoformat(),
            },
            id=current.id,
        )

    logger.info(
        f"[hike] {table.name} {scope} {cycle.value}: v{latest_number + 1} "
        f"= {new_amount} from {effective_from.isoformat()} "
        f"(closed {len(to_close)} previous)"
    )
    await log_activity(
        db.raw(),
        action="fee.hiked",
        school_id=db.school_id,
        user_id=created_by,
        entity_type=table.name,
        entity_id=created.get("id"),
        metadata={
            "scope": {k: v for k, v in scope.items() if v is not None},
            "fee_cycle": cycle.value,
            "amount": float(new_amount),
            "effective_from": effective_from.isoformat(),
            "version_number": latest_number + 1,
        },
    )
    return FeeVersion.from_row({**payload, **created})


async def version_history(
    db: SchoolDB,
    table: VersionTable,
    scope: dict,
    cycle: Optional[FeeCycle] = None,
) -> list[FeeVersion]:
    query = _scoped(db.select(table.name), table, scope)
    if cycle is not None:
        query = query.eq("fee_cycle", FeeCycle(cycle).value)
    rows = await db.read(query.order("version_number", desc=True), f"history:{table.name}")
    return [FeeVersion.from_row(r) for r in rows]
