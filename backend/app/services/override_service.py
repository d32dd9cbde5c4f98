# app/services/override_service.py
#
# Student-specific inputs to the fee calculation, all resolved for
# one as-of date:
#   student_fee_overrides  → waivers, custom amounts, discounts
#   scholarships           → approved, time-bounded discount policies
#   student_fee_profile    → transport opt-out/route/override, cycle overrides
#   student_optional_fees  → optional categories the student opted into
#
# Nothing here is an error when absent: no row means no adjustment.

from datetime import date
from typing import Iterable, Optional
import logging

from app.core.database import SchoolDB
from app.schemas.fees import (
    CategoryOverride, ResolvedOverrides, Scholarship,
    StudentFeeOverride, StudentFeeProfile,
)

logger = logging.getLogger(__name__)


def stack_overrides(overrides: Iterable[StudentFeeOverride]) -> ResolvedOverrides:
    """
    Combine every active override row, newest first.

    Per category: any full-free row wins outright, otherwise the
    first custom amount seen wins, otherwise discounts add up.
    A full-free row with no category waives everything.
    """
    resolved = ResolvedOverrides()
    for override in overrides:
        if override.fee_category_id is None:
            if override.is_full_free:
                resolved.global_full_waiver = True
            continue

        current = resolved.per_category.setdefault(override.fee_category_id, CategoryOverride())
        if current.is_full_free:
            continue
        if override.is_full_free:
            current.is_full_free = True
            continue
        if override.custom_fee_amount is not None and current.custom_fee_amount is None:
            current.custom_fee_amount = override.custom_fee_amount
        if override.discount_amount:
            current.discount_amount += override.discount_amount
    return resolved


def _active_on(query, as_of: date, from_column: str = "effective_from", to_column: str = "effective_to"):
    day = as_of.isoformat()
    return (
        query
        .eq("is_active", True)
        .lte(from_column, day)
        .or_(f"{to_column}.is.null,{to_column}.gte.{day}")
    )


async def overrides_for(db: SchoolDB, student_id: str, as_of: date) -> ResolvedOverrides:
    rows = await db.read(
        _active_on(db.select("student_fee_overrides").eq("student_id", student_id), as_of)
        .order("created_at", desc=True),
        "overrides_for",
    )
    return stack_overrides(StudentFeeOverride.from_row(r) for r in rows)


async def scholarships_for(db: SchoolDB, student_id: str, as_of: date) -> list[Scholarship]:
    """Only approved scholarships whose window covers the date."""
    rows = await db.read(
        _active_on(
            db.select("scholarships")
            .eq("student_id", student_id)
            .eq("status", "approved"),
            as_of,
        ).order("effective_from", desc=True),
        "scholarships_for",
    )
    return [Scholarship.from_row(r) for r in rows]


async def fee_profile_for(db: SchoolDB, student_id: str, as_of: date) -> StudentFeeProfile:
    rows = await db.read(
        _active_on(db.select("student_fee_profile").eq("student_id", student_id), as_of)
        .order("effective_from", desc=True)
        .limit(1),
        "fee_profile_for",
    )
    return StudentFeeProfile.from_row(rows[0] if rows else None)


async def optional_fee_opt_ins(db: SchoolDB, student_id: str, as_of: date) -> list[str]:
    rows = await db.read(
        _active_on(
            db.select("student_optional_fees", "fee_category_id, opted_in, effective_from, effective_to, is_active")
            .eq("student_id", student_id)
            .eq("opted_in", True),
            as_of,
        ),
        "optional_fee_opt_ins",
    )
    seen = []
    for row in rows:
        category_id = row.get("fee_category_id")
        if category_id and category_id not in seen:
            seen.append(category_id)
    return seen


async def transport_route_for(
    db: SchoolDB,
    student_id: str,
    profile: StudentFeeProfile,
) -> Optional[str]:
    """
    Route name the student rides: the profile's route when set,
    otherwise the latest active student_transport assignment.
    """
    if profile.transport_route:
        return profile.transport_route

    assignments = await db.read(
        db.select("student_transport", "route_id, created_at")
        .eq("student_id", student_id)
        .eq("is_active", True)
        .order("created_at", desc=True)
        .limit(1),
        "transport_route_for",
    )
    if not assignments or not assignments[0].get("route_id"):
        return None

    route_id = assignments[0]["route_id"]
    routes = await db.read(
        db.select("transport_routes", "id, route_name").eq("id", route_id),
        "transport_route_for",
    )
    if not routes:
        logger.warning(f"[transport_route_for] student {student_id} assigned to unknown route {route_id}")
        return None
    return routes[0].get("route_name")
