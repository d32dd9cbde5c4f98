# app/api/v1/endpoints/fees.py
#
# Fee ledger and fee schedule endpoints → school staff → SchoolDB.
# The school comes from the verified token, never from the request,
# so one school can never read or bill another school's students.
#
# Domain errors are mapped here:
#   FeeComputationError      → 500 "failed to compute fees for student X"
#   LedgerReadError          → 502
#   FeeDataError             → 502
#   FeeVersionConflictError  → 409

from datetime import date
from typing import Optional, List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from app.core.security import CurrentUser, get_current_user, require_roles
from app.core.database import SchoolDB, get_admin_client
from app.core.config import settings
from app.core.exceptions import (
    FeeComputationError, FeeDataError, FeeVersionConflictError, LedgerReadError,
)
from app.schemas.fees import (
    FeeCycle, FeeHikeRequest, FeeVersion, FeeVersionResponse,
)
from app.schemas.ledger import (
    ComponentsExistResponse, GenerationResult, LedgerResponse,
)
from app.schemas.common import APIResponse
from app.services import fee_version_service as versions
from app.services.component_generator import check_components_exist, ensure_exists
from app.services.ledger_service import ledger
from app.utils.periods import today_in

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Fee Ledger"])


def get_today() -> date:
    return today_in(settings.TIMEZONE)


def _version_out(version: FeeVersion) -> FeeVersionResponse:
    return FeeVersionResponse(
        id=version.id,
        class_group_id=version.scope_id,
        fee_category_id=version.fee_category_id,
        route_name=version.route_name,
        fee_cycle=version.fee_cycle,
        amount=version.amount,
        version_number=version.version_number,
        effective_from=version.effective_from,
        effective_to=version.effective_to,
        is_active=version.is_active,
    )


async def _generate_or_fail(db: SchoolDB, student_id: str, today: date) -> GenerationResult:
    try:
        return await ensure_exists(
            db, student_id, today, settings.FEE_CALCULATION_STRATEGY,
            settings.FEE_DUE_DAY, settings.FEE_UPSERT_MAX_RETRIES,
        )
    except FeeDataError as e:
        error = FeeComputationError(student_id, e.detail)
        logger.error(f"[generate] {error.message}: {e.operation}: {e.detail}")
        raise HTTPException(status_code=500, detail=error.message)


# ═══════════════════════════════════════════════════════════
# LEDGER
# ═══════════════════════════════════════════════════════════

@router.get("/students/{student_id}/ledger", response_model=APIResponse[LedgerResponse])
async def get_student_ledger(
    student_id: str,
    start_year: Optional[int] = Query(None, ge=2000, le=2100),
    end_year: Optional[int] = Query(None, ge=2000, le=2100),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=120),
    refresh: bool = Query(False, description="Generate missing months before reading"),
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_admin_client),
    today: date = Depends(get_today),
):
    start_year = start_year or today.year - settings.LEDGER_DEFAULT_YEARS_BACK
    end_year = end_year or today.year + settings.LEDGER_DEFAULT_YEARS_AHEAD
    if start_year > end_year:
        raise HTTPException(status_code=400, detail="start_year must not be after end_year")

    db = SchoolDB(user.school_id, client)
    if refresh:
        await _generate_or_fail(db, student_id, today)

    try:
        result = await ledger(db, student_id, start_year, end_year, today, page=page, limit=limit)
    except LedgerReadError as e:
        raise HTTPException(status_code=502, detail=e.message)

    return APIResponse(data=result, message=f"{result.total_months} months")


# ═══════════════════════════════════════════════════════════
# MONTHLY COMPONENTS
# ═══════════════════════════════════════════════════════════

@router.post("/students/{student_id}/components/generate", response_model=APIResponse[GenerationResult])
async def generate_student_components(
    student_id: str,
    user: CurrentUser = Depends(require_roles("school_admin", "bursar")),
    client: Client = Depends(get_admin_client),
    today: date = Depends(get_today),
):
    db = SchoolDB(user.school_id, client)
    result = await _generate_or_fail(db, student_id, today)
    if result.skipped:
        return APIResponse(data=result, message="Generation already running for this student")
    return APIResponse(
        data=result,
        message=f"{result.generated} created, {result.updated} updated",
    )


@router.get("/students/{student_id}/components/exists", response_model=APIResponse[ComponentsExistResponse])
async def components_exist(
    student_id: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_admin_client),
):
    db = SchoolDB(user.school_id, client)
    try:
        exists = await check_components_exist(db, student_id, year, month)
    except FeeDataError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return APIResponse(data=ComponentsExistResponse(
        student_id=student_id, year=year, month=month, exists=exists,
    ))


# ═══════════════════════════════════════════════════════════
# FEE VERSIONS
# ═══════════════════════════════════════════════════════════

async def _hike(
    table: versions.VersionTable,
    scope: dict,
    body: FeeHikeRequest,
    user: CurrentUser,
    client: Client,
) -> APIResponse[FeeVersionResponse]:
    db = SchoolDB(user.school_id, client)
    try:
        version = await versions.hike(
            db, table, scope, body.fee_cycle, body.amount,
            body.effective_from, created_by=user.user_id,
        )
    except FeeVersionConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except FeeDataError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return APIResponse(
        data=_version_out(version),
        message=f"Version {version.version_number} effective {version.effective_from.isoformat()}",
    )


@router.post("/versions/class/hike", response_model=APIResponse[FeeVersionResponse], status_code=201)
async def hike_class_fee(
    body: FeeHikeRequest,
    user: CurrentUser = Depends(require_roles("school_admin")),
    client: Client = Depends(get_admin_client),
):
    if not body.class_group_id or not body.fee_category_id:
        raise HTTPException(status_code=400, detail="class_group_id and fee_category_id are required")
    scope = {"class_group_id": body.class_group_id, "fee_category_id": body.fee_category_id}
    return await _hike(versions.CLASS_FEES, scope, body, user, client)


@router.post("/versions/transport/hike", response_model=APIResponse[FeeVersionResponse], status_code=201)
async def hike_transport_fee(
    body: FeeHikeRequest,
    user: CurrentUser = Depends(require_roles("school_admin")),
    client: Client = Depends(get_admin_client),
):
    if not body.class_group_id or not body.route_name:
        raise HTTPException(status_code=400, detail="class_group_id and route_name are required")
    scope = {"class_group_id": body.class_group_id, "route_name": body.route_name}
    return await _hike(versions.TRANSPORT_FEES, scope, body, user, client)


@router.post("/versions/optional/hike", response_model=APIResponse[FeeVersionResponse], status_code=201)
async def hike_optional_fee(
    body: FeeHikeRequest,
    user: CurrentUser = Depends(require_roles("school_admin")),
    client: Client = Depends(get_admin_client),
):
    if not body.fee_category_id:
        raise HTTPException(status_code=400, detail="fee_category_id is required")
    # class_group_id left empty = the all-classes schedule
    scope = {"class_group_id": body.class_group_id, "fee_category_id": body.fee_category_id}
    return await _hike(versions.OPTIONAL_FEES, scope, body, user, client)


@router.get("/versions/class/history", response_model=APIResponse[List[FeeVersionResponse]])
async def class_fee_history(
    class_group_id: str = Query(...),
    fee_category_id: str = Query(...),
    fee_cycle: Optional[FeeCycle] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_admin_client),
):
    db = SchoolDB(user.school_id, client)
    scope = {"class_group_id": class_group_id, "fee_category_id": fee_category_id}
    try:
        history = await versions.version_history(db, versions.CLASS_FEES, scope, fee_cycle)
    except FeeDataError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return APIResponse(data=[_version_out(v) for v in history])
