# ============================================================
# app/api/v1/endpoints/internal.py
#
# INTERNAL ENDPOINTS: called by the scheduler only, never by
# the frontend.
#
# Security model:
#   These routes are NOT protected by user JWT (the scheduler has
#   no user session). They use a shared secret in the X-Internal-Key
#   header, set in .env as INTERNAL_SECRET_KEY.
#
#   NGINX config should restrict /api/v1/internal/* to the
#   internal Docker network ONLY.
# ============================================================

from datetime import date
import logging

from fastapi import APIRouter, Depends, HTTPException, Header
from supabase import Client

from app.core.config import settings
from app.core.database import get_admin_client
from app.schemas.common import APIResponse
from app.schemas.ledger import GenerationJobRequest, GenerationJobResult
from app.jobs.generate_monthly_components import run_generation_job
from app.api.v1.endpoints.fees import get_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["Internal (scheduler only)"])


def verify_internal_key(x_internal_key: str = Header(...)):
    """Shared secret for scheduler → API calls."""
    if x_internal_key != settings.INTERNAL_SECRET_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
    return True


# ── Monthly fee component generation ─────────────────────────
# Called by: the monthly cron, usually on the 1st

@router.post("/fee-components/generate", response_model=APIResponse[GenerationJobResult])
async def trigger_component_generation(
    body: GenerationJobRequest = GenerationJobRequest(),
    _: bool = Depends(verify_internal_key),
    client: Client = Depends(get_admin_client),
    today: date = Depends(get_today),
):
    """
    Runs the generation job inline and returns its counts. Per-student
    failures come back in `errors`; the request itself still succeeds.
    """
    if (body.target_year is None) != (body.target_month is None):
        raise HTTPException(status_code=400, detail="target_year and target_month go together")

    result = await run_generation_job(
        client,
        body.target_year or today.year,
        body.target_month or today.month,
        strategy=settings.FEE_CALCULATION_STRATEGY,
        school_id=body.school_id,
        batch_size=settings.FEE_GENERATION_BATCH_SIZE,
        concurrency=settings.FEE_GENERATION_CONCURRENCY,
        pause_seconds=settings.FEE_GENERATION_BATCH_PAUSE_SECONDS,
        page_size=settings.FEE_GENERATION_STUDENT_PAGE_SIZE,
        due_day=settings.FEE_DUE_DAY,
        max_retries=settings.FEE_UPSERT_MAX_RETRIES,
    )
    logger.info(
        f"[internal] generation {result.target_year}-{result.target_month:02d}: "
        f"{result.processed}/{result.total_students} students, {len(result.errors)} errors"
    )
    return APIResponse(
        data=result,
        message=f"{result.processed} of {result.total_students} students processed",
    )
