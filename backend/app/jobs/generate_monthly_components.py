# ============================================================
# app/jobs/generate_monthly_components.py
#
# Scheduled job: bring every active student's ledger up to
# the target month.
#
#   python -m app.jobs.generate_monthly_components [year] [month] [school_id]
#
# Also triggered over HTTP by the scheduler through
# POST /api/v1/internal/fee-components/generate.
#
# Students go through in batches. Inside a batch at most
# `concurrency` students run at once; between batches the job
# sleeps briefly so the database is never saturated. One student
# failing never stops the batch: the error is recorded against
# the student id and the run carries on.
#
# Known gap: the in-process guard stops two runs for the same
# student inside one process, but nothing stops two job processes
# from regenerating the same student at the same time.
# ============================================================

from datetime import datetime
from typing import Optional
import asyncio
import logging
import sys

from app.core.database import SchoolDB
from app.schemas.fees import CalculationStrategy
from app.schemas.ledger import GenerationJobResult, StudentError
from app.services.activity_service import log_activity
from app.services.component_generator import generate_for_student
from app.utils.periods import today_in

logger = logging.getLogger(__name__)


async def load_active_students(
    client,
    school_id: Optional[str] = None,
    page_size: int = 1000,
) -> list[dict]:
    """
    Every active student, read page by page. PostgREST caps one
    response at its max-rows setting, so `page_size` must not exceed
    it: a short page is taken as the last one.
    """
    students = []
    offset = 0
    while True:
        query = (
            client.table("students")
            .select("id, school_id, admission_date")
            .eq("status", "active")
        )
        if school_id:
            query = query.eq("school_id", school_id)
        query = query.order("id").range(offset, offset + page_size - 1)
        result = await asyncio.to_thread(query.execute)
        page = result.data or []
        students.extend(page)
        if len(page) < page_size:
            return students
        offset += page_size


async def run_generation_job(
    client,
    target_year: int,
    target_month: int,
    *,
    strategy: CalculationStrategy,
    school_id: Optional[str] = None,
    batch_size: int = 100,
    concurrency: int = 10,
    pause_seconds: float = 0.1,
    page_size: int = 1000,
    due_day: int = 15,
    max_retries: int = 3,
) -> GenerationJobResult:
    result = GenerationJobResult(target_year=target_year, target_month=target_month)

    students = await load_active_students(client, school_id, page_size)
    result.total_students = len(students)
    logger.info(
        f"[job] generating through {target_year}-{target_month:02d} for "
        f"{len(students)} students" + (f" in school {school_id}" if school_id else "")
    )

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(student: dict):
        async with semaphore:
            db = SchoolDB(student["school_id"], client)
            return await generate_for_student(
                db, student["id"], target_year, target_month,
                strategy, due_day, max_retries,
            )

    total_batches = (len(students) + batch_size - 1) // batch_size
    for index in range(0, len(students), batch_size):
        batch = students[index:index + batch_size]
        outcomes = await asyncio.gather(
            *(run_one(s) for s in batch),
            return_exceptions=True,
        )

        for student, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[job] student {student['id']} failed: {outcome}")
                result.errors.append(StudentError(student_id=student["id"], error=str(outcome)))
                continue
            if outcome.skipped:
                result.skipped += 1
                continue
            result.processed += 1
            result.generated += outcome.generated
            result.updated += outcome.updated
            result.failed += outcome.failed
            result.conflicts += outcome.conflicts

        logger.info(
            f"[job] batch {index // batch_size + 1}/{total_batches}: "
            f"{result.processed} processed, {len(result.errors)} errors so far"
        )
        if index + batch_size < len(students):
            await asyncio.sleep(pause_seconds)

    logger.info(
        f"[job] done: {result.processed}/{result.total_students} students, "
        f"{result.skipped} skipped, "
        f"{result.generated} generated, {result.updated} updated, "
        f"{result.failed} failed writes, {result.conflicts} conflicts, "
        f"{len(result.errors)} student errors"
    )
    await log_activity(
        client,
        action="fee_components.job_completed",
        school_id=school_id,
        entity_type="monthly_fee_components",
        metadata=result.model_dump(exclude={"errors"}) | {"error_count": len(result.errors)},
    )
    return result


def main(argv: list[str]) -> int:
    from app.core.config import settings
    from app.core.database import make_admin_client

    logging.basicConfig(
        level=logging.INFO if settings.is_production else logging.DEBUG,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    today = today_in(settings.TIMEZONE)
    year = int(argv[0]) if len(argv) > 0 else today.year
    month = int(argv[1]) if len(argv) > 1 else today.month
    school_id = argv[2] if len(argv) > 2 else None

    started = datetime.now()
    result = asyncio.run(run_generation_job(
        make_admin_client(settings),
        year,
        month,
        school_id=school_id,
        batch_size=settings.FEE_GENERATION_BATCH_SIZE,
        concurrency=settings.FEE_GENERATION_CONCURRENCY,
        pause_seconds=settings.FEE_GENERATION_BATCH_PAUSE_SECONDS,
        page_size=settings.FEE_GENERATION_STUDENT_PAGE_SIZE,
        strategy=settings.FEE_CALCULATION_STRATEGY,
        due_day=settings.FEE_DUE_DAY,
        max_retries=settings.FEE_UPSERT_MAX_RETRIES,
    ))
    logger.info(f"[job] finished in {(datetime.now() - started).total_seconds():.1f}s")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
