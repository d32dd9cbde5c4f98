# app/main.py
#
# FeeLedger API: ledger reads, on-demand generation, fee hikes and
# the scheduler trigger, all under settings.API_PREFIX.
#
#   uvicorn app.main:app
#
# Error bodies share the APIResponse shape ({success, message, ...}).
# Fee engine errors that reach this layer carry their message only;
# internal detail stays in the logs.

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from supabase import Client
from contextlib import asynccontextmanager
import logging
import time

from app.core.config import settings
from app.core.database import check_db_connection, get_admin_client
from app.core.exceptions import FeeEngineError
from app.api.v1.router import api_router

logging.basicConfig(
    level=logging.INFO if settings.is_production else logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# httpx debug output includes the service key header
if settings.is_production and not settings.HTTP_CLIENT_DEBUG_LOGS:
    for client_logger in ("httpx", "httpcore", "hpack"):
        logging.getLogger(client_logger).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT}), "
        f"strategy={settings.FEE_CALCULATION_STRATEGY.value}, tz={settings.TIMEZONE}"
    )
    if not await check_db_connection(get_admin_client()):
        logger.error("[startup] database unreachable, ledger calls will fail until it is back")

    yield

    logger.info(f"[shutdown] {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Fee computation and monthly ledger engine: effective-dated fee "
        "schedules, student overrides and scholarships, monthly fee components."
    ),
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request_duration(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"[http] {request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": "Invalid request", "detail": problems},
    )


@app.exception_handler(FeeEngineError)
async def fee_engine_error_handler(request: Request, exc: FeeEngineError):
    """Domain errors no endpoint mapped. Message only, never the cause."""
    logger.error(f"[http] {request.method} {request.url.path}: {exc.message} ({exc.detail})")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"[http] unhandled on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal error"},
    )


app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check(client: Client = Depends(get_admin_client)):
    """503 when the database cannot be reached."""
    if await check_db_connection(client):
        return {"status": "healthy", "version": settings.APP_VERSION}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "reason": "database_unreachable"},
    )


@app.get("/", tags=["Health"])
async def root():
    return {"app": settings.APP_NAME, "version": settings.APP_VERSION}
