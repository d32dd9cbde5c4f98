# ============================================================
# app/core/database.py
#
# One Supabase client, created at the boundary and passed down.
#
# make_admin_client(settings)   builds a SERVICE ROLE client
# get_admin_client()            cached instance for API dependencies
#
# SchoolDB  (the data-access handle the fee engine receives)
# ├── Wraps every query with MANDATORY school_id filtering
# ├── Raises immediately if you forget school_id
# ├── Never creates its own client; the caller injects one
# └── Every execute() runs off the event loop, so each read or
#     write is a real await point for the batch job
# ============================================================

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from supabase import create_client, Client
from supabase.lib.client_options import SyncClientOptions

from app.core.config import Settings
from app.core.exceptions import FeeDataError

logger = logging.getLogger(__name__)


# ── Raw client ────────────────────────────────────────────────
def make_admin_client(config: Settings) -> Client:
    return create_client(
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_KEY,
        options=SyncClientOptions(schema=config.DB_SCHEMA),
    )


@lru_cache(maxsize=1)
def get_admin_client() -> Client:
    """FastAPI dependency. Built on first use, not at import."""
    from app.core.config import settings
    return make_admin_client(settings)


# ── School-scoped DB handle ───────────────────────────────────
class SchoolDB:
    """
    Safety wrapper around Supabase queries for school-level data.
    Every method requires school_id, so no query crosses schools.
    """

    def __init__(self, school_id: str, client: Client):
        if not school_id:
            raise ValueError("SchoolDB requires a non-empty school_id")
        if client is None:
            raise ValueError("SchoolDB requires an injected client")
        self.school_id = str(school_id)
        self._client = client

    def select(self, table: str, columns: str = "*"):
        return (
            self._client
            .table(table)
            .select(columns)
            .eq("school_id", self.school_id)
        )

    async def execute(self, query):
        return await asyncio.to_thread(query.execute)

    async def fetch_all(self, query) -> list[dict]:
        result = await self.execute(query)
        return result.data or []

    async def read(self, query, operation: str) -> list[dict]:
        """fetch_all for engine reads: any failure becomes FeeDataError."""
        try:
            return await self.fetch_all(query)
        except Exception as e:
            logger.error(f"[{operation}] read failed for school {self.school_id}: {e}")
            raise FeeDataError(operation, str(e)) from e

    async def fetch_first(self, query) -> Optional[dict]:
        rows = await self.fetch_all(query.limit(1))
        return rows[0] if rows else None

    async def insert(self, table: str, payload: dict) -> dict:
        payload["school_id"] = self.school_id
        result = await self.execute(self._client.table(table).insert(payload))
        return result.data[0] if result.data else {}

    async def update_where(self, table: str, payload: dict, **filters) -> list[dict]:
        payload.pop("school_id", None)
        query = self._client.table(table).update(payload).eq("school_id", self.school_id)
        for col, val in filters.items():
            query = query.is_(col, "null") if val is None else query.eq(col, val)
        result = await self.execute(query)
        return result.data or []

    def raw(self) -> Client:
        return self._client


# ── Health check ─────────────────────────────────────────────
async def check_db_connection(client: Client) -> bool:
    try:
        await asyncio.to_thread(client.table("schools").select("id").limit(1).execute)
        return True
    except Exception as e:
        logger.error(f"DB health check failed: {e}")
        return False
