# app/services/activity_service.py
# Writes to activity_logs. Called after fee hikes and generation runs.

from typing import Optional, Any
from datetime import datetime, timezone
import asyncio
import logging

logger = logging.getLogger(__name__)


async def log_activity(
    client,
    action: str,
    school_id: Optional[str] = None,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[dict] = None,
):
    """
    Append-only audit log. Never raises: a failed audit write must
    not undo a hike or abort a generation run.

    Action format: 'entity.verb'
        'fee.hiked', 'fee_components.generated', 'fee_components.job_completed'
    """
    try:
        query = client.table("activity_logs").insert({
            "school_id": str(school_id) if school_id else None,
            "user_id": str(user_id) if user_id else None,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "metadata": metadata or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        await asyncio.to_thread(query.execute)
    except Exception as e:
        logger.error(f"Failed to write activity log [{action}]: {e}")
