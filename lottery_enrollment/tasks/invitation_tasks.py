"""
Celery beat task that sweeps overdue invitations.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .celery_app import celery_app
from ..config import get_settings
from ..container import EnrollmentServices, build_services

logger = logging.getLogger(__name__)


async def expire_and_backfill(
    services: EnrollmentServices,
    now: Optional[datetime] = None,
    backfill: bool = False
) -> Dict[str, Any]:
    """
    Expire overdue invitations and optionally redraw the freed spots.

    Returns a summary keyed by event id with the number of invitations
    expired and, when backfilling, how many replacements were invited.
    """
    result = await services.invitations.expire_overdue_by_event(now=now)
    if not result.is_ok:
        logger.error(f"Invitation expiry sweep failed: {result.error}")
        return {"status": "error", "error": result.error.message}

    summary: Dict[str, Any] = {}
    for event_id, invitation_ids in result.value.items():
        entry = {"expired": len(invitation_ids)}
        if backfill:
            draw = await services.lottery.run_lottery(event_id, len(invitation_ids))
            if draw.is_ok:
                entry["backfilled"] = draw.value.selected_count
            else:
                logger.warning(f"Backfill for event {event_id} failed: {draw.error}")
                entry["backfilled"] = 0
        summary[str(event_id)] = entry

    return {"status": "ok", "events": summary}


@celery_app.task(bind=True, name="expire_overdue_invitations_task")
def expire_overdue_invitations_task(self):
    """Periodic sweep scheduled by Celery beat."""
    settings = get_settings()

    async def _sweep():
        services = build_services(settings=settings)
        await services.db.initialize(create_tables=False)
        try:
            return await expire_and_backfill(services, backfill=settings.auto_backfill_on_expiry)
        finally:
            await services.close()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        summary = loop.run_until_complete(_sweep())
        logger.info(f"Invitation expiry sweep finished: {summary}")
        return summary
    finally:
        loop.close()
