"""
Celery tasks for notification delivery.

The worker is the delivery collaborator: it stores one inbox record per
recipient. Push transport is outside this package.
"""

import asyncio
import logging
from typing import Any, Dict, List

from .celery_app import celery_app
from ..database import DatabaseManager
from ..models.notification import NotificationRecord
from ..schemas.notification import NotificationRequest

logger = logging.getLogger(__name__)


async def deliver_notification(db: DatabaseManager, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Write an inbox record for every recipient of a notification request.

    Each recipient is stored in its own transaction, so one failing
    recipient does not keep the others from receiving the message.

    Args:
        db: Initialized database manager
        payload: ``NotificationRequest`` serialised as JSON-compatible dict

    Returns:
        Summary with the delivered count and the recipients that failed
    """
    request = NotificationRequest.model_validate(payload)
    failed: List[str] = []
    delivered = 0

    for recipient_id in request.recipient_ids:
        try:
            async with db.session() as session:
                session.add(
                    NotificationRecord(
                        user_id=recipient_id,
                        event_id=request.event_id,
                        title=request.title,
                        body=request.body,
                        category=request.category.value,
                    )
                )
            delivered += 1
        except Exception as e:
            logger.error(f"Failed to deliver {request.category.value} notification to {recipient_id}: {e}")
            failed.append(recipient_id)

    logger.info(f"Delivered {request.category.value} notification to {delivered}/{len(request.recipient_ids)} recipients")
    return {"delivered": delivered, "failed": failed, "category": request.category.value}


@celery_app.task(bind=True, name="deliver_notification_task")
def deliver_notification_task(self, payload: Dict[str, Any]):
    """
    Task to deliver one notification request.

    Args:
        payload: Serialised notification request
    """

    async def _deliver():
        db = DatabaseManager()
        await db.initialize(create_tables=False)
        try:
            return await deliver_notification(db, payload)
        finally:
            await db.close()

    # Run the async function
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_deliver())
    except Exception as e:
        logger.error(f"Error in notification delivery task: {e}")
        return {"delivered": 0, "status": "error", "error": str(e)}
    finally:
        loop.close()
