"""
Notification dispatcher: turns lifecycle events into notification requests.

Building a request is pure. Handing it to the delivery channel happens after
the originating transaction commits and is best-effort: a failed hand-off is
logged and never undoes or fails the operation that triggered it.
"""

import logging
from typing import Iterable, List, Optional, Protocol

from ..models.event import Event
from ..schemas.notification import NotificationCategory, NotificationRequest
from ..utils.exceptions import NotificationDispatchError

logger = logging.getLogger(__name__)

DELIVER_NOTIFICATION_TASK = "deliver_notification_task"


class NotificationSender(Protocol):
    """Anything that can take a request off our hands."""

    async def send(self, request: NotificationRequest) -> None:
        ...


class CeleryNotificationSender:
    """Enqueue requests for the delivery worker."""

    def __init__(self, app=None):
        if app is None:
            from ..tasks.celery_app import celery_app
            app = celery_app
        self.app = app

    async def send(self, request: NotificationRequest) -> None:
        try:
            self.app.send_task(DELIVER_NOTIFICATION_TASK, args=[request.model_dump(mode="json")])
        except Exception as e:
            raise NotificationDispatchError(f"Could not enqueue notification: {e}") from e


class LoggingNotificationSender:
    """Sender for deployments without a worker; requests only show up in the log."""

    async def send(self, request: NotificationRequest) -> None:
        logger.info(
            f"Notification [{request.category.value}] '{request.title}' "
            f"for {len(request.recipient_ids)} recipient(s)"
        )


def _recipients(user_ids: Iterable[Optional[str]]) -> List[str]:
    return [user_id for user_id in dict.fromkeys(user_ids) if user_id]


class NotificationDispatcher:
    """Builds requests for each lifecycle event and hands them to a sender."""

    def __init__(self, sender: Optional[NotificationSender] = None):
        self.sender: NotificationSender = sender or LoggingNotificationSender()

    def _request(
        self,
        event: Event,
        user_ids: Iterable[Optional[str]],
        title: str,
        body: str,
        category: NotificationCategory
    ) -> Optional[NotificationRequest]:
        recipients = _recipients(user_ids)
        if not recipients:
            return None
        return NotificationRequest(
            recipient_ids=recipients,
            title=title,
            body=body,
            event_id=event.id,
            category=category
        )

    def selected(self, event: Event, user_ids: Iterable[str]) -> Optional[NotificationRequest]:
        return self._request(
            event,
            user_ids,
            "You've been selected!",
            f"Congratulations! You've been selected for {event.title}. "
            f"Please accept your invitation within {event.acceptance_deadline_hours} hours.",
            NotificationCategory.SELECTION
        )

    def not_selected(self, event: Event, user_ids: Iterable[str]) -> Optional[NotificationRequest]:
        return self._request(
            event,
            user_ids,
            "Draw Results",
            f"Unfortunately, you were not selected in the lottery draw for {event.title}. "
            "You remain on the waiting list and may be selected if a spot opens up.",
            NotificationCategory.REJECTION
        )

    def accepted(self, event: Event, user_id: str) -> Optional[NotificationRequest]:
        return self._request(
            event,
            [user_id],
            "You're confirmed!",
            f"Your spot at {event.title} is confirmed. See you there!",
            NotificationCategory.CONFIRMATION
        )

    def declined(self, event: Event, entrant_name: str) -> Optional[NotificationRequest]:
        """Tell the organizer a chosen entrant gave their spot back."""
        name = entrant_name or "An entrant"
        return self._request(
            event,
            [event.organizer_id],
            "Someone declined their spot",
            f"{name} declined their invitation to {event.title}. "
            "You can draw a replacement from the waiting list.",
            NotificationCategory.DECLINE
        )

    def expired(self, event: Event, user_ids: Iterable[str]) -> Optional[NotificationRequest]:
        return self._request(
            event,
            user_ids,
            "Invitation Expired",
            f"Your invitation to {event.title} has expired due to non-response within the "
            f"{event.acceptance_deadline_hours}-hour deadline.",
            NotificationCategory.CANCELLATION
        )

    def spot_taken(self, event: Event, user_id: str) -> Optional[NotificationRequest]:
        return self._request(
            event,
            [user_id],
            "This spot was just taken",
            f"Unfortunately, {event.title} reached full capacity while you were deciding. "
            "You remain in the draw and may be selected again if spots become available.",
            NotificationCategory.CANCELLATION
        )

    def removed(self, event: Event, user_id: str) -> Optional[NotificationRequest]:
        return self._request(
            event,
            [user_id],
            "Your selection was cancelled",
            f"The organizer of {event.title} has cancelled your selection.",
            NotificationCategory.CANCELLATION
        )

    def joined_waitlist(self, event: Event, user_id: str, position: int) -> Optional[NotificationRequest]:
        return self._request(
            event,
            [user_id],
            "You're on the Waitlist!",
            f"You joined the waiting list for {event.title} at position #{position}. "
            "We'll notify you when the lottery is drawn.",
            NotificationCategory.WAITLIST
        )

    def broadcast(
        self,
        event: Event,
        user_ids: Iterable[str],
        title: str,
        message: str
    ) -> Optional[NotificationRequest]:
        return self._request(event, user_ids, title, message, NotificationCategory.ORGANIZER_UPDATE)

    async def dispatch(self, request: Optional[NotificationRequest]) -> bool:
        """Hand one request to the sender; returns whether the hand-off succeeded."""
        if request is None:
            return False

        try:
            await self.sender.send(request)
        except Exception as e:
            logger.warning(
                f"Failed to dispatch {request.category.value} notification "
                f"for event {request.event_id}: {e}"
            )
            return False

        logger.debug(f"Dispatched {request.category.value} notification to {len(request.recipient_ids)} recipient(s)")
        return True

    async def dispatch_all(self, requests: Iterable[Optional[NotificationRequest]]) -> int:
        sent = 0
        for request in requests:
            if await self.dispatch(request):
                sent += 1
        return sent
