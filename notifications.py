"""
notifications.py
Writes customer-facing notification records to the store.
"""

from __future__ import annotations

import logging
from typing import Optional

from cycles import utcnow
from errors import ValidationError
from schemas import NOTIFICATION_TYPES, Notification, RefillRequest

logger = logging.getLogger(__name__)


def refill_status_notification(request: RefillRequest) -> tuple[str, str]:
    status = request.status.value
    return f"Refill Status: {status}", f"Your refill request is now {status}."


class NotificationEmitter:
    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    def emit(self, account_id: str, type: str, title: str, description: str = "",
             data: Optional[dict] = None, notification_id: Optional[str] = None) -> str:
        """
        Persist one notification and return its id.

        Passing `notification_id` makes retries idempotent. Store failures
        propagate as StoreUnavailableError.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {type}")
        if not account_id:
            raise ValidationError("Notification needs an account id")
        if not title or not title.strip():
            raise ValidationError("Notification title is required")

        notification = Notification(
            id=notification_id,
            account_id=account_id,
            type=type,
            title=title,
            description=description,
            created_at=self.clock(),
            is_read=False,
            data=dict(data or {}),
        )
        new_id = self.store.put_notification(notification)
        logger.info("Notification %s for account %s: %s", new_id, account_id, title)
        return new_id
