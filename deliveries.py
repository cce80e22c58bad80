"""
deliveries.py
Scheduling deliveries and moving them through their fulfillment status.

    Pending -> In Transit -> Delivered

Status only moves forward; a Delivered record is final.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from cycles import as_utc, utcnow
from errors import InvalidTransitionError, NotificationError, StoreUnavailableError, ValidationError
from notifications import NotificationEmitter
from schemas import DELIVERY_STATUSES, DeliveryRecord

logger = logging.getLogger(__name__)


def check_delivery_transition(current: str, target: str) -> str:
    if target not in DELIVERY_STATUSES:
        raise InvalidTransitionError(current, target, kind="delivery")
    if DELIVERY_STATUSES.index(target) <= DELIVERY_STATUSES.index(current):
        raise InvalidTransitionError(current, target, kind="delivery")
    return target


class DeliveryService:
    def __init__(self, store, emitter: Optional[NotificationEmitter] = None, clock=utcnow):
        self.store = store
        self.clock = clock
        self.emitter = emitter or NotificationEmitter(store, clock=clock)

    def schedule(self, account_id: str, when: datetime, volume_containers, status: str = "Pending",
                 proof_url: Optional[str] = None, admin_notes: Optional[str] = None) -> DeliveryRecord:
        if isinstance(volume_containers, bool) or not isinstance(volume_containers, int):
            raise ValidationError("Containers must be a whole number")
        if volume_containers < 0:
            raise ValidationError("Containers cannot be negative")
        if status not in DELIVERY_STATUSES:
            raise ValidationError(f"Unknown delivery status: {status}")

        self.store.get_account(account_id)
        record = DeliveryRecord(
            account_id=account_id,
            date=as_utc(when),
            volume_containers=volume_containers,
            status=status,
            proof_url=proof_url,
            admin_notes=admin_notes,
        )
        record = record.model_copy(update={"id": self.store.add_delivery(record)})
        logger.info("Delivery %s scheduled for account %s (%d containers)",
                    record.id, account_id, volume_containers)
        self.notify(record, scheduled=True)
        return record

    def update_status(self, delivery_id: str, status: str, proof_url: Optional[str] = None) -> DeliveryRecord:
        current = self.store.get_delivery(delivery_id)
        check_delivery_transition(current.status, status)
        updated = self.store.set_delivery_status(delivery_id, current.status, status, proof_url=proof_url)
        logger.info("Delivery %s: %s -> %s", delivery_id, current.status, status)
        self.notify(updated)
        return updated

    def notify(self, record: DeliveryRecord, scheduled: bool = False) -> str:
        """Safe to call again after a NotificationError; ids are per record and status."""
        if scheduled:
            title = "Delivery Scheduled"
            description = f"A new delivery of {record.volume_containers} containers has been scheduled."
            key = f"delivery-{record.id}-scheduled"
        else:
            title = f"Delivery {record.status}"
            description = f"Your delivery of {record.volume_containers} containers is now {record.status}."
            key = f"delivery-{record.id}-{record.status.lower().replace(' ', '-')}"
        try:
            return self.emitter.emit(
                record.account_id,
                "delivery",
                title,
                description,
                data={"delivery_id": record.id},
                notification_id=key,
            )
        except StoreUnavailableError as e:
            logger.error("Notification for delivery %s failed: %s", record.id, e)
            raise NotificationError(record, e, kind="delivery") from e
