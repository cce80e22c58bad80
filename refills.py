"""
refills.py
Lifecycle of a customer refill request.

    Requested -> In Production -> Out for Delivery -> Completed
    any non-terminal state -> Cancelled

TRANSITIONS is the only place legality is decided. Writes are conditional
on the record's version, so two concurrent advances from the same state
cannot both commit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from cycles import as_utc, utcnow
from errors import InvalidTransitionError, NotificationError, StoreUnavailableError, ValidationError
from notifications import NotificationEmitter, refill_status_notification
from schemas import RefillRequest, RefillStatus, StatusHistoryEntry

logger = logging.getLogger(__name__)

TRANSITIONS = {
    RefillStatus.REQUESTED: (RefillStatus.IN_PRODUCTION, RefillStatus.CANCELLED),
    RefillStatus.IN_PRODUCTION: (RefillStatus.OUT_FOR_DELIVERY, RefillStatus.CANCELLED),
    RefillStatus.OUT_FOR_DELIVERY: (RefillStatus.COMPLETED, RefillStatus.CANCELLED),
    RefillStatus.COMPLETED: (),
    RefillStatus.CANCELLED: (),
}

ACTIVE_STATUSES = tuple(s for s, nxt in TRANSITIONS.items() if nxt)


def is_terminal(status) -> bool:
    return not TRANSITIONS[RefillStatus(status)]


def check_transition(current, target) -> RefillStatus:
    """Return `target` as a RefillStatus, or raise InvalidTransitionError."""
    current = RefillStatus(current)
    try:
        target = RefillStatus(target)
    except ValueError:
        raise InvalidTransitionError(current, target)
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)
    return target


def notification_key(request: RefillRequest) -> str:
    # One notification per committed version; retries reuse the key
    return f"refill-{request.id}-v{request.version}"


class RefillStateMachine:
    def __init__(self, store, emitter: Optional[NotificationEmitter] = None, clock=utcnow):
        self.store = store
        self.clock = clock
        self.emitter = emitter or NotificationEmitter(store, clock=clock)

    def create(self, account_id: str, requested_date, containers) -> RefillRequest:
        if isinstance(containers, bool) or not isinstance(containers, int):
            raise ValidationError("Containers must be a whole number")
        if containers <= 0:
            raise ValidationError("Containers must be positive")
        if isinstance(requested_date, datetime):
            requested_date = as_utc(requested_date).date()
        if not isinstance(requested_date, date):
            raise ValidationError("Requested date must be a date")

        now = as_utc(self.clock())
        if requested_date < now.date():
            raise ValidationError("Requested date is in the past")

        self.store.get_account(account_id)
        request = RefillRequest(
            account_id=account_id,
            requested_date=requested_date,
            containers=containers,
            status=RefillStatus.REQUESTED,
            created_at=now,
            updated_at=now,
            version=0,
            status_history=[StatusHistoryEntry(status=RefillStatus.REQUESTED, timestamp=now)],
        )
        saved = self.store.put_refill_request(request)
        logger.info("Refill request %s created for account %s (%d containers on %s)",
                    saved.id, account_id, containers, requested_date)
        self.notify(saved)
        return saved

    def advance(self, request: RefillRequest, target) -> RefillRequest:
        target = check_transition(request.status, target)
        now = as_utc(self.clock())
        updated = request.model_copy(update={
            "status": target,
            "updated_at": now,
            "version": request.version + 1,
            "status_history": [*request.status_history, StatusHistoryEntry(status=target, timestamp=now)],
        })
        stored = self.store.put_refill_request(updated, expected_version=request.version)
        logger.info("Refill request %s: %s -> %s", stored.id, request.status.value, target.value)
        self.notify(stored)
        return stored

    def cancel(self, request: RefillRequest) -> RefillRequest:
        if request.status == RefillStatus.CANCELLED:
            return request
        return self.advance(request, RefillStatus.CANCELLED)

    def advance_by_id(self, request_id: str, target) -> RefillRequest:
        """Reload before advancing so retries re-check the current status."""
        return self.advance(self.store.get_refill_request(request_id), target)

    def cancel_by_id(self, request_id: str) -> RefillRequest:
        return self.cancel(self.store.get_refill_request(request_id))

    def active_request(self, account_id: str) -> Optional[RefillRequest]:
        rows = self.store.list_refill_requests(
            account_id, statuses=[s.value for s in ACTIVE_STATUSES], limit=1
        )
        return rows[0] if rows else None

    def notify(self, request: RefillRequest) -> str:
        """
        Emit the notification for the request's current version. Safe to
        call again after a NotificationError.
        """
        if request.version == 0:
            title = "Refill Request Received"
            description = "We have received your refill request and will process it shortly."
        else:
            title, description = refill_status_notification(request)
        try:
            return self.emitter.emit(
                request.account_id,
                "delivery",
                title,
                description,
                data={"request_id": request.id},
                notification_id=notification_key(request),
            )
        except StoreUnavailableError as e:
            logger.error("Notification for refill request %s failed: %s", request.id, e)
            raise NotificationError(request, e) from e
