"""
Error kinds raised by the ledger and refill core.

Every failure is one of these classes so callers (the HTTP layer, jobs)
can branch on the kind instead of parsing messages.
"""


class LedgerError(Exception):
    """Base class for all domain errors."""


class ValidationError(LedgerError):
    """Bad input shape. Rejected locally, nothing is written."""


class InvalidTransitionError(LedgerError):
    def __init__(self, current, target, kind: str = "refill request"):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {kind} from {_label(current)} to {_label(target)}")


class NotFoundError(LedgerError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class StoreUnavailableError(LedgerError):
    """The backing store could not be reached or rejected the write."""


class ConcurrentModificationError(LedgerError):
    def __init__(self, request_id: str, expected_version, kind: str = "Refill request"):
        self.request_id = request_id
        self.expected_version = expected_version
        since = f"version {expected_version}" if isinstance(expected_version, int) else _label(expected_version)
        super().__init__(f"{kind} {request_id} changed since {since}; reload and retry")


class NotificationError(StoreUnavailableError):
    """
    The transition was persisted but its notification was not.

    `request` holds the committed record (refill request or delivery) so
    the caller can retry the notification alone.
    """

    def __init__(self, request, cause: Exception, kind: str = "refill request"):
        self.request = request
        self.cause = cause
        super().__init__(f"Notification for {kind} {request.id} failed: {cause}")


def _label(status) -> str:
    return getattr(status, "value", str(status))
