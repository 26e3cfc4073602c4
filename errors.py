"""Error taxonomy shared by the store, the lifecycle manager and the API layer."""

from typing import Optional


class MentorGateError(Exception):
    """Base class for all service errors.

    ``public_message`` is what clients see; the exception text itself may carry
    internal detail and is only written to the logs.
    """

    status_code = 500
    public_message = "Server error"

    def __init__(self, message: Optional[str] = None, *, public_message: Optional[str] = None):
        super().__init__(message or public_message or self.public_message)
        if public_message:
            self.public_message = public_message


class PayloadValidationError(MentorGateError):
    status_code = 400
    public_message = "Invalid payload"


class NotFoundError(MentorGateError):
    status_code = 404
    public_message = "Not found"


class InterventionStateError(MentorGateError):
    """Raised when a transition is not allowed from the intervention's status."""

    status_code = 409
    public_message = "Invalid intervention state"


class StorageError(MentorGateError):
    """Backing store unreachable or a query failed."""

    status_code = 500
    public_message = "Server error"


class NotificationError(MentorGateError):
    # Raised by WebhookNotifier.send; background delivery logs and drops it.
    status_code = 502
    public_message = "Notification failed"


class ConstraintViolation(StorageError):
    """A write would break a storage-level constraint (e.g. a second active intervention)."""
