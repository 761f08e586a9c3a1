"""Exception taxonomy shared by the duplicate detector and settlement engine."""


class FxDeskError(Exception):
    """Base class for all fxdesk errors."""


class InputError(FxDeskError):
    """Raised for malformed hashes, ids, statuses or mismatched hash widths."""


class InvalidTransitionError(InputError):
    """Raised when a status pair is outside the transition table.

    Requests out of a terminal state never raise this; they are no-ops.
    """

    def __init__(self, previous_status, requested_status):
        self.previous_status = previous_status
        self.requested_status = requested_status
        super().__init__(
            f"Illegal transition: {getattr(previous_status, 'value', previous_status)} -> "
            f"{getattr(requested_status, 'value', requested_status)}"
        )


class NotFoundError(FxDeskError):
    """Raised when a transaction or record does not exist."""


class StorageUnavailable(FxDeskError):
    """Raised when a backing store cannot be read or written."""


class NotificationFailure(FxDeskError):
    """Raised by a dispatcher when the outbound message could not be delivered."""


class ConfigurationError(FxDeskError):
    """Raised when configuration loading encounters issues."""
