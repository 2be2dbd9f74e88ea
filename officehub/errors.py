class OfficeError(Exception):
    """Base exception for officehub domain errors."""

    pass


class NotAuthenticated(OfficeError):
    """Raised when an operation needs a valid session and none is present."""

    pass


class NoOrganization(OfficeError):
    """Raised when the session identity has no organization scope."""

    pass


class ValidationError(OfficeError, ValueError):
    """Raised when caller input is rejected."""

    pass


class EmptyMessage(ValidationError):
    """Raised when a message has neither text nor attachments."""

    pass


class NotFound(OfficeError, LookupError):
    """Raised when a channel, message, notification or profile cannot be found."""

    pass


class Forbidden(OfficeError):
    """Raised when the caller may not read or mutate the target."""

    pass


class Conflict(OfficeError):
    """Raised when a store uniqueness constraint is violated."""

    pass


class BackendUnavailable(OfficeError):
    """Raised on transient store or transport failure. Safe to retry."""

    pass


class FeedUnavailable(BackendUnavailable):
    """Raised when the live change feed cannot be established."""

    pass


class PushDeliveryError(OfficeError):
    """Raised when a push service rejects or fails a delivery."""

    pass


class EndpointGone(PushDeliveryError):
    """Raised when a push endpoint reports permanent failure (404/410)."""

    pass
