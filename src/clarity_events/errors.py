class ClarityError(Exception):
    """Base class for errors raised by clarity_events."""


class InvalidEventError(ClarityError, ValueError):
    """Raised when a caller passes an empty identifier or a non-JSON payload."""
