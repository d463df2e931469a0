"""
Booking lifecycle errors

Raised inside the core services and translated at the edges: the inbound
webhook always acknowledges Twilio, and notifier failures never surface as
exceptions at all.
"""


class BookingLifecycleError(Exception):
    """Base class for booking lifecycle errors"""

    pass


class ValidationError(BookingLifecycleError):
    """Malformed inbound command, rejected before any mutation"""

    pass


class NotFoundError(BookingLifecycleError):
    """Target booking or sender does not exist"""

    pass


class ConflictError(BookingLifecycleError):
    """Booking already left PENDING, or the key is already taken"""

    pass


class TransportError(BookingLifecycleError):
    """Inbound request failed signature verification"""

    pass
