"""Exception hierarchy for udplink.

Validation failures are raised before any socket call is made. Fatal OS
failures are wrapped in ``EndpointIOError`` and chained from the original
``OSError``. Timeouts are reported as ``NoDataError``, which callers are
expected to treat as a normal "nothing arrived" outcome.
"""

from __future__ import annotations


__all__ = [
    "AddressError",
    "CallbackError",
    "EndpointClosedError",
    "EndpointIOError",
    "InvalidDestinationError",
    "NoDataError",
    "RegistrationError",
    "SubsystemError",
    "UdpError",
    "ValidationError",
]


class UdpError(Exception):
    """Base class for every error raised by udplink."""


class ValidationError(UdpError, ValueError):
    """Input rejected before any I/O was attempted."""


class AddressError(ValidationError):
    """Address text does not match ``a.b.c.d:port``."""


class InvalidDestinationError(ValidationError):
    """Send destination has a zero IP or a zero port."""


class CallbackError(ValidationError):
    """A mandatory callback was not supplied."""


class RegistrationError(UdpError):
    """The endpoint could not be handed to the poller."""


class SubsystemError(UdpError):
    """The platform network subsystem failed to start."""


class EndpointIOError(UdpError, OSError):
    """A socket operation failed at the OS level.

    Parameters
    ----------
    operation : str
        Name of the failing socket call (``"bind"``, ``"sendto"``...).
    cause : OSError or None
        The original OS error, used to fill ``errno`` and ``strerror``.

    Examples
    --------
    >>> err = EndpointIOError("bind", OSError(98, "Address already in use"))
    >>> err.operation, err.errno
    ('bind', 98)
    """

    def __init__(self, operation: str, cause: OSError | None = None) -> None:
        errno = cause.errno if cause is not None else None
        strerror = cause.strerror if cause is not None else None
        detail = strerror or (str(cause) if cause is not None else "failed")
        super().__init__(errno, f"{operation} failed: {detail}")
        self.operation = operation

    def __str__(self) -> str:
        return self.strerror or self.operation


class EndpointClosedError(EndpointIOError):
    """I/O was attempted on an endpoint that is already closed."""

    def __init__(self, operation: str) -> None:
        super().__init__(operation)
        self.strerror = f"{operation} on closed endpoint"


class NoDataError(UdpError, TimeoutError):
    """No datagram arrived before the receive timeout elapsed."""
