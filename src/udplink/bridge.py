"""Bridge between an endpoint and a readiness poller.

``register`` hands an endpoint's descriptor to a poller together with two
trampolines. When the poller reports the descriptor readable, the read
trampoline performs exactly one non-blocking receive into the endpoint's
internal buffer and calls the user's read callback with::

    read(user, payload, status, sender) -> int

``status`` is the byte count (``>= 0``) or one of the negative ``STATUS_*``
codes; errors are always forwarded, never retried or swallowed. The callback
result is returned to the poller unchanged.

All callbacks run inline on the poller's dispatch thread. The payload is a
view of the endpoint's buffer, which is reused by the next dispatch: copy it
if it must outlive the callback. This is only sound with a single dispatch
thread per endpoint.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable

from udplink.address import Address
from udplink.endpoint import MAX_PAYLOAD, UdpEndpoint
from udplink.errors import (
    CallbackError,
    EndpointIOError,
    NoDataError,
    RegistrationError,
    UdpError,
)
from udplink.poller import Poller, PollerCallbacks


__all__ = [
    "Callbacks",
    "CloseCallback",
    "DatagramHandler",
    "EventBridge",
    "ReadCallback",
    "STATUS_ERROR",
    "STATUS_NO_DATA",
    "STATUS_OVERSIZED",
    "register",
]


STATUS_ERROR = -1
STATUS_NO_DATA = -2
STATUS_OVERSIZED = -3

ReadCallback: TypeAlias = Callable[[Any, memoryview, int, Address | None], int]
CloseCallback: TypeAlias = Callable[[Any], int]
RegisterSource: TypeAlias = Callable[[int, Any, PollerCallbacks], int]
RemoveSource: TypeAlias = Callable[[int], int]

logger = logging.getLogger("udplink.bridge")


@runtime_checkable
class DatagramHandler(Protocol):
    """Object-style alternative to passing ``read`` / ``close`` callables.

    Examples
    --------
    >>> class Echo:
    ...     def __init__(self, endpoint):
    ...         self.endpoint = endpoint
    ...     def on_read(self, payload, status, sender):
    ...         if status < 0:
    ...             return 1
    ...         self.endpoint.send(payload, sender)
    ...         return 0
    ...     def on_close(self):
    ...         return 1
    >>> register(endpoint, None, Callbacks.for_handler(Echo(endpoint), poller))
    """

    def on_read(self, payload: memoryview, status: int, sender: Address | None) -> int: ...

    def on_close(self) -> int: ...


@dataclass(frozen=True)
class Callbacks:
    """User callbacks for ``register``.

    Parameters
    ----------
    read : ReadCallback
        Called with ``(user, payload, status, sender)`` on every dispatch.
    register : RegisterSource
        Poller registration function, e.g. ``poller.register``.
    remove : RemoveSource
        Poller removal function, e.g. ``poller.remove``.
    close : CloseCallback or None
        Called with ``(user,)`` when the poller reports the source unusable.
    """

    read: ReadCallback | None
    register: RegisterSource | None
    remove: RemoveSource | None
    close: CloseCallback | None = None

    @classmethod
    def for_poller(
        cls,
        poller: Poller,
        read: ReadCallback,
        close: CloseCallback | None = None,
    ) -> Callbacks:
        return cls(read=read, register=poller.register, remove=poller.remove, close=close)

    @classmethod
    def for_handler(cls, handler: DatagramHandler, poller: Poller) -> Callbacks:
        """Build callbacks dispatching to *handler*'s ``on_read`` / ``on_close``.

        The ``user`` argument is ignored: the handler carries its own state.
        """
        return cls(
            read=lambda _user, payload, status, sender: handler.on_read(payload, status, sender),
            register=poller.register,
            remove=poller.remove,
            close=lambda _user: handler.on_close(),
        )


class EventBridge:
    """Registration of one endpoint with one poller.

    Created by ``register``; not meant to be instantiated directly.

    Attributes
    ----------
    last_error : UdpError or None
        Exception behind the most recent negative status passed to the read
        callback.
    """

    def __init__(self, endpoint: UdpEndpoint, user: Any, callbacks: Callbacks) -> None:
        self._endpoint = endpoint
        self._user = user
        if callbacks.read is None or callbacks.remove is None:
            msg = "read and remove callbacks are required"
            raise CallbackError(msg)
        self._read = callbacks.read
        self._remove = callbacks.remove
        self._close = callbacks.close
        self._fd = endpoint.fileno()
        self.last_error: UdpError | None = None

    @property
    def endpoint(self) -> UdpEndpoint:
        return self._endpoint

    @property
    def user(self) -> Any:
        return self._user

    def on_readable(self, endpoint: UdpEndpoint) -> int:
        """Read trampoline: one receive, then the user's read callback."""
        view = memoryview(endpoint.buffer)
        sender: Address | None = None
        try:
            status, sender = endpoint.receive_ready()
        except NoDataError as exc:
            status = STATUS_NO_DATA
            self.last_error = exc
        except EndpointIOError as exc:
            status = STATUS_ERROR
            self.last_error = exc

        if status > MAX_PAYLOAD:
            if endpoint.config.oversize == "reject":
                logger.warning("rejected oversized datagram from %s", sender)
                status = STATUS_OVERSIZED
                self.last_error = None
            else:
                logger.warning(
                    "truncated oversized datagram from %s to %d bytes", sender, MAX_PAYLOAD
                )
                status = MAX_PAYLOAD

        payload = view[: max(status, 0)]
        return self._read(self._user, payload, status, sender)

    def on_closed(self, endpoint: UdpEndpoint) -> int:
        """Close trampoline: forwards to the user's close callback if any."""
        close = self._close
        if close is None:
            return 0
        return close(self._user)

    def detach(self) -> None:
        """Remove the descriptor from the poller."""
        if self._remove(self._fd) < 0:
            logger.warning("poller refused to remove fd %d", self._fd)
        else:
            logger.debug("removed fd %d from poller", self._fd)


def register(endpoint: UdpEndpoint, user: Any, callbacks: Callbacks) -> EventBridge:
    """Register *endpoint* with a poller and switch it to asynchronous mode.

    Parameters
    ----------
    endpoint : UdpEndpoint
        Open endpoint, not registered yet.
    user : Any
        Opaque context passed back to the read and close callbacks.
    callbacks : Callbacks
        ``read``, ``register`` and ``remove`` are mandatory.

    Returns
    -------
    EventBridge

    Raises
    ------
    CallbackError
        If a mandatory callback is missing. Nothing is registered.
    RegistrationError
        If the endpoint is closed or already registered, or the poller
        refused the descriptor.
    """
    for name in ("remove", "read"):
        if getattr(callbacks, name) is None:
            msg = f"{name} callback is required"
            raise CallbackError(msg)
    register_source = callbacks.register
    if register_source is None:
        msg = "register callback is required"
        raise CallbackError(msg)
    if endpoint.closed:
        msg = "cannot register a closed endpoint"
        raise RegistrationError(msg)
    if endpoint.bridge is not None:
        msg = f"endpoint fd {endpoint.fileno()} is already registered"
        raise RegistrationError(msg)

    bridge = EventBridge(endpoint, user, callbacks)
    poller_callbacks = PollerCallbacks(on_read=bridge.on_readable, on_close=bridge.on_closed)
    fd = endpoint.fileno()
    if register_source(fd, endpoint, poller_callbacks) < 0:
        msg = f"poller refused fd {fd}"
        raise RegistrationError(msg)

    endpoint.attach(bridge)
    logger.debug("registered fd %d", fd)
    return bridge
