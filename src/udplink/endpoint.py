"""UDP socket endpoint: open, send, receive with timeout, close.

An endpoint owns exactly one IPv4 UDP socket. In ``Mode.SERVER`` the socket
is bound to the given address; in ``Mode.CLIENT`` it is connected to it, which
sets the default peer. Datagrams may still be sent to any other destination
through ``send``. Note that a connected socket reports an ICMP
port-unreachable for its peer on a *later* send, not on the send that caused
it: a clean return from ``send`` never implies delivery.

The socket stays in blocking mode. ``receive`` installs ``SO_RCVTIMEO`` before
each call and ``send`` passes ``MSG_DONTWAIT`` where the platform has it, so
the only place an endpoint ever blocks is a synchronous receive, for at most
the requested timeout.
"""

from __future__ import annotations

import logging
import socket
import struct
import sys
from enum import Enum
from typing import TYPE_CHECKING

from udplink.address import Address
from udplink.config import EndpointConfig
from udplink.errors import (
    EndpointClosedError,
    EndpointIOError,
    InvalidDestinationError,
    NoDataError,
    ValidationError,
)
from udplink.subsystem import NetworkSubsystem

if TYPE_CHECKING:
    from collections.abc import Buffer

    from udplink.bridge import EventBridge


__all__ = ["MAX_PAYLOAD", "Mode", "UdpEndpoint"]


MAX_PAYLOAD = 1472
"""Largest UDP payload in a 1500-byte Ethernet frame (minus IPv4 and UDP headers)."""

_DONTWAIT: int = getattr(socket, "MSG_DONTWAIT", 0)


class Mode(Enum):
    CLIENT = "client"
    SERVER = "server"


def _encode_timeout(timeout_ms: int) -> bytes:
    """Encode a millisecond timeout for ``SO_RCVTIMEO`` (``0`` blocks forever)."""
    if sys.platform == "win32":
        return struct.pack("L", timeout_ms)
    seconds, millis = divmod(timeout_ms, 1000)
    return struct.pack("ll", seconds, millis * 1000)


def _is_transient(exc: OSError) -> bool:
    if isinstance(exc, (BlockingIOError, TimeoutError)):
        return True
    # Winsock reports an ICMP port-unreachable from a previous send this way.
    return sys.platform == "win32" and isinstance(exc, ConnectionResetError)


class UdpEndpoint:
    """A single UDP socket in client or server mode.

    Use ``UdpEndpoint.open`` to create one. The endpoint can be used
    synchronously (``send`` / ``receive``) or handed to a poller with
    ``udplink.bridge.register``.

    Parameters
    ----------
    sock : socket.socket
        An already bound or connected UDP socket. The endpoint takes
        ownership of it.
    mode : Mode
        Whether *sock* is bound (server) or connected (client).
    subsystem : NetworkSubsystem
        Subsystem holding the reference released on ``close``.
    config : EndpointConfig or None
        Endpoint settings. Defaults to ``EndpointConfig()``.
    logger : logging.Logger or None
        Logger instance. Defaults to ``udplink.endpoint``.

    Examples
    --------
    >>> server = UdpEndpoint.open(Mode.SERVER, parse_address("127.0.0.1:9000"))
    >>> client = UdpEndpoint.open(Mode.CLIENT, parse_address("127.0.0.1:9000"))
    >>> client.send(b"ping", parse_address("127.0.0.1:9000"))
    4
    >>> data, sender = server.receive(timeout_ms=100)
    >>> data
    b'ping'
    >>> client.close(); server.close()
    """

    def __init__(
        self,
        sock: socket.socket,
        mode: Mode,
        *,
        subsystem: NetworkSubsystem,
        config: EndpointConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sock: socket.socket | None = sock
        self._fd = sock.fileno()
        self._mode = mode
        self._subsystem = subsystem
        self._config = config or EndpointConfig()
        self._logger = logger or logging.getLogger("udplink.endpoint")
        self._bridge: EventBridge | None = None
        # One spare byte past MAX_PAYLOAD lets the bridge detect oversized datagrams.
        self._buffer = bytearray(MAX_PAYLOAD + 1)

    @classmethod
    def open(
        cls,
        mode: Mode,
        address: Address,
        *,
        subsystem: NetworkSubsystem | None = None,
        config: EndpointConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> UdpEndpoint:
        """Create a UDP socket and bind it (server) or connect it (client).

        Parameters
        ----------
        mode : Mode
            ``Mode.SERVER`` binds to *address*, ``Mode.CLIENT`` connects to it.
        address : Address
            Local address for a server (``ip=0`` binds every interface,
            ``port=0`` picks a free port), default peer for a client.
        subsystem : NetworkSubsystem or None
            Subsystem to reference. Defaults to ``NetworkSubsystem.shared()``.
        config : EndpointConfig or None
            Endpoint settings.
        logger : logging.Logger or None
            Logger instance. Defaults to ``udplink.endpoint``.

        Returns
        -------
        UdpEndpoint

        Raises
        ------
        EndpointIOError
            If socket creation, bind or connect fails. No socket is left open
            and the subsystem reference count is unchanged.
        SubsystemError
            If the network subsystem cannot be started.
        """
        subsystem = subsystem or NetworkSubsystem.shared()
        config = config or EndpointConfig()
        log = logger or logging.getLogger("udplink.endpoint")
        with subsystem.reserve():
            sock = _create_socket(mode, address, config, log)
        log.debug("opened %s endpoint on %s", mode.value, address)
        return cls(sock, mode, subsystem=subsystem, config=config, logger=logger)

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def config(self) -> EndpointConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._sock is None

    @property
    def bridge(self) -> EventBridge | None:
        """The event bridge this endpoint is registered with, if any."""
        return self._bridge

    @property
    def buffer(self) -> bytearray:
        """Receive buffer used by the asynchronous path."""
        return self._buffer

    @property
    def local_address(self) -> Address:
        sock = self._require_open("getsockname")
        return Address.from_tuple(sock.getsockname())

    def fileno(self) -> int:
        """Descriptor of the underlying socket, ``-1`` once closed."""
        return -1 if self._sock is None else self._fd

    def send(self, data: Buffer, address: Address) -> int:
        """Send one datagram to *address* without blocking.

        Parameters
        ----------
        data : Buffer
            Payload bytes.
        address : Address
            Destination. Both ``ip`` and ``port`` must be non-zero.

        Returns
        -------
        int
            Number of bytes handed to the OS.

        Raises
        ------
        InvalidDestinationError
            If *address* has a zero IP or port. No socket call is made.
        EndpointIOError
            If the OS rejects the send. This may be the delayed report of an
            earlier datagram that was found unreachable.
        """
        if address.is_unset:
            msg = f"Destination IP and port must not be 0, got {address}"
            raise InvalidDestinationError(msg)
        sock = self._require_open("sendto")
        size = memoryview(data).nbytes
        self._logger.debug("send %d bytes to %s", size, address)
        try:
            return sock.sendto(data, _DONTWAIT, address.to_tuple())
        except OSError as exc:
            self._logger.error("sendto failed: %s", exc)
            raise EndpointIOError("sendto", exc) from exc

    def receive_into(self, buffer: Buffer, timeout_ms: int = 0) -> tuple[int, Address]:
        """Receive one datagram into *buffer*, waiting at most *timeout_ms*.

        Parameters
        ----------
        buffer : Buffer
            Writable buffer. A longer datagram is truncated to its size.
        timeout_ms : int
            Milliseconds to wait. ``0`` blocks until a datagram arrives.

        Returns
        -------
        tuple[int, Address]
            Number of bytes written into *buffer* and the sender address.

        Raises
        ------
        NoDataError
            If the timeout elapsed. Not logged.
        EndpointIOError
            If installing the timeout or the receive itself fails.
        """
        return self._receive(buffer, timeout_ms, 0)

    def receive(self, size: int = MAX_PAYLOAD, timeout_ms: int = 0) -> tuple[bytes, Address]:
        """Receive one datagram of at most *size* bytes.

        Same semantics as ``receive_into``; returns the payload as ``bytes``.
        """
        buffer = bytearray(size)
        nbytes, sender = self._receive(buffer, timeout_ms, 0)
        return bytes(buffer[:nbytes]), sender

    def receive_ready(self) -> tuple[int, Address]:
        """Receive into the internal buffer without waiting.

        Meant to run right after a poller reported the socket readable.

        Raises
        ------
        NoDataError
            If nothing was pending after all.
        EndpointIOError
            On any other failure.
        """
        return self._receive(self._buffer, 0, _DONTWAIT)

    def close(self) -> None:
        """Close the endpoint.

        Deregisters from the poller first when registered, then closes the
        socket and releases the subsystem reference. Closing an already
        closed endpoint does nothing. Never raises: a descriptor that was
        already invalidated behind the endpoint's back still releases the
        subsystem reference.
        """
        sock = self._sock
        if sock is None:
            return
        bridge = self._bridge
        self._sock = None
        self._bridge = None
        if bridge is not None:
            try:
                bridge.detach()
            except Exception:
                self._logger.warning("detach fd %d failed", self._fd, exc_info=True)
        try:
            sock.close()
        except OSError as exc:
            self._logger.debug("close fd %d: %s", self._fd, exc)
        finally:
            self._subsystem.release()
        self._logger.debug("closed %s endpoint (fd %d)", self._mode.value, self._fd)

    def attach(self, bridge: EventBridge) -> None:
        """Record the bridge this endpoint was registered with."""
        self._bridge = bridge

    def _require_open(self, operation: str) -> socket.socket:
        if self._sock is None:
            raise EndpointClosedError(operation)
        return self._sock

    def _receive(self, buffer: Buffer, timeout_ms: int, flags: int) -> tuple[int, Address]:
        if timeout_ms < 0:
            msg = f"timeout_ms must be >= 0, got {timeout_ms}"
            raise ValidationError(msg)
        sock = self._require_open("recvfrom")
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, _encode_timeout(timeout_ms))
        except OSError as exc:
            self._logger.error("setsockopt SO_RCVTIMEO failed: %s", exc)
            raise EndpointIOError("setsockopt SO_RCVTIMEO", exc) from exc

        try:
            nbytes, sockaddr = sock.recvfrom_into(buffer, 0, flags)
        except OSError as exc:
            if _is_transient(exc):
                raise NoDataError("no datagram received") from exc
            self._logger.error("recv failed: %s", exc)
            raise EndpointIOError("recvfrom", exc) from exc

        sender = Address.from_tuple(sockaddr)
        self._logger.debug("received %d bytes from %s", nbytes, sender)
        return nbytes, sender

    def __enter__(self) -> UdpEndpoint:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._sock is None else f"fd={self._fd}"
        return f"UdpEndpoint({self._mode.value}, {state})"


def _create_socket(
    mode: Mode,
    address: Address,
    config: EndpointConfig,
    log: logging.Logger,
) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as exc:
        log.error("socket failed: %s", exc)
        raise EndpointIOError("socket", exc) from exc

    operation = "connect" if mode is Mode.CLIENT else "bind"
    try:
        sock.setblocking(True)
        if mode is Mode.SERVER:
            if config.reuse_address:
                operation = "setsockopt SO_REUSEADDR"
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                operation = "bind"
            sock.bind(address.to_tuple())
        else:
            sock.connect(address.to_tuple())
    except OSError as exc:
        sock.close()
        log.error("%s %s failed: %s", operation, address, exc)
        raise EndpointIOError(operation, exc) from exc
    return sock
