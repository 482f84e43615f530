"""IPv4 ``a.b.c.d:port`` address parsing and formatting.

``Address.ip`` holds the 32-bit IPv4 value in network byte order, i.e. the
integer obtained by reading the four address octets in host memory order.
``Address.port`` is a plain host-order integer. This mirrors what the socket
layer stores in a ``sockaddr_in`` and lets ``ip == 0`` / ``port == 0`` act as
the "unset" value for either field.
"""

from __future__ import annotations

import re
import socket
import sys
from dataclasses import dataclass

from udplink.errors import AddressError


__all__ = [
    "ANY_IP",
    "Address",
    "INVALID_IP",
    "MAX_ADDRESS_LENGTH",
    "format_ip",
    "host_to_network32",
    "network_to_host32",
    "parse_address",
]


MAX_ADDRESS_LENGTH = len("111.111.111.111:65535")

ANY_IP = 0
INVALID_IP = 0xFFFFFFFF

_PORT_PATTERN = re.compile(r"[0-9]+", re.ASCII)


def host_to_network32(value: int) -> int:
    """Convert a 32-bit integer from host to network byte order.

    Examples
    --------
    >>> network_to_host32(host_to_network32(0x7F000001)) == 0x7F000001
    True
    """
    return socket.htonl(value)


def network_to_host32(value: int) -> int:
    """Convert a 32-bit integer from network to host byte order."""
    return socket.ntohl(value)


def _ip_from_packed(packed: bytes) -> int:
    return int.from_bytes(packed, sys.byteorder)


def _ip_to_packed(ip: int) -> bytes:
    return (ip & 0xFFFFFFFF).to_bytes(4, sys.byteorder)


def format_ip(ip: int) -> str:
    """Render a network-order IPv4 value as a dotted quad.

    Each call returns a new string.

    Examples
    --------
    >>> format_ip(Address.from_host("10.0.0.1", 1).ip)
    '10.0.0.1'
    """
    return socket.inet_ntoa(_ip_to_packed(ip))


@dataclass(frozen=True)
class Address:
    """An IPv4 UDP address.

    Parameters
    ----------
    ip : int
        IPv4 address in network byte order. ``0`` means "any interface" for a
        bind and "unset" for a send.
    port : int
        UDP port in host byte order. ``0`` means "OS-assigned" for a bind and
        "unset" for a send.

    Examples
    --------
    >>> addr = Address.from_host("127.0.0.1", 9000)
    >>> str(addr)
    '127.0.0.1:9000'
    >>> addr.to_tuple()
    ('127.0.0.1', 9000)
    """

    ip: int = ANY_IP
    port: int = 0

    @classmethod
    def from_host(cls, host: str, port: int) -> Address:
        """Build an address from a dotted-quad host string and a port."""
        try:
            packed = socket.inet_aton(host)
        except OSError as exc:
            msg = f"Invalid IPv4 address: {host!r}"
            raise AddressError(msg) from exc
        return cls(ip=_ip_from_packed(packed), port=port)

    @classmethod
    def from_tuple(cls, sockaddr: tuple[str, int]) -> Address:
        """Build an address from a ``(host, port)`` tuple as returned by sockets."""
        return cls.from_host(sockaddr[0], sockaddr[1])

    @property
    def host(self) -> str:
        return format_ip(self.ip)

    @property
    def is_unset(self) -> bool:
        """``True`` when either field is zero, i.e. not usable as a destination."""
        return not self.ip or not self.port

    def to_tuple(self) -> tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_address(text: str) -> Address:
    """Parse ``a.b.c.d:port`` into an ``Address``.

    The IPv4 part accepts the classic ``inet_aton`` forms. The port must be a
    decimal integer in ``1..65535`` spanning the rest of the string.

    Parameters
    ----------
    text : str
        Address text, without any whitespace.

    Returns
    -------
    Address

    Raises
    ------
    AddressError
        If the text is too long, contains whitespace, has no ``:``, has an
        unparsable IP, equals ``255.255.255.255``, or has an invalid or zero
        port.

    Examples
    --------
    >>> parse_address("192.168.1.10:51914")
    Address(ip=..., port=51914)
    >>> parse_address("192.168.1.10:0")
    Traceback (most recent call last):
    ...
    udplink.errors.AddressError: Invalid port in address: '192.168.1.10:0'
    """
    if len(text) > MAX_ADDRESS_LENGTH:
        msg = f"Address too long: {text!r}"
        raise AddressError(msg)
    if any(ch.isspace() for ch in text):
        msg = f"Address contains whitespace: {text!r}"
        raise AddressError(msg)

    host, sep, port_text = text.partition(":")
    if not sep:
        msg = f"Missing ':' separator in address: {text!r}"
        raise AddressError(msg)

    try:
        packed = socket.inet_aton(host)
    except OSError as exc:
        msg = f"Invalid IPv4 address: {text!r}"
        raise AddressError(msg) from exc
    ip = _ip_from_packed(packed)
    if ip == INVALID_IP:
        msg = f"Invalid IPv4 address: {text!r}"
        raise AddressError(msg)

    if not _PORT_PATTERN.fullmatch(port_text):
        msg = f"Invalid port in address: {text!r}"
        raise AddressError(msg)
    port = int(port_text)
    if port == 0 or port > 0xFFFF:
        msg = f"Invalid port in address: {text!r}"
        raise AddressError(msg)

    return Address(ip=ip, port=port)
