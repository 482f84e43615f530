from __future__ import annotations

import socket
import sys

import pytest

from udplink.address import (
    MAX_ADDRESS_LENGTH,
    Address,
    format_ip,
    host_to_network32,
    network_to_host32,
    parse_address,
)
from udplink.errors import AddressError, ValidationError


def test_parse_valid_address() -> None:
    addr = parse_address("192.168.1.10:51914")
    assert addr.port == 51914
    assert format_ip(addr.ip) == "192.168.1.10"


def test_parse_stores_ip_in_network_order() -> None:
    addr = parse_address("10.0.0.1:80")
    assert addr.ip.to_bytes(4, sys.byteorder) == bytes([10, 0, 0, 1])
    assert network_to_host32(addr.ip) == 0x0A000001


def test_parse_accepts_wildcard_ip() -> None:
    addr = parse_address("0.0.0.0:5000")
    assert addr.ip == 0
    assert addr.port == 5000


def test_parse_accepts_longest_address() -> None:
    text = "111.111.111.111:65535"
    assert len(text) == MAX_ADDRESS_LENGTH
    assert parse_address(text).port == 65535


@pytest.mark.parametrize(
    "text",
    [
        "111.111.111.111:655350",
        "127.0.0.1 :80",
        " 127.0.0.1:80",
        "127.0.0.1\tx:80",
        "127.0.0.1\n:80",
        "1.2.3.4\x0bz:9",
        "127.0.0.1:80\r",
        "127.0.0.1: 80",
        "127.0.0.1",
        "127.0.0.1:",
        "127.0.0.1:http",
        "127.0.0.1:80a",
        "127.0.0.1:+80",
        "127.0.0.1:-80",
        "127.0.0.1:0",
        "127.0.0.1:65536",
        "256.0.0.1:80",
        "not.an.ip:80",
        ":80",
        "255.255.255.255:80",
        "",
    ],
)
def test_parse_rejects_malformed(text: str) -> None:
    with pytest.raises(AddressError):
        parse_address(text)


def test_address_error_is_validation_error() -> None:
    with pytest.raises(ValidationError):
        parse_address("nope")
    with pytest.raises(ValueError):
        parse_address("nope")


@pytest.mark.parametrize(
    ("host", "port"),
    [("127.0.0.1", 1), ("10.20.30.40", 8080), ("1.2.3.4", 65535), ("0.0.0.0", 9)],
)
def test_format_then_parse_round_trip(host: str, port: int) -> None:
    original = Address.from_host(host, port)
    parsed = parse_address(f"{format_ip(original.ip)}:{original.port}")
    assert parsed == original


def test_format_returns_independent_strings() -> None:
    first = format_ip(Address.from_host("1.1.1.1", 1).ip)
    second = format_ip(Address.from_host("2.2.2.2", 1).ip)
    assert first == "1.1.1.1"
    assert second == "2.2.2.2"


def test_byte_order_helpers_match_socket() -> None:
    assert host_to_network32(0x7F000001) == socket.htonl(0x7F000001)
    assert network_to_host32(host_to_network32(0xDEADBEEF)) == 0xDEADBEEF


class TestAddress:
    def test_str_and_tuple(self) -> None:
        addr = Address.from_host("127.0.0.1", 9000)
        assert str(addr) == "127.0.0.1:9000"
        assert addr.to_tuple() == ("127.0.0.1", 9000)
        assert addr.host == "127.0.0.1"

    def test_from_tuple(self) -> None:
        assert Address.from_tuple(("10.0.0.2", 53)) == Address.from_host("10.0.0.2", 53)

    def test_is_unset(self) -> None:
        assert Address().is_unset
        assert Address.from_host("127.0.0.1", 0).is_unset
        assert Address(ip=0, port=80).is_unset
        assert not Address.from_host("127.0.0.1", 80).is_unset

    def test_frozen(self) -> None:
        addr = Address.from_host("127.0.0.1", 80)
        with pytest.raises(AttributeError):
            addr.port = 81  # type: ignore[misc]

    def test_from_host_rejects_garbage(self) -> None:
        with pytest.raises(AddressError):
            Address.from_host("example.invalid", 80)
