"""Shared fixtures for udplink tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from udplink import Address, Mode, NetworkSubsystem, UdpEndpoint


LOOPBACK = Address.from_host("127.0.0.1", 0)


@pytest.fixture
def subsystem() -> NetworkSubsystem:
    return NetworkSubsystem()


@pytest.fixture
def server(subsystem: NetworkSubsystem) -> Iterator[UdpEndpoint]:
    """Server endpoint bound to an OS-assigned loopback port."""
    endpoint = UdpEndpoint.open(Mode.SERVER, LOOPBACK, subsystem=subsystem)
    yield endpoint
    endpoint.close()


@pytest.fixture
def client(server: UdpEndpoint, subsystem: NetworkSubsystem) -> Iterator[UdpEndpoint]:
    """Client endpoint connected to ``server``."""
    endpoint = UdpEndpoint.open(Mode.CLIENT, server.local_address, subsystem=subsystem)
    yield endpoint
    endpoint.close()
