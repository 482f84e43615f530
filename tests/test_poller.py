from __future__ import annotations

import asyncio
import socket
from collections.abc import Iterator
from typing import Any
from unittest.mock import patch

import pytest

from udplink import (
    Address,
    AsyncioPoller,
    Callbacks,
    Poller,
    PollerCallbacks,
    SelectorPoller,
    UdpEndpoint,
    register,
)


@pytest.fixture
def raw_socket() -> Iterator[socket.socket]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


def test_pollers_satisfy_protocol() -> None:
    poller = SelectorPoller()
    assert isinstance(poller, Poller)
    poller.close()


class TestSelectorPoller:
    def test_register_and_remove(self, raw_socket: socket.socket) -> None:
        poller = SelectorPoller()
        fd = raw_socket.fileno()
        callbacks = PollerCallbacks(on_read=lambda ctx: 0)

        assert poller.register(fd, None, callbacks) == 0
        assert fd in poller
        assert poller.register(fd, None, callbacks) == -1
        assert poller.remove(fd) == 0
        assert poller.remove(fd) == -1
        assert len(poller) == 0

    def test_poll_without_sources_returns_zero(self) -> None:
        assert SelectorPoller().poll(0) == 0

    def test_dispatches_readable_source(self, raw_socket: socket.socket) -> None:
        poller = SelectorPoller()
        seen: list[bytes] = []

        def on_read(ctx: socket.socket) -> int:
            seen.append(ctx.recv(64))
            return 0

        poller.register(raw_socket.fileno(), raw_socket, PollerCallbacks(on_read=on_read))
        raw_socket.sendto(b"tick", raw_socket.getsockname())

        assert poller.poll(1.0) == 0
        assert seen == [b"tick"]

    def test_nonzero_result_ends_round(self, raw_socket: socket.socket) -> None:
        poller = SelectorPoller()

        def on_read(ctx: socket.socket) -> int:
            ctx.recv(64)
            return 5

        poller.register(raw_socket.fileno(), raw_socket, PollerCallbacks(on_read=on_read))
        raw_socket.sendto(b"tick", raw_socket.getsockname())
        assert poller.poll(1.0) == 5
        assert raw_socket.fileno() in poller

    def test_invalid_descriptor_triggers_close(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        fd = sock.fileno()
        closed: list[str] = []

        def on_close(ctx: str) -> int:
            closed.append(ctx)
            return 2

        poller = SelectorPoller()
        poller.register(fd, "ctx", PollerCallbacks(on_read=lambda ctx: 0, on_close=on_close))
        sock.close()

        assert poller.poll(0) == 2
        assert closed == ["ctx"]
        assert fd not in poller

    def test_windows_sockets_stay_registered(self, raw_socket: socket.socket) -> None:
        closed: list[str] = []
        poller = SelectorPoller()
        poller.register(
            raw_socket.fileno(),
            "ctx",
            PollerCallbacks(on_read=lambda ctx: 0, on_close=lambda ctx: closed.append(ctx) or 0),
        )
        with (
            patch("udplink.poller.sys.platform", "win32"),
            patch("udplink.poller.os.fstat", side_effect=OSError(9, "Bad file descriptor")),
        ):
            assert poller.poll(0) == 0
        assert closed == []
        assert raw_socket.fileno() in poller
        poller.remove(raw_socket.fileno())

    def test_windows_closed_socket_triggers_close(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        fd = sock.fileno()
        closed: list[str] = []
        poller = SelectorPoller()
        poller.register(
            fd, "ctx", PollerCallbacks(on_read=lambda ctx: 0, on_close=lambda ctx: closed.append(ctx) or 3)
        )
        sock.close()
        with patch("udplink.poller.sys.platform", "win32"):
            assert poller.poll(0) == 3
        assert closed == ["ctx"]
        assert fd not in poller

    def test_close_notifies_remaining_sources(self, raw_socket: socket.socket) -> None:
        closed: list[Any] = []
        poller = SelectorPoller()
        poller.register(
            raw_socket.fileno(),
            "ctx",
            PollerCallbacks(on_read=lambda ctx: 0, on_close=lambda ctx: closed.append(ctx) or 0),
        )
        poller.close()
        assert closed == ["ctx"]
        assert len(poller) == 0


class TestAsyncioPoller:
    async def test_dispatches_endpoint_reads(self, server: UdpEndpoint, client: UdpEndpoint) -> None:
        poller = AsyncioPoller()
        received: asyncio.Queue[tuple[bytes, Address | None]] = asyncio.Queue()

        def on_read(user: Any, payload: memoryview, status: int, sender: Address | None) -> int:
            received.put_nowait((bytes(payload), sender))
            return 0

        register(server, None, Callbacks.for_poller(poller, on_read))
        client.send(b"one", server.local_address)
        client.send(b"two", server.local_address)

        first = await asyncio.wait_for(received.get(), timeout=1.0)
        second = await asyncio.wait_for(received.get(), timeout=1.0)
        assert [first[0], second[0]] == [b"one", b"two"]
        assert first[1] == client.local_address

        fd = server.fileno()
        server.close()
        assert fd not in poller

    async def test_nonzero_result_stops_watching(
        self, server: UdpEndpoint, client: UdpEndpoint
    ) -> None:
        poller = AsyncioPoller()
        calls: list[int] = []
        done = asyncio.Event()

        def on_read(user: Any, payload: memoryview, status: int, sender: Address | None) -> int:
            calls.append(status)
            done.set()
            return 1

        register(server, None, Callbacks.for_poller(poller, on_read))
        client.send(b"stop", server.local_address)
        await asyncio.wait_for(done.wait(), timeout=1.0)

        assert server.fileno() not in poller
        client.send(b"ignored", server.local_address)
        await asyncio.sleep(0.05)
        assert calls == [4]

    async def test_rejects_duplicates_and_write_callbacks(self, raw_socket: socket.socket) -> None:
        poller = AsyncioPoller()
        fd = raw_socket.fileno()
        assert poller.register(fd, None, PollerCallbacks(on_read=lambda ctx: 0)) == 0
        assert poller.register(fd, None, PollerCallbacks(on_read=lambda ctx: 0)) == -1
        assert poller.remove(fd) == 0
        assert (
            poller.register(fd, None, PollerCallbacks(on_read=lambda ctx: 0, on_write=lambda ctx: 0))
            == -1
        )

    async def test_close_notifies_user(self, server: UdpEndpoint) -> None:
        poller = AsyncioPoller()
        closed: list[Any] = []
        register(
            server,
            "ctx",
            Callbacks.for_poller(poller, lambda *args: 0, close=lambda user: closed.append(user) or 1),
        )
        poller.close()
        assert closed == ["ctx"]
        assert len(poller) == 0
