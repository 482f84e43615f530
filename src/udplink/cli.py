"""Command-line echo server and round-trip latency probe.

Server mode echoes every datagram back to its sender::

    udplink -i 0.0.0.0:51914

Client mode sends a packet, waits for the echo, checks it, bumps every byte
and sends again, timing each round trip::

    udplink -o 192.168.1.10:51914 -n 1000 -s 64 -v

Client mode prints ``worst``, ``avg`` and ``stdev`` in microseconds.
"""

from __future__ import annotations

import argparse
import logging
import signal
import statistics
import sys
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from udplink.address import Address, parse_address
from udplink.bridge import STATUS_NO_DATA, Callbacks, register
from udplink.config import UdplinkConfig, load_config
from udplink.endpoint import MAX_PAYLOAD, Mode, UdpEndpoint
from udplink.errors import AddressError, EndpointIOError, UdpError
from udplink.poller import SelectorPoller


__all__ = ["EchoServer", "LatencySummary", "RoundTripClient", "main", "run", "summarize"]

logger = logging.getLogger("udplink.cli")


@dataclass(frozen=True)
class LatencySummary:
    """Round-trip statistics in microseconds.

    ``average`` and ``stdev`` are ``None`` with fewer than two samples.
    """

    samples: int
    worst: float
    average: float | None
    stdev: float | None

    def format(self) -> str:
        fields = [self.worst]
        if self.average is not None and self.stdev is not None:
            fields += [self.average, self.stdev]
        return "".join(f"{value:.0f}\t" for value in fields)


def summarize(rtts: Sequence[float]) -> LatencySummary:
    """Summarize round-trip times given in seconds.

    Examples
    --------
    >>> summarize([0.001, 0.003]).worst
    3000.0
    """
    micros = [rtt * 1_000_000 for rtt in rtts]
    worst = max(micros, default=0.0)
    if len(micros) < 2:
        return LatencySummary(len(micros), worst, None, None)
    return LatencySummary(
        len(micros), worst, statistics.mean(micros), statistics.stdev(micros)
    )


class EchoServer:
    """Sends every received datagram back to where it came from."""

    def __init__(self, endpoint: UdpEndpoint, stop: threading.Event) -> None:
        self._endpoint = endpoint
        self._stop = stop
        self.echoed = 0

    def on_read(self, payload: memoryview, status: int, sender: Address | None) -> int:
        if status == STATUS_NO_DATA:
            return 0
        if status < 0 or sender is None:
            self._stop.set()
            return 1
        try:
            self._endpoint.send(payload, sender)
        except UdpError:
            self._stop.set()
            return 1
        self.echoed += 1
        return 0

    def on_close(self) -> int:
        self._stop.set()
        return 1


class RoundTripClient:
    """Ping-pong a packet with an echo server and record round-trip times.

    Parameters
    ----------
    endpoint : UdpEndpoint
        Client endpoint connected to the echo server.
    destination : Address
        Echo server address.
    packet_size : int
        Payload size in bytes.
    samples : int
        Stop after this many round trips (``0`` means no limit).
    stop : threading.Event
        Set when the run is over.
    """

    def __init__(
        self,
        endpoint: UdpEndpoint,
        destination: Address,
        packet_size: int,
        samples: int,
        stop: threading.Event,
    ) -> None:
        self._endpoint = endpoint
        self._destination = destination
        self._packet = bytes(packet_size)
        self._samples = samples
        self._stop = stop
        self._sent_at = 0.0
        self.rtts: list[float] = []
        self.failed = False

    def start(self) -> None:
        self._send()

    def on_read(self, payload: memoryview, status: int, sender: Address | None) -> int:
        if status == STATUS_NO_DATA:
            return 0
        if status < 0:
            self._stop.set()
            return 1

        received_at = time.perf_counter()
        if payload != self._packet:
            logger.error("bad packet content")
            self.failed = True
            self._stop.set()
            return -1

        self.rtts.append(received_at - self._sent_at)
        self._packet = bytes((b + 1) & 0xFF for b in self._packet)
        if self._samples and len(self.rtts) >= self._samples:
            self._stop.set()
            return 1

        self._send()
        return 1 if self._stop.is_set() else 0

    def on_close(self) -> int:
        self._stop.set()
        return 1

    def _send(self) -> None:
        self._sent_at = time.perf_counter()
        try:
            self._endpoint.send(self._packet, self._destination)
        except EndpointIOError:
            self._stop.set()


@contextmanager
def _stop_on_signals(stop: threading.Event) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum: int, frame: object) -> None:
        stop.set()

    previous = {
        signum: signal.signal(signum, handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, old in previous.items():
            signal.signal(signum, old)


def run(
    poller: SelectorPoller,
    stop: threading.Event,
    *,
    period_ms: int = 10,
    duration_s: float = 0,
) -> None:
    """Drive *poller* until *stop* is set or *duration_s* elapsed."""
    deadline = time.monotonic() + duration_s if duration_s else None
    period = period_ms / 1000
    while not stop.is_set():
        poller.poll(period)
        if deadline is not None and time.monotonic() >= deadline:
            stop.set()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="udplink", description="UDP echo server and round-trip latency probe"
    )
    parser.add_argument("-i", dest="source", help="echo server mode: bind to ip:port")
    parser.add_argument("-o", dest="destination", help="client mode: echo server ip:port")
    parser.add_argument("-d", dest="duration", type=int, help="run for this many seconds")
    parser.add_argument("-n", dest="samples", type=int, help="number of round trips")
    parser.add_argument("-s", dest="packet_size", type=int, help="packet size in bytes")
    parser.add_argument("-v", dest="verbose", action="store_true", help="print a header")
    parser.add_argument("-g", dest="debug", action="store_true", help="debug logging")
    parser.add_argument("--config", type=Path, help="path to udplink.toml")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(name)s | %(message)s",
    )

    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError) as exc:
        print(f"failed to load config: {exc}", file=sys.stderr)
        return 1

    bench = config.bench
    samples = args.samples if args.samples is not None else bench.samples
    duration = args.duration if args.duration is not None else bench.duration_s
    packet_size = args.packet_size if args.packet_size is not None else bench.packet_size

    if (args.source is None and args.destination is None) or (samples == 0 and duration == 0):
        parser.print_usage(sys.stderr)
        return 1
    if args.destination is not None and args.source is None and not 0 < packet_size <= MAX_PAYLOAD:
        parser.print_usage(sys.stderr)
        return 1

    try:
        address = parse_address(args.source or args.destination)
    except AddressError:
        print("failed to parse address", file=sys.stderr)
        return 1

    if args.source is not None:
        return _serve(address, config, duration)
    return _probe(address, config, samples, duration, packet_size, args.verbose)


def _serve(address: Address, config: UdplinkConfig, duration: float) -> int:
    try:
        endpoint = UdpEndpoint.open(Mode.SERVER, address, config=config.endpoint)
    except UdpError:
        return 1

    stop = threading.Event()
    poller = SelectorPoller()
    with endpoint, _stop_on_signals(stop):
        register(endpoint, None, Callbacks.for_handler(EchoServer(endpoint, stop), poller))
        run(poller, stop, period_ms=config.bench.period_ms, duration_s=duration)
    poller.close()
    return 0


def _probe(
    address: Address,
    config: UdplinkConfig,
    samples: int,
    duration: float,
    packet_size: int,
    verbose: bool,
) -> int:
    try:
        endpoint = UdpEndpoint.open(Mode.CLIENT, address, config=config.endpoint)
    except UdpError:
        return 1

    stop = threading.Event()
    poller = SelectorPoller()
    client = RoundTripClient(endpoint, address, packet_size, samples, stop)
    with endpoint, _stop_on_signals(stop):
        register(endpoint, None, Callbacks.for_handler(client, poller))
        client.start()
        run(poller, stop, period_ms=config.bench.period_ms, duration_s=duration)
    poller.close()

    summary = summarize(client.rtts)
    if verbose:
        print(f"samples: {summary.samples} packet size: {packet_size}")
        print("worst\tavg\tstdev")
    print(summary.format())
    return 1 if client.failed else 0
