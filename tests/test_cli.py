from __future__ import annotations

import socket
import threading

import pytest

from udplink import STATUS_ERROR, STATUS_NO_DATA, Callbacks, SelectorPoller, UdpEndpoint, register
from udplink.cli import EchoServer, LatencySummary, main, run, summarize


class TestSummarize:
    def test_empty(self) -> None:
        summary = summarize([])
        assert summary == LatencySummary(samples=0, worst=0.0, average=None, stdev=None)
        assert summary.format() == "0\t"

    def test_single_sample(self) -> None:
        summary = summarize([0.000250])
        assert summary.worst == pytest.approx(250.0)
        assert summary.average is None
        assert summary.stdev is None

    def test_statistics_in_microseconds(self) -> None:
        summary = summarize([0.001, 0.002, 0.003])
        assert summary.samples == 3
        assert summary.worst == pytest.approx(3000.0)
        assert summary.average == pytest.approx(2000.0)
        assert summary.stdev == pytest.approx(1000.0)
        assert summary.format() == "3000\t2000\t1000\t"


class TestUsage:
    @pytest.mark.parametrize(
        "argv",
        [
            [],
            ["-o", "127.0.0.1:9000", "-s", "16"],
            ["-o", "127.0.0.1:9000", "-n", "5"],
            ["-o", "127.0.0.1:9000", "-n", "5", "-s", "0"],
            ["-o", "127.0.0.1:9000", "-n", "5", "-s", "1473"],
        ],
    )
    def test_prints_usage(self, argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
        assert main(argv) == 1
        assert "usage:" in capsys.readouterr().err

    def test_bad_address(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["-o", "127.0.0.1", "-n", "5", "-s", "16"]) == 1
        assert "failed to parse address" in capsys.readouterr().err


def test_round_trip_against_echo_server(
    server: UdpEndpoint, capsys: pytest.CaptureFixture[str]
) -> None:
    stop = threading.Event()
    poller = SelectorPoller()
    echo = EchoServer(server, stop)
    register(server, None, Callbacks.for_handler(echo, poller))
    thread = threading.Thread(target=run, args=(poller, stop), kwargs={"period_ms": 10})
    thread.start()
    try:
        rc = main(["-o", str(server.local_address), "-n", "5", "-s", "32", "-v"])
    finally:
        stop.set()
        thread.join(timeout=5)

    out = capsys.readouterr().out.splitlines()
    assert rc == 0
    assert echo.echoed == 5
    assert out[0] == "samples: 5 packet size: 32"
    assert out[1] == "worst\tavg\tstdev"
    assert len(out[2].split("\t")) == 4


def test_server_mode_runs_for_duration() -> None:
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()

    assert main(["-i", f"127.0.0.1:{port}", "-d", "1"]) == 0


class TestEchoServer:
    def test_spurious_wakeup_keeps_running(self) -> None:
        stop = threading.Event()
        echo = EchoServer(endpoint=None, stop=stop)  # type: ignore[arg-type]
        assert echo.on_read(memoryview(b""), STATUS_NO_DATA, None) == 0
        assert not stop.is_set()

    def test_error_stops(self) -> None:
        stop = threading.Event()
        echo = EchoServer(endpoint=None, stop=stop)  # type: ignore[arg-type]
        assert echo.on_read(memoryview(b""), STATUS_ERROR, None) == 1
        assert stop.is_set()
