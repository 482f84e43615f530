"""TOML-based configuration for udplink.

Provides ``load_config`` / ``discover_config`` for loading ``udplink.toml``
into frozen dataclasses for endpoint behavior and benchmark defaults.

Example ``udplink.toml``::

    [endpoint]
    oversize = "reject"
    reuse_address = true

    [bench]
    period_ms = 10
    samples = 1000
    packet_size = 64
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TypeAlias


__all__ = [
    "BenchConfig",
    "EndpointConfig",
    "OversizePolicy",
    "UdplinkConfig",
    "discover_config",
    "load_config",
]


OversizePolicy: TypeAlias = Literal["truncate", "reject"]

CONFIG_FILENAME = "udplink.toml"
OVERSIZE_POLICIES: tuple[str, ...] = ("truncate", "reject")


@dataclass(frozen=True)
class EndpointConfig:
    """Endpoint behavior settings.

    Parameters
    ----------
    oversize : OversizePolicy
        What the asynchronous path does with a datagram larger than the
        1472-byte receive buffer: ``"truncate"`` delivers the first 1472
        bytes, ``"reject"`` delivers an empty payload with
        ``STATUS_OVERSIZED``.
    reuse_address : bool
        Set ``SO_REUSEADDR`` before binding a server endpoint.

    Examples
    --------
    >>> EndpointConfig(oversize="reject")
    EndpointConfig(oversize='reject', reuse_address=False)
    """

    oversize: OversizePolicy = "truncate"
    reuse_address: bool = False

    def __post_init__(self) -> None:
        if self.oversize not in OVERSIZE_POLICIES:
            msg = f"Unknown oversize policy: {self.oversize!r}"
            raise ValueError(msg)


@dataclass(frozen=True)
class BenchConfig:
    """Defaults for the round-trip benchmark of the command-line tool.

    Parameters
    ----------
    period_ms : int
        Poll period; the stop flag and duration are checked this often.
    samples : int
        Number of round trips to measure (``0`` means unbounded).
    packet_size : int
        Payload size in bytes.
    duration_s : int
        Stop after this many seconds (``0`` means no limit).
    """

    period_ms: int = 10
    samples: int = 0
    packet_size: int = 0
    duration_s: int = 0


@dataclass(frozen=True)
class UdplinkConfig:
    """Top-level configuration.

    Examples
    --------
    >>> cfg = UdplinkConfig()
    >>> cfg.endpoint.oversize
    'truncate'
    """

    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    bench: BenchConfig = field(default_factory=BenchConfig)


def discover_config(start: Path | None = None) -> Path | None:
    """Find the nearest ``udplink.toml`` in *start* or one of its parents.

    The search begins at *start* (the working directory when omitted) and
    stops at the filesystem root.

    Examples
    --------
    >>> discover_config(Path("/srv/bench/run-3"))
    PosixPath('/srv/bench/udplink.toml')
    """
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None) -> UdplinkConfig:
    """Load a ``UdplinkConfig`` from a TOML file.

    If *path* is ``None``, auto-discovers ``udplink.toml`` by walking up from
    the current working directory. Returns the default config if no file is
    found.

    Parameters
    ----------
    path : Path | None
        Explicit path to a TOML config file.

    Returns
    -------
    UdplinkConfig

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.
    ValueError
        If ``endpoint.oversize`` names an unknown policy.
    """
    if path is None:
        discovered = discover_config()
        if discovered is None:
            return UdplinkConfig()
        path = discovered

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    return UdplinkConfig(
        endpoint=EndpointConfig(**raw.get("endpoint", {})),
        bench=BenchConfig(**raw.get("bench", {})),
    )
