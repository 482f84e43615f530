"""Readiness-polling contract and two implementations of it.

A poller watches descriptors and calls back when one becomes readable or
unusable. udplink only depends on the ``Poller`` protocol; ``SelectorPoller``
and ``AsyncioPoller`` are the implementations shipped with the package.

Callback return values follow one rule: ``0`` means "keep going", anything
else asks the poller to stop. What "stop" means is up to the poller and is
documented on each class.
"""

from __future__ import annotations

import asyncio
import logging
import os
import select
import selectors
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable


__all__ = [
    "AsyncioPoller",
    "Poller",
    "PollerCallbacks",
    "SelectorPoller",
    "SourceCallback",
]


SourceCallback: TypeAlias = Callable[[Any], int]


@dataclass(frozen=True)
class PollerCallbacks:
    """Per-descriptor callbacks handed to a poller.

    Each callback receives the context object given at registration.

    Parameters
    ----------
    on_read : SourceCallback
        Called when the descriptor is readable.
    on_write : SourceCallback or None
        Called when the descriptor is writable. Unused by udplink.
    on_close : SourceCallback or None
        Called when the descriptor became unusable.
    """

    on_read: SourceCallback
    on_write: SourceCallback | None = None
    on_close: SourceCallback | None = None


@runtime_checkable
class Poller(Protocol):
    """Protocol for a readiness-polling facility.

    ``register`` and ``remove`` return ``0`` on success and a negative value
    on failure.
    """

    def register(self, fd: int, context: Any, callbacks: PollerCallbacks) -> int: ...

    def remove(self, fd: int) -> int: ...


@dataclass
class _Source:
    fd: int
    context: Any
    callbacks: PollerCallbacks


def _fd_is_valid(fd: int) -> bool:
    if fd < 0:
        return False
    if sys.platform == "win32":
        # Winsock handles are not CRT descriptors, os.fstat rejects them.
        try:
            select.select([fd], [], [], 0)
        except OSError:
            return False
        return True
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


class SelectorPoller:
    """Single-threaded poller on top of ``selectors``.

    The caller drives it by calling ``poll`` in a loop. A non-zero callback
    result ends the current round and is returned by ``poll``; remaining ready
    sources are dispatched on the next round.

    Parameters
    ----------
    selector : selectors.BaseSelector or None
        Selector to use. Defaults to ``selectors.DefaultSelector()``.
    logger : logging.Logger or None
        Logger instance. Defaults to ``udplink.poller``.

    Examples
    --------
    >>> poller = SelectorPoller()
    >>> poller.register(endpoint.fileno(), ctx, PollerCallbacks(on_read=handle))
    0
    >>> while not done:
    ...     poller.poll(0.01)
    """

    def __init__(
        self,
        selector: selectors.BaseSelector | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._selector = selector or selectors.DefaultSelector()
        self._sources: dict[int, _Source] = {}
        self._logger = logger or logging.getLogger("udplink.poller")

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, fd: object) -> bool:
        return fd in self._sources

    def register(self, fd: int, context: Any, callbacks: PollerCallbacks) -> int:
        events = selectors.EVENT_READ
        if callbacks.on_write is not None:
            events |= selectors.EVENT_WRITE
        try:
            self._selector.register(fd, events)
        except (KeyError, ValueError, OSError) as exc:
            self._logger.error("register fd %d failed: %s", fd, exc)
            return -1
        self._sources[fd] = _Source(fd, context, callbacks)
        return 0

    def remove(self, fd: int) -> int:
        source = self._sources.pop(fd, None)
        if source is None:
            return -1
        try:
            self._selector.unregister(fd)
        except (KeyError, ValueError, OSError) as exc:
            self._logger.debug("unregister fd %d: %s", fd, exc)
        return 0

    def poll(self, timeout: float | None = None) -> int:
        """Wait up to *timeout* seconds and dispatch ready sources.

        Returns
        -------
        int
            The first non-zero callback result, or ``0``.
        """
        for source in [s for s in self._sources.values() if not _fd_is_valid(s.fd)]:
            self.remove(source.fd)
            if source.callbacks.on_close is not None:
                ret = source.callbacks.on_close(source.context)
                if ret:
                    return ret

        if not self._sources:
            return 0

        for key, mask in self._selector.select(timeout):
            source = self._sources.get(key.fd)
            if source is None:
                continue
            callbacks = source.callbacks
            ret = 0
            if mask & selectors.EVENT_READ:
                ret = callbacks.on_read(source.context)
            if not ret and mask & selectors.EVENT_WRITE and callbacks.on_write is not None:
                ret = callbacks.on_write(source.context)
            if ret:
                return ret
        return 0

    def close(self) -> None:
        """Drop every source, notifying each through ``on_close``."""
        sources = list(self._sources.values())
        for source in sources:
            self.remove(source.fd)
        self._selector.close()
        for source in sources:
            if source.callbacks.on_close is not None:
                source.callbacks.on_close(source.context)


class AsyncioPoller:
    """Poller bridging the contract onto an asyncio event loop.

    Sources are watched with ``loop.add_reader``. A non-zero ``on_read``
    result stops watching that source. ``on_write`` is not supported.

    Parameters
    ----------
    loop : asyncio.AbstractEventLoop or None
        Loop to register on. Defaults to the running loop.
    logger : logging.Logger or None
        Logger instance. Defaults to ``udplink.poller``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._sources: dict[int, _Source] = {}
        self._logger = logger or logging.getLogger("udplink.poller")

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, fd: object) -> bool:
        return fd in self._sources

    def register(self, fd: int, context: Any, callbacks: PollerCallbacks) -> int:
        if fd in self._sources:
            self._logger.error("fd %d is already registered", fd)
            return -1
        if callbacks.on_write is not None:
            self._logger.error("on_write is not supported (fd %d)", fd)
            return -1
        try:
            self._loop.add_reader(fd, self._dispatch, fd)
        except (ValueError, OSError, NotImplementedError) as exc:
            self._logger.error("add_reader fd %d failed: %s", fd, exc)
            return -1
        self._sources[fd] = _Source(fd, context, callbacks)
        return 0

    def remove(self, fd: int) -> int:
        if self._sources.pop(fd, None) is None:
            return -1
        self._loop.remove_reader(fd)
        return 0

    def _dispatch(self, fd: int) -> None:
        source = self._sources.get(fd)
        if source is None:
            return
        if source.callbacks.on_read(source.context):
            self._logger.debug("fd %d asked to stop watching", fd)
            self.remove(fd)

    def close(self) -> None:
        """Stop watching every source, notifying each through ``on_close``."""
        sources = list(self._sources.values())
        for source in sources:
            self.remove(source.fd)
        for source in sources:
            if source.callbacks.on_close is not None:
                source.callbacks.on_close(source.context)
