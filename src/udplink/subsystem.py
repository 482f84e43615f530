"""Process-wide network subsystem lifecycle.

Some platforms require the network stack to be started explicitly before the
first socket is created and stopped after the last one is closed. The
``NetworkSubsystem`` object tracks how many endpoints are alive and runs the
startup and teardown hooks on the 0 -> 1 and 1 -> 0 transitions.

CPython already initialises Winsock when the ``socket`` module is imported, so
the default hooks only record the transitions. Embedders that need real work
there pass their own callables.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum

from udplink.errors import SubsystemError


__all__ = ["NetworkSubsystem", "SubsystemState"]


class SubsystemState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class NetworkSubsystem:
    """Reference-counted startup and teardown of the network stack.

    Parameters
    ----------
    startup : Callable[[], None] or None
        Called on the first acquire. Raising ``OSError`` or
        ``SubsystemError`` aborts the acquire and leaves the subsystem
        inactive.
    teardown : Callable[[], None] or None
        Called when the last endpoint is released.
    logger : logging.Logger or None
        Logger instance. Defaults to ``udplink.subsystem``.

    Examples
    --------
    >>> subsystem = NetworkSubsystem()
    >>> with subsystem.reserve():
    ...     pass  # create the socket here
    >>> subsystem.count
    1
    >>> subsystem.release()
    >>> subsystem.state
    <SubsystemState.INACTIVE: 'inactive'>
    """

    _shared: NetworkSubsystem | None = None
    _shared_lock = threading.Lock()

    def __init__(
        self,
        *,
        startup: Callable[[], None] | None = None,
        teardown: Callable[[], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._startup = startup
        self._teardown = teardown
        self._logger = logger or logging.getLogger("udplink.subsystem")
        self._lock = threading.RLock()
        self._count = 0
        self._state = SubsystemState.INACTIVE

    @classmethod
    def shared(cls) -> NetworkSubsystem:
        """Return the instance used by endpoints opened without an explicit one."""
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls()
            return cls._shared

    @property
    def count(self) -> int:
        return self._count

    @property
    def state(self) -> SubsystemState:
        return self._state

    def acquire(self) -> None:
        """Start the subsystem if it is inactive.

        Does not touch the reference count: call ``commit`` once the endpoint
        has been fully created, or use ``reserve`` which does both.

        Raises
        ------
        SubsystemError
            If the startup hook fails.
        """
        with self._lock:
            if self._state is SubsystemState.ACTIVE:
                return
            if self._startup is not None:
                try:
                    self._startup()
                except (OSError, SubsystemError) as exc:
                    self._logger.error("network subsystem startup failed: %s", exc)
                    msg = f"network subsystem startup failed: {exc}"
                    raise SubsystemError(msg) from exc
            self._state = SubsystemState.ACTIVE
            self._logger.debug("network subsystem started")

    def commit(self, opened: bool) -> None:
        """Account for the outcome of an endpoint creation.

        A successful creation increments the reference count. When nothing is
        left holding the subsystem afterwards it is torn down, so a failed
        first open does not leave it running.
        """
        with self._lock:
            if opened:
                self._count += 1
            if self._count == 0:
                self._shutdown()

    def release(self) -> None:
        """Drop one reference, tearing the subsystem down at zero."""
        with self._lock:
            if self._count == 0:
                return
            self._count -= 1
            if self._count == 0:
                self._shutdown()

    @contextmanager
    def reserve(self) -> Iterator[None]:
        """Acquire around an endpoint creation and commit its outcome.

        The reference is counted only if the body completes without raising.
        """
        with self._lock:
            self.acquire()
            try:
                yield
            except BaseException:
                self.commit(False)
                raise
            self.commit(True)

    def _shutdown(self) -> None:
        if self._state is SubsystemState.INACTIVE:
            return
        self._state = SubsystemState.INACTIVE
        if self._teardown is not None:
            self._teardown()
        self._logger.debug("network subsystem stopped")
