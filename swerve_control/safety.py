"""Emergency stop plumbing.

Any subsystem that can bring itself to a safe state implements ``Stoppable``.
A ``StopRegistry`` collects the handles so one call stops everything, e.g.
from a held stop button or a shutdown signal.
"""

import logging
import threading
from typing import List, Protocol, runtime_checkable


@runtime_checkable
class Stoppable(Protocol):
    """Capability to drop all actuator output immediately.

    ``stop`` must be safe to call from any thread at any time.
    """

    def stop(self) -> None:
        ...


class StopRegistry:
    """Set of subsystems to stop together."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: List[Stoppable] = []

    def register(self, handle: Stoppable) -> Stoppable:
        """Add a subsystem. Registering the same handle twice has no effect.

        Returns:
            The handle, so construction and registration can be chained
        """
        if not isinstance(handle, Stoppable):
            raise TypeError(f"{handle!r} does not implement stop()")
        with self._lock:
            if not any(existing is handle for existing in self._handles):
                self._handles.append(handle)
        return handle

    def unregister(self, handle: Stoppable) -> None:
        with self._lock:
            self._handles = [existing for existing in self._handles if existing is not handle]

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def stop_all(self) -> int:
        """Stop every registered subsystem.

        A subsystem whose stop raises is logged and skipped; the others are
        still stopped.

        Returns:
            Number of subsystems whose stop failed
        """
        with self._lock:
            handles = list(self._handles)

        failures = 0
        for handle in handles:
            try:
                handle.stop()
            except Exception as e:
                failures += 1
                logging.error(f"Failed to stop {handle!r}: {e}", exc_info=True)
        return failures
