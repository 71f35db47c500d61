import logging
import threading
from typing import Any, Generic, TypeVar

L = TypeVar("L")


class ListenerRegistry(Generic[L]):
    """
    Thread-safe collection of listeners with snapshot dispatch.

    Registration and removal may happen at any time, from any thread, and
    from inside a callback being dispatched. Every dispatch iterates over a
    copy of the collection taken under the lock, and the lock is never held
    while a callback runs, so a callback may re-enter the owning component
    without deadlocking. Changes made during a dispatch are only visible to
    the next one.

    A listener raising an exception does not stop delivery to the remaining
    listeners; the failure is logged with its traceback.
    """

    def __init__(self) -> None:
        self._listeners: list[L] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger("core.helpers.registry")

    def __contains__(self, listener: object) -> bool:
        with self._lock:
            return listener in self._listeners

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add(self, listener: L) -> None:
        if listener is None:
            raise ValueError("listener must not be None")

        with self._lock:
            self._listeners.append(listener)

    def remove(self, listener: L) -> None:
        """Remove one registration of `listener`, if any."""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def snapshot(self) -> tuple[L, ...]:
        with self._lock:
            return tuple(self._listeners)

    async def dispatch(self, event: str, *args: Any) -> None:
        """
        Await `listener.<event>(*args)` for every listener registered at the
        time of the call, one after the other.
        """
        for listener in self.snapshot():
            try:
                await getattr(listener, event)(*args)
            except Exception as exc:
                self._logger.error(
                    f"Listener {listener!r} failed on '{event}': {exc}",
                    exc_info=exc
                )
