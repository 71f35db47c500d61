import asyncio
import logging
from typing import Any, Coroutine


class TaskSpawner:
    """
    Runs the long-lived loops of a component as named asyncio tasks.

    A Connection runs its receive loop through it and a Server its accept
    loop. The spawner holds a strong reference to every task until it ends,
    so a loop can never be garbage collected while parked on I/O. Names are
    unique among the running tasks of one spawner.

    A loop ending with an exception it did not handle is logged with its
    traceback. Cancellation is a normal way for a loop to end.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._running: dict[str, asyncio.Task[Any]] = {}
        self._logger = logging.getLogger("core.helpers.spawn")

    def __len__(self) -> int:
        return len(self._running)

    def __contains__(self, name: object) -> bool:
        return name in self._running

    def spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[Any]:
        if name in self._running:
            coro.close()
            raise RuntimeError(f"A task named {name!r} is already running")

        task = self._loop.create_task(coro, name=name)
        self._running[name] = task
        task.add_done_callback(self._reap)
        return task

    def _reap(self, task: asyncio.Task[Any]) -> None:
        name = task.get_name()
        self._running.pop(name, None)

        if task.cancelled():
            self._logger.debug(f"Task {name} cancelled")
        elif ex := task.exception():
            self._logger.error(f"Task {name} crashed: {ex}", exc_info=ex)
