import asyncio
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any, Generator

SHUTDOWN_SIGNALS = (
    signal.SIGINT,
    signal.SIGTERM,
)

if sys.platform == "win32":
    SHUTDOWN_SIGNALS += (signal.SIGBREAK,)


@contextlib.contextmanager
def setup_signal_handler(
    loop: asyncio.AbstractEventLoop,
) -> Generator[asyncio.Event, None, None]:
    """
    Install SIGINT/SIGTERM handlers for the lifetime of the relay server.

    Yields an event set on the first shutdown signal. Signals caught meanwhile
    are replayed with the previous handlers on exit, so an interrupted run
    still exits the way the caller expects.
    """
    stop_event = asyncio.Event()

    if threading.current_thread() is not threading.main_thread():
        yield stop_event
        return

    captured_signals: list[signal.Signals | int] = []

    def handle(sig: int, frame: FrameType | None) -> None:
        captured_signals.append(sig)
        # wakes up the selector, a plain set() would not
        loop.call_soon_threadsafe(stop_event.set)

    # Install temporary handlers
    original_handlers = {
        sig: signal.signal(sig, handle)
        for sig in SHUTDOWN_SIGNALS
    }

    try:
        yield stop_event
    finally:
        # Restore original handlers
        for sig, old in original_handlers.items():
            signal.signal(sig, old)

        # Now replay signals with the real handler
        for sig in reversed(captured_signals):
            if original_handlers[sig] is not handle:
                signal.raise_signal(sig)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s] : %(message)s',
    )


def call_in_loop(
    loop: asyncio.AbstractEventLoop,
    func: Callable[..., None],
    *args: Any,
) -> None:
    """
    Run `func(*args)` on `loop`.

    The call is immediate when made from the loop's own thread, or when the
    loop is not running; otherwise it is scheduled thread-safely and this
    function returns without waiting for it.
    """
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None

    if running is loop or loop.is_closed() or not loop.is_running():
        func(*args)
    else:
        loop.call_soon_threadsafe(func, *args)
