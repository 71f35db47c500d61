import asyncio
import logging

from tcplink.bootstrap.config.loader import get_cli_args
from tcplink.bootstrap.deps import get_server
from tcplink.core.helpers.utils import setup_signal_handler, setup_logging


async def serve(stop_event: asyncio.Event) -> None:
    logger = logging.getLogger("bootstrap.boot")
    server = get_server()
    await server.start()

    stop_task = asyncio.create_task(stop_event.wait())
    closed_task = asyncio.create_task(server.wait_closed())
    await asyncio.wait(
        [stop_task, closed_task],
        return_when=asyncio.FIRST_COMPLETED
    )
    for task in (stop_task, closed_task):
        task.cancel()

    if stop_event.is_set():
        logger.info("Stop signal received, shutting down.")

    await server.shutdown()


def main() -> None:
    cli = get_cli_args()
    setup_logging(cli.log_level)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        with setup_signal_handler(loop) as stop_event:
            loop.run_until_complete(serve(stop_event))
    except KeyboardInterrupt:
        pass
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            loop.close()


if __name__ == "__main__":
    main()
