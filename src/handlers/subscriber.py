"""
Subscriber process entrypoint.

Runs one EventSubscriber until SIGINT/SIGTERM. Start more processes with
the same settings to scale out; the queue group spreads messages across
them. Only configuration errors end the process with a non-zero status.
"""

import asyncio
import signal
import sys

from config.settings import Settings
from handlers.wiring import build_processor
from services.subscriber import EventSubscriber
from utils.error_handling import ConfigurationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


async def run(settings: Settings) -> None:
    """Start the subscriber and block until a shutdown signal arrives."""
    settings.validate()
    processor = build_processor(settings)
    subscriber = EventSubscriber(processor, settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await subscriber.start()
    logger.info("Subscriber running", extra=subscriber.get_stats())
    try:
        await stop.wait()
    finally:
        await subscriber.stop()
        processor.store.dispose()
        logger.info("Subscriber stopped", extra={"stats": subscriber.stats})


def main() -> int:
    try:
        asyncio.run(run(Settings.from_environment()))
    except ConfigurationError as exc:
        logger.error("Invalid configuration", extra={"error": str(exc)})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
