"""
Worker process: ``python -m silencecut.worker``.

Pulls jobs from the shared queue until SIGTERM/SIGINT, then lets in-flight
jobs finish within the configured grace period.
"""
import asyncio
import logging
import signal

from silencecut.config import get_settings
from silencecut.container import build_container, configure_logging

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    container = build_container(settings)
    await container.start()
    consumer = container.build_consumer()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, consumer.stop)

    logger.info("Video processing worker started (scratch=%s)", settings.scratch_dir)
    try:
        await consumer.run()
    finally:
        await container.close()


def main() -> None:
    configure_logging(get_settings().log_level)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
