#!/usr/bin/env python3
"""Entry point for the PolyCopy copy-trading engine."""

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

# Load environment variables before importing settings
load_dotenv()

from config import settings
from services.engine import CopyEngine


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colored levels and components."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    COMPONENT_COLORS = {
        'activity_monitor': '\033[94m',    # Blue
        'executor': '\033[95m',            # Magenta
        'settlement_monitor': '\033[96m',  # Cyan
        'redemption_scanner': '\033[93m',  # Light yellow
    }

    def format(self, record):
        # Add color based on log level
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"

        # Color the component name if present
        name = record.name.lower()
        for component, color in self.COMPONENT_COLORS.items():
            if component in name:
                record.name = f"{color}{record.name}{self.RESET}"
                break

        return super().format(record)


def setup_logging():
    """Setup logging for the engine."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(
        fmt="%(asctime)s │ %(name)-30s │ %(levelname)-8s │ %(message)s",
        datefmt="%H:%M:%S"
    ))

    # Configure root logger
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # Reduce noise from httpx/httpcore/apscheduler
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


async def main():
    """Initialize and run the engine until interrupted."""
    logger.info("Starting PolyCopy...")

    engine = await CopyEngine.create()
    await engine.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    logger.info("Engine is running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await engine.stop()


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")
    except Exception as e:
        logger.error(f"Engine crashed: {e}")
        raise
