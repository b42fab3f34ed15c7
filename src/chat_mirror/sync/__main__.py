"""CLI entry point for the sync daemon.

Allows running the sync daemon as a module:
    python -m chat_mirror.sync
"""

import signal
import sys
from types import FrameType

from chat_mirror.config import load_config
from chat_mirror.logging import get_logger
from chat_mirror.sync.daemon import request_shutdown, run_sync

logger = get_logger("sync")


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    sig_name = signal.Signals(signum).name
    logger.info("Received signal %s, shutting down", sig_name)
    request_shutdown()


def main() -> None:
    """Main entry point for the sync daemon."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    config = load_config()

    try:
        run_sync(config, once="--once" in sys.argv[1:])
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        request_shutdown()

    sys.exit(0)


if __name__ == "__main__":
    main()
