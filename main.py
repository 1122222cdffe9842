"""Entry point for mmlogmon: watch log files and post new entries to a webhook."""

import logging
import signal
import sys
import threading

from mmlogmon.config import ConfigError, VERSION, load_config
from mmlogmon.monitor import LogMonitor


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    shutdown_event = threading.Event()
    try:
        settings = load_config(argv)
        if settings.debug:
            logging.getLogger().setLevel(logging.DEBUG)
            logger.info("Debug logging enabled")
        monitor = LogMonitor(settings, shutdown_event)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    def handle_signal(signum, frame):
        logger.info("Signal (%s) received, stopping", signal.Signals(signum).name)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info(
        "Starting mmlogmon %s: files=%d globs=%d min=%d max=%d timeout=%dms attach=%s",
        VERSION, len(settings.files), len(settings.globs),
        settings.policy.min_lines, settings.policy.max_lines,
        settings.policy.timeout_ms, settings.presentation.attach,
    )
    monitor.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
