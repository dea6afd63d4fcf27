"""Command-line entry point for the log parser."""

import argparse
import logging
import signal
import sys
import threading

from groktail.config import load_config
from groktail.errors import ConfigError
from groktail.sink import LoggingSink
from groktail.supervisor import ParserSupervisor

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tail log files and parse lines with grok patterns")
    parser.add_argument(
        "--config", required=True,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Log lines that match no pattern",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [LOGPARSER] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    shutdown = threading.Event()

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        config = load_config(args.config)
        supervisor = ParserSupervisor(config, LoggingSink(), debug=args.debug)
        supervisor.start()
    except ConfigError as e:
        logger.error("Failed to start: %s", e)
        return 1

    logger.info("Log parser running. Press Ctrl+C to stop.")
    try:
        while not shutdown.wait(1):
            pass
    except KeyboardInterrupt:
        pass

    logger.info("Shutting down...")
    supervisor.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
