"""
Main entry point when running the swerve_control module with python -m.
"""

import argparse
import asyncio
import logging
import sys

from .client import main, setup_logging
from .config import WS_URI

if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Swerve drivetrain controller bridged to a simulator or robot over WebSocket"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging with timestamps"
    )
    parser.add_argument(
        "--uri", default=WS_URI, help=f"WebSocket URI of the bridge (default: {WS_URI})"
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        asyncio.run(main(uri=args.uri))
    except KeyboardInterrupt:
        logging.info("\nExiting...")
        sys.exit(0)
