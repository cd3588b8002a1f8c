"""mailgate — milter that scans message content with THOR Thunderstorm.

Process entry point: loads configuration, configures logging, validates the
quarantine expression and serves the milter protocol until the MTA side is
shut down (libmilter handles SIGINT/SIGTERM itself).
"""

import argparse
import asyncio
import sys
from typing import Optional

from pydantic import ValidationError

from .config import GatewayConfig, get_config
from .engine.context import build_context
from .engine.policy import PolicyError
from .utils.logging import get_logger, setup_logging

logger = get_logger("main")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="mailgate THOR Thunderstorm milter")
    parser.add_argument("--debug", action="store_true", help="Human-readable DEBUG logging to stdout")
    parser.add_argument("--env-file", default=None, help="Settings file (default: .env)")
    return parser.parse_args(argv)


def load_config(env_file: Optional[str], debug: bool) -> GatewayConfig:
    config = get_config(env_file)
    if debug:
        config = config.model_copy(update={"debug": True})
    return config


def main(argv: Optional[list[str]] = None) -> int:
    """Run the gateway. Returns the process exit code."""
    args = parse_args(argv)
    try:
        config = load_config(args.env_file, args.debug)
    except ValidationError as exc:
        setup_logging(debug=True)
        logger.error("startup_failed", reason="invalid configuration", error=str(exc))
        return 1

    setup_logging(
        debug=config.debug,
        log_file=config.log_file_path,
        log_max_bytes=config.log_max_bytes,
        log_backup_count=config.log_backup_count,
    )
    logger.info("using_config", **config.model_dump())

    try:
        context = build_context(config)
    except PolicyError as exc:
        logger.error("startup_failed", reason="invalid quarantine_expression", error=str(exc))
        return 1

    from .modules.milter_gateway import MilterGateway

    gateway = MilterGateway(context)
    try:
        asyncio.run(gateway.start())
    finally:
        context.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
