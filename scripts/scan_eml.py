#!/usr/bin/env python3
"""mailgate offline scanner.

Replays a stored .eml file through the same pipeline the milter uses
(extract, scan with THOR Thunderstorm, evaluate the quarantine expression)
and prints the verdict as JSON. No mail server is involved and nothing is
quarantined.

Exit codes:
    0: clean (expression did not match)
    1: error (bad configuration, bad expression, unreadable file)
    2: the message would be quarantined

Usage:
    python scripts/scan_eml.py suspicious.eml
    python scripts/scan_eml.py suspicious.eml --env-file /etc/mailgate/.env --debug
"""

import argparse
import dataclasses
import json
import sys
from typing import Optional

from pydantic import ValidationError

from mailgate.config import get_config
from mailgate.engine.context import build_context
from mailgate.engine.policy import PolicyError
from mailgate.engine.replay import replay_message
from mailgate.utils.logging import get_logger, setup_logging

logger = get_logger("scripts.scan_eml")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Scan a stored message with mailgate")
    parser.add_argument("path", help="RFC 822 message file (.eml)")
    parser.add_argument("--env-file", default=None, help="Settings file (default: .env)")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    parser.add_argument("--mail-from", default="", help="Envelope sender to log")
    parser.add_argument("--rcpt-to", action="append", default=[], help="Envelope recipient to log")
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, log_file="")

    try:
        config = get_config(args.env_file)
        context = build_context(config)
    except (ValidationError, PolicyError) as exc:
        logger.error("startup_failed", error=str(exc))
        return 1

    try:
        with open(args.path, "rb") as fh:
            raw = fh.read()
    except OSError as exc:
        logger.error("read_failed", path=args.path, error=str(exc))
        context.close()
        return 1

    try:
        verdict = replay_message(context, raw, mail_from=args.mail_from, rcpt_to=args.rcpt_to)
    finally:
        context.close()

    print(json.dumps({"path": args.path, **dataclasses.asdict(verdict)}, indent=2))
    return 2 if verdict.should_quarantine else 0


if __name__ == "__main__":
    sys.exit(main())
