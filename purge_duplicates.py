#!/usr/bin/env python3
"""Command line entry point for purge-duplicates.

    purge-duplicates /path/to/scan                 # lists duplicates
    purge-duplicates /path/to/scan --live-run      # deletes duplicates
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, List, Optional

from duplicate_purger import (
    MODULE_VERSION,
    DuplicatePurger,
    RunConfiguration,
    get_logger,
)

PROG_NAME = "purge-duplicates"
CLI_COMPONENT = "cli"


def _log_cli_event(event: str, message: str, *, level: int = logging.INFO, **fields: Any) -> None:
    log_payload = {
        "event": event,
        "message": message,
        "component": CLI_COMPONENT,
        "version": MODULE_VERSION,
    }
    log_payload.update(fields)
    get_logger().log(level, message, extra={"log_payload": log_payload})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Find files with identical content and delete all but one copy.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"{PROG_NAME} v{MODULE_VERSION}",
    )
    parser.add_argument("directory", help="Path to directory to scan for duplicates")
    parser.add_argument(
        "--show-progress",
        action="store_true",
        help="Display progress during scanning",
    )
    parser.add_argument(
        "--live-run",
        action="store_true",
        help="Actually delete duplicates (without this, runs in dry-run mode)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = RunConfiguration(
        directory=args.directory,
        show_progress=args.show_progress,
        live_run=args.live_run,
    )

    purger = DuplicatePurger(config)
    try:
        purger.scan_and_dispose()
    except OSError as exc:
        _log_cli_event(
            "scan_failed",
            "Scan failed",
            level=logging.ERROR,
            root_dir=str(config.directory),
            exception_type=exc.__class__.__name__,
            exception_msg=str(exc),
        )
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
