from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from tcc_manager.core.logging_config import configure_logging
from tcc_manager.core.paths import LOG_FILE


LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def add_common_cli_arguments(parser: argparse.ArgumentParser, *, default_log_level: str = "warning") -> None:
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=default_log_level if default_log_level in LOG_LEVELS else "warning",
        help="Logging verbosity",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help=f"Also write logs to this file (default: none; e.g. {LOG_FILE})",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Extra key = value config file applied after the defaults",
    )


def setup_logging_from_args(args: argparse.Namespace, *, log_file: Optional[Path] = None) -> None:
    configure_logging(
        LOG_LEVELS.get(args.log_level, logging.WARNING),
        force=True,
        console=True,
        log_file=log_file or args.log_file,
    )


__all__ = ["LOG_LEVELS", "add_common_cli_arguments", "setup_logging_from_args"]
