"""Logging configuration for the citrace application.

This module provides centralized logging setup with colored output. Log
lines go to stderr because stdout carries the trace context lines that
the CI orchestrator captures.
"""

import logging
import sys

from colorama import Fore, Style, init

from citrace.config import Config

# Initialize colorama for cross-platform colored output
init(autoreset=True)

logger = logging.getLogger("citrace")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log levels."""

    COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.BLUE,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        original_format = super().format(record)
        color = self.COLORS.get(record.levelno, "")

        # Colorize just the level name
        if color:
            parts = original_format.split(" - ", 3)
            if len(parts) >= 3:
                parts[2] = f"{color}{parts[2]}{Style.RESET_ALL}"
                return " - ".join(parts)

        return original_format


def init_logger(config: Config):
    """Initialize the logger with colored stderr output and an optional log file."""
    log_level = config.log_level
    logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates
    logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
    logger.addHandler(stream_handler)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
