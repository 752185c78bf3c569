"""Logging setup: coloured console output plus a rotating log file."""

import logging
import logging.handlers
import sys
from pathlib import Path

from colorama import Fore, Style, init as colorama_init

ROOT_LOGGER = "portfolio_tracker"


class ColoredFormatter(logging.Formatter):
    """Console formatter with color-coded log levels."""

    COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        # Work on a copy so the file handler never sees escape codes
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, "")
        record.levelname = f"{color}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def setup_logging(log_dir: Path, level: str = "INFO") -> logging.Logger:
    """Attach console and file handlers to the portfolio_tracker logger."""
    colorama_init()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(ColoredFormatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(console)

    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "portfolio_tracker.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"
    ))
    logger.addHandler(file_handler)

    return logger
