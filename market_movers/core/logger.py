"""Logging infrastructure setup.

Log lines go to a file under ``output/`` and to stderr; stdout
is reserved for the CLI's JSON payloads.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str = "market_movers",
    log_file: Optional[str] = "output/market_movers.log",
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Configure and return the engine logger (file + stderr).

    Idempotent: a logger that already has handlers is returned untouched.

    Args:
        name (str): The name of the logger.
        log_file (Optional[str]): Path to the log file; ``None`` logs to stderr only.
        level (int): Minimum level emitted.

    Returns:
        logging.Logger: The configured logger instance.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    logger.propagate = False
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# Shared engine logger
logger = setup_logger()
