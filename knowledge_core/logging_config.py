"""
Logging configuration for processes embedding the knowledge core.

Logs to both console and rotating file in a logs/ directory. Library
modules only create named loggers; call setup_logging() once at startup.
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Union


def setup_logging(
    log_level: str = "INFO",
    log_dir: Union[str, Path] = "logs"
) -> logging.Logger:
    """
    Configure logging for the knowledge core.

    Creates both console and file handlers with detailed formatting.
    Log files are stored in <log_dir>/knowledge_core_YYYYMMDD.log with
    size-based rotation.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (created if missing)

    Returns:
        Configured logger instance
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Configure ROOT logger so all loggers in the application inherit this config
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Clear any existing handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    today = datetime.now().strftime("%Y%m%d")
    log_file = log_dir / f"knowledge_core_{today}.log"

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)  # File gets everything
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger = logging.getLogger("knowledge_core")

    logger.info("=" * 80)
    logger.info("Knowledge Core - Logging initialized")
    logger.info(f"Log file: {log_file}")
    logger.info(f"Log level: {log_level}")
    logger.info("=" * 80)

    return logger
