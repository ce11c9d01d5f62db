"""
File Logger Utility

Configures logging for the report service: console plus a rotating log
file. Handlers are attached to the service logger and to the package
loggers ("agents", "orchestrator") so module loggers created with
logging.getLogger(__name__) end up in the same file.
"""

import logging
import os
import sys
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

PACKAGE_LOGGERS = ("agents", "orchestrator")


def setup_file_logger(
    service_name: str,
    log_level: str = "INFO",
    output_dir: Optional[str] = None,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    package_loggers: Iterable[str] = PACKAGE_LOGGERS
) -> logging.Logger:
    """
    Set up logging to write to both console and file.

    Args:
        service_name: Name of the service logger (e.g., "meridian")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        output_dir: Directory for log files (LOG_DIR env var, then ./logs)
        console_output: Whether to also output to console (stderr)
        max_bytes: Maximum size of each log file before rotation
        backup_count: Number of backup files to keep
        package_loggers: Additional loggers that share the same handlers

    Returns:
        Configured service logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter = logging.Formatter(
        fmt='[%(name)s] %(levelname)s: %(message)s'
    )

    output_path = Path(output_dir or os.getenv("LOG_DIR", "logs"))
    output_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = output_path / f"{service_name}_{timestamp}.log"

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)  # Capture all levels in file
    file_handler.setFormatter(detailed_formatter)

    handlers = [file_handler]
    if console_output:
        # stderr keeps stdout free for streamed job events
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    for name in (service_name, *package_loggers):
        target = logging.getLogger(name)
        target.setLevel(level)
        target.handlers.clear()
        target.propagate = False
        for handler in handlers:
            target.addHandler(handler)

    logger = logging.getLogger(service_name)
    logger.info(f"File logging initialized: {log_file}")

    return logger
