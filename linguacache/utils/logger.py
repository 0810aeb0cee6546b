"""Logging utilities."""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as loguru_logger

LOGURU_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # find the caller outside the logging module so loguru reports the right location
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logger(
    name: str = "linguacache",
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_loguru: bool = True
):
    """
    Set up logging for the package.

    Modules log through ``logging.getLogger(__name__)``. With loguru
    enabled those records are routed into loguru sinks.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        use_loguru: Route records through loguru

    Returns:
        Configured logger
    """
    level = level.upper()

    if use_loguru:
        loguru_logger.remove()
        loguru_logger.add(sys.stderr, level=level, format=LOGURU_FORMAT)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            loguru_logger.add(
                log_file,
                level=level,
                rotation="10 MB",
                retention="1 week"
            )

        package_logger = logging.getLogger(name)
        package_logger.handlers = [InterceptHandler()]
        package_logger.setLevel(getattr(logging, level))
        package_logger.propagate = False
        return loguru_logger

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, level))
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
