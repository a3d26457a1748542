"""Logging configuration module"""

import sys
from pathlib import Path
from loguru import logger
from src.utils.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(log_dir: Path = None) -> None:
    """Configure console and rotating file sinks"""
    logger.remove()

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=settings.log_level,
        colorize=True
    )

    log_dir = Path(log_dir or Path(settings.project_root) / "logs")
    try:
        log_dir.mkdir(exist_ok=True, parents=True)

        # Probe write access before registering file sinks
        probe = log_dir / ".test_write"
        probe.touch()
        probe.unlink()
    except OSError as e:
        logger.warning(f"Cannot write to log directory {log_dir}: {e}")
        logger.warning("File logging disabled, using console only")
        return

    # Full run trace, one file per day
    logger.add(
        log_dir / "store_basket_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="10 days",
        level="DEBUG",
        format=FILE_FORMAT
    )

    logger.add(
        log_dir / "errors_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="30 days",
        level="ERROR",
        format=FILE_FORMAT
    )

    logger.debug(f"Logging initialized. Log files in: {log_dir}")


setup_logging()

# Export configured logger
__all__ = ["logger", "setup_logging"]
