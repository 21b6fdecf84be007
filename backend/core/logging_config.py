"""
Loguru configuration.

- Colorized console output in development
- JSON records in staging/production
- Rotating file sink (skipped in the test environment)
- Correlation id attached to every record
"""

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from core.correlation import get_correlation_id

if TYPE_CHECKING:
    from loguru import Record

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def correlation_filter(record: "Record") -> bool:
    """
    Stamp the current correlation id onto a log record.

    Args:
        record: Loguru log record.

    Returns:
        Always True; the filter only enriches records.
    """
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True


def configure_logging(environment: str = "development", log_dir: str = "logs") -> None:
    """
    Configure Loguru sinks for the application.

    Args:
        environment: "development" for console output, "test" for console
            only, anything else for JSON output.
        log_dir: Directory for the rotating file sink.
    """
    logger.remove()

    if environment in ("development", "test"):
        logger.add(
            sys.stderr,
            format=LOG_FORMAT,
            level="DEBUG" if environment == "development" else "WARNING",
            filter=correlation_filter,
            colorize=environment == "development",
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level="INFO",
            filter=correlation_filter,
            serialize=True,
        )

    if environment == "test":
        return

    logs_path = Path(log_dir)
    logs_path.mkdir(exist_ok=True)

    logger.add(
        str(logs_path / "app.log"),
        format=LOG_FORMAT if environment == "development" else "{message}",
        level="INFO",
        filter=correlation_filter,
        rotation="10 MB",
        retention="7 days",
        serialize=(environment != "development"),
    )
