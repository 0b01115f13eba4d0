"""Structured logging setup using loguru."""
import sys
from pathlib import Path

from loguru import logger as _logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "pid={process} | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(
    log_file: str = "autotrader.log",
    level: str = "INFO",
    enable_console: bool = True,
    serialize: bool = False,
) -> None:
    """Route the sell loop's and tools' logs to a rotating file and stderr.

    Args:
        log_file: Path to log file; parent directories are created
        level: Minimum level (DEBUG shows governor sleeps)
        enable_console: Also log to stderr
        serialize: Write the file sink as JSON lines
    """
    _logger.remove()

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _logger.add(
        str(log_path),
        format=LOG_FORMAT,
        level=level,
        rotation="100 MB",
        retention="7 days",
        enqueue=True,
        serialize=serialize,
    )

    if enable_console:
        _logger.add(sys.stderr, format=LOG_FORMAT, level=level, colorize=True)


logger = _logger
