"""Logging configuration using loguru.

Console output, an optional rotating log file, and a dedicated trade-event
record. Trade events are ordinary log calls bound with ``trade_event=True``;
only those reach the trade-event sink.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def _is_trade_event(record) -> bool:
    return bool(record["extra"].get("trade_event"))


def setup_logger(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_dir: Path = Path("logs"),
    trade_log_path: Optional[Path] = None,
    run_id: Optional[str] = None,
    serialize: bool = False,
) -> None:
    """Configure loguru logger with console, file and trade-event output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_to_file: Whether to write logs to file.
        log_dir: Directory for log files.
        trade_log_path: File receiving trade events only. None disables it.
        run_id: Optional run identifier for log filename.
        serialize: Whether to use JSON serialization for file logs.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=log_level,
        colorize=True,
    )

    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)

        filename = "orb_engine"
        if run_id:
            filename = f"{filename}_{run_id}"

        logger.add(
            log_dir / f"{filename}.log",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            level=log_level,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
            serialize=serialize,
        )

    if trade_log_path is not None:
        trade_log_path = Path(trade_log_path)
        trade_log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            trade_log_path,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}",
            level="INFO",
            filter=_is_trade_event,
            rotation="1 day",
            retention="90 days",
        )


def log_trade_event(message: str, **fields) -> None:
    """Write a trade event (entry, failure, close) to every sink.

    Args:
        message: Human-readable event line.
        **fields: Extra structured context bound to the record.
    """
    logger.bind(trade_event=True, **fields).info(message)
