"""
Utility functions for coredeploy runs.

Includes logging setup, async retries, error message sanitizing and
amount formatting.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.logging import RichHandler
from web3 import Web3


# Global console for pretty output
console = Console()


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for a deployment run.

    Args:
        log_file: Path to log file (None disables file logging)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("coredeploy")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False, show_path=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key in ("unit", "item", "phase", "tx_hash"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 2,
    backoff_seconds: float = 5.0,
    backoff_multiplier: float = 1.0,
    logger: Optional[logging.Logger] = None,
    label: str = "operation",
) -> Any:
    """
    Await `func()` until it succeeds or `max_attempts` attempts have failed.

    The bound is inclusive: max_attempts=2 means one try plus one retry.

    Args:
        func: Zero-argument coroutine factory
        max_attempts: Total number of attempts
        backoff_seconds: Wait before the second attempt
        backoff_multiplier: Multiplier applied to the wait after each retry
        logger: Logger for retry messages
        label: Name used in log messages

    Returns:
        Result of the successful call

    Raises:
        Exception: The last error once all attempts are exhausted
    """
    wait_time = backoff_seconds
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except Exception as e:
            if attempt == max_attempts:
                if logger:
                    logger.error(f"{label}: all {max_attempts} attempts failed: {sanitize_error_message(e)}")
                raise
            if logger:
                logger.warning(
                    f"{label}: attempt {attempt}/{max_attempts} failed: {sanitize_error_message(e)}. "
                    f"Retrying in {wait_time}s..."
                )
            await asyncio.sleep(wait_time)
            wait_time *= backoff_multiplier


def sanitize_error_message(error: BaseException, max_length: int = 500) -> str:
    """
    Flatten an error into a single log line.

    RPC errors often carry multi-line JSON payloads; whitespace is collapsed
    and long messages are truncated.
    """
    message = " ".join(str(error).split()) or error.__class__.__name__
    if len(message) > max_length:
        message = message[:max_length] + "..."
    return message


def format_units(wei: int, unit: str = "ether", symbol: str = "ETH") -> str:
    """Render a wei amount, e.g. format_units(10**18) -> '1 ETH'."""
    value = Web3.from_wei(wei, unit)
    if isinstance(value, Decimal):
        value = value.normalize()
        text = f"{value:f}"
    else:
        text = str(value)
    return f"{text} {symbol}"
