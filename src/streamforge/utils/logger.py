"""Logging configuration using loguru."""

import sys
from pathlib import Path
from loguru import logger


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    format_string: str | None = None,
    log_format: str = "both",
    json_log_file: str | Path | None = None,
) -> None:
    """
    Configure loguru logger with console, text-file and JSONL sinks.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to text log file. If None, logs only to console.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
        format_string: Custom console format string.
        log_format: "json", "text", or "both" (default: "both")
        json_log_file: Optional path to JSON log file (JSONL format).
                      If None and log_format includes JSON, uses logs/streamforge.jsonl.
    """
    # Remove every previously installed handler
    logger.remove()

    use_json = log_format in ("json", "both")
    use_text = log_format in ("text", "both")

    if not use_json and not use_text:
        use_json = True
        use_text = True

    if format_string is None:
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

    if use_text:
        logger.add(
            sys.stderr,
            format=format_string,
            level=level,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    if use_text and log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )

        logger.add(
            log_file,
            format=file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,  # Safe across worker threads
        )

    if use_json:
        json_path = Path(json_log_file) if json_log_file else Path("logs/streamforge.jsonl")
        json_path.parent.mkdir(parents=True, exist_ok=True)

        # serialize=True puts the fields bound in structured_logging under "extra"
        logger.add(
            str(json_path),
            format="{message}",
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,
            serialize=True,
        )


# Text-only console logging until the server reconfigures it
setup_logging(log_format="text")

__all__ = ["logger", "setup_logging"]
