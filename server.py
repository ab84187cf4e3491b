#!/usr/bin/env python3
"""Main entry point for the chat streaming server."""

import os
import sys

import uvicorn

from streamforge.api.app import create_app
from streamforge.config.settings import settings
from streamforge.exceptions import ConfigurationError
from streamforge.utils.logger import logger, setup_logging


def main():
    """Configure logging, validate settings and serve the app."""
    # Setup logging - can be configured via environment variable
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE", "logs/streamforge.log")
    log_format = os.getenv("LOG_FORMAT", "both")  # json, text, or both
    json_log_file = os.getenv("LOG_JSON_FILE", "logs/streamforge.jsonl")

    setup_logging(
        level=log_level,
        log_file=log_file if log_file else None,
        log_format=log_format,
        json_log_file=json_log_file if log_format in ("json", "both") else None,
    )

    try:
        logger.info("Starting streamforge server initialization")
        settings.validate()
        logger.info("Configuration validated successfully")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    app = create_app()
    logger.info(f"Serving on http://{settings.HOST}:{settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=log_level.lower())


if __name__ == "__main__":
    main()
