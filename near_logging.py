"""Logging configuration for the NEAR MCP server."""

from __future__ import annotations

import logging
import sys

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """
    Configure the root logger.

    Output goes to stderr: stdout carries the MCP stdio transport.
    Unknown level names fall back to INFO.
    """
    numeric_level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=log_format or DEFAULT_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    # retry chatter from the HTTP pool
    logging.getLogger("urllib3").setLevel(logging.WARNING)
