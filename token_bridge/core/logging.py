"""
Logging utilities for the FastAPI application and operational scripts.

Provides a consistent logging format and a redaction helper so token values
never reach log output in full.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def safe_token_label(value: str | None) -> str:
    """Return a loggable label: the first six characters and the length."""
    if not value:
        return "unknown"
    return f"{value[:6]}...({len(value)})"


__all__ = ["configure_logging", "safe_token_label"]
