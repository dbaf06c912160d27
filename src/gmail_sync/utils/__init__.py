"""Utility functions for the Gmail sync engine."""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TypeVar

import structlog

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size`` elements.

    Examples:
        >>> chunked([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url encoding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for console output at ``log_level``."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
