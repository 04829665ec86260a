from __future__ import annotations

import logging

from .settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def fingerprint(secret: str | None) -> str:
    """Short, log-safe prefix of a bearer value."""
    if not secret:
        return "-"
    return secret[:6] + "…"


__all__ = ["LOG_FORMAT", "setup_logging", "fingerprint"]
