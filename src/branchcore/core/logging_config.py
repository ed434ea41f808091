"""
Logging setup for BranchCore.

All modules log through ``loguru.logger``. ``configure_logging`` is called
once by the CLI and the MCP server; it replaces loguru's default handler with
a single sink (stderr unless a file is given, since stdout carries MCP
traffic) and routes stdlib ``logging`` records from transformers and friends
into the same sink.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from loguru import logger

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# Third-party loggers that are chatty below WARNING
_NOISY_LOGGERS = ("transformers", "sentence_transformers", "httpx", "mcp")

_CONFIGURED = False


def configure_logging(
    level: Optional[str] = "INFO",
    json_format: Optional[bool] = None,
    *,
    sink: Optional[str] = None,
) -> None:
    """
    Install the BranchCore log sink.

    Args:
        level: Minimum level. None reads LOG_LEVEL (default INFO).
        json_format: Serialize records as JSON lines. None reads LOG_FORMAT=json.
        sink: File path to log to instead of stderr.
    """
    global _CONFIGURED

    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_format is None:
        json_format = os.environ.get("LOG_FORMAT", "").lower() == "json"

    sink_kwargs = {"level": level, "enqueue": True, "backtrace": True}
    if json_format:
        sink_kwargs.update(serialize=True, diagnose=False)
    else:
        sink_kwargs.update(format=TEXT_FORMAT, colorize=sink is None, diagnose=True)

    logger.remove()
    logger.add(sink or sys.stderr, **sink_kwargs)
    _route_stdlib_logging(level)

    _CONFIGURED = True
    logger.debug(f"Logging configured: level={level}, json={json_format}, sink={sink or 'stderr'}")


class _LoguruHandler(logging.Handler):
    """Forward stdlib records to loguru, keeping the caller's frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _route_stdlib_logging(level: str) -> None:
    logging.basicConfig(handlers=[_LoguruHandler()], level=0, force=True)
    floor = max(logging.WARNING, logging.getLevelName(level))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def is_configured() -> bool:
    return _CONFIGURED


__all__ = ["configure_logging", "is_configured", "logger"]
