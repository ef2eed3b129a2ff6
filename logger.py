"""Logging setup for the chat relay service."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Mapping, Optional

import colorlog

LOGGER_NAME = "chat_relay"
DEFAULT_LOG_PATH = "/var/log/chat-relay/chat-relay.log"

_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def setup_logging(
    log_path: Optional[str] = None,
    level_name: Optional[str] = None,
    color: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the `chat_relay` logger.

    Writes to a rotating file (1 MB x 3) and falls back to stderr when the
    file cannot be opened. LOG_LEVEL=DISABLE turns logging off; LOG_COLOR
    controls the colored formatter.
    """
    if level_name is None:
        level_name = os.getenv("LOG_LEVEL", "INFO")
    level_name = level_name.upper().strip()
    if color is None:
        color = os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes")

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    path = log_path or DEFAULT_LOG_PATH
    try:
        handler: logging.Handler = RotatingFileHandler(
            path, maxBytes=1_048_576, backupCount=3, encoding="utf-8"
        )
        open_err: Optional[OSError] = None
    except OSError as e:
        handler, open_err = logging.StreamHandler(), e

    if color:
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s",
                log_colors=_COLORS,
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
    logger.addHandler(handler)

    if open_err is not None:
        logger.warning("Cannot open log file %r (%s); logging to stderr", path, open_err)
    return logger


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"


def describe_api_keys(api_keys: Optional[Mapping[str, str]]) -> str:
    """Render caller keys for logs: provider names with masked values."""
    if not api_keys:
        return "{}"
    inner = ", ".join(f"{k}={mask_secret(v, 3, 2)}" for k, v in sorted(api_keys.items()))
    return "{" + inner + "}"
