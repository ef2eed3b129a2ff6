"""Utility functions for the chat relay."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import mask_secret
from providers import PROVIDER_LIST

log = logging.getLogger("chat_relay")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== chat-relay startup config ===")
    log.info("DEFAULT_MODEL=%s", config.default_model)
    log.info("DEFAULT_PROVIDER=%s", config.default_provider)
    log.info("MAX_TOKENS=%s", config.max_tokens)
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("DISCOVERY_TIMEOUT_S=%s", config.discovery_timeout_s)
    log.info("DISCOVER_LOCAL_MODELS=%s", config.discover_local_models)
    log.info("SYSTEM_PROMPT_PATH=%s", config.system_prompt_path or "(built-in)")
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("USER_AGENT=%s", config.user_agent)
    for p in PROVIDER_LIST:
        if p.api_key_env:
            key = os.getenv(p.api_key_env, "")
            log.info(
                "%s_set=%s value=%s",
                p.api_key_env,
                bool(key),
                mask_secret(key),
            )
        if p.base_url_env:
            log.info("%s=%s", p.base_url_env, os.getenv(p.base_url_env, "") or "(default)")
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("===============================")
