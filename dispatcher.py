"""Assemble a resolved request and hand it to the streaming engine."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from config import AppConfig
from messages import ConversationMessage
from models import ModelRegistry
from normalizer import normalize_messages
from prompts import load_system_prompt
from providers import get_model
from upstream import TextStream, open_text_stream

log = logging.getLogger("chat_relay")


def new_upstream_client(config: AppConfig) -> httpx.AsyncClient:
    """Client for one streamed completion: bounded connect, unbounded read."""
    connect_timeout = min(30.0, float(config.request_timeout_s))
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=connect_timeout, write=connect_timeout, pool=connect_timeout, read=None
        ),
    )


async def stream_text(
    messages: Sequence[ConversationMessage],
    *,
    config: AppConfig,
    registry: ModelRegistry,
    env: Mapping[str, str],
    api_keys: Optional[Mapping[str, str]] = None,
    options: Optional[Mapping[str, Any]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> TextStream:
    """
    Normalize `messages`, resolve the model and open the upstream stream.

    `options` are forwarded to the engine unchecked and override the
    assembled invocation on collisions. Errors from model resolution or the
    engine propagate to the caller.
    """
    resolved = await normalize_messages(
        messages, registry=registry, config=config, api_keys=api_keys, env=env
    )
    handle = get_model(resolved.provider, resolved.model, env, api_keys, config)

    invocation: Dict[str, Any] = {
        "system": load_system_prompt(config.system_prompt_path),
        "max_tokens": resolved.max_tokens,
        "messages": resolved.messages,
    }
    overrides = dict(options or {})
    if overrides.pop("model", None) is not None:
        log.debug("Ignoring 'model' in streaming options; routing decides the model")
    invocation.update(overrides)

    owns_client = client is None
    http = new_upstream_client(config) if client is None else client
    try:
        return await open_text_stream(
            http,
            handle,
            invocation,
            user_agent=config.user_agent,
            owns_client=owns_client,
        )
    except Exception:
        if owns_client:
            with contextlib.suppress(Exception):
                await http.aclose()
        raise
