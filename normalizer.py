"""Request normalization: model/provider resolution and message flattening."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from config import AppConfig
from directives import ModelDirective, extract_properties
from messages import Content, ConversationMessage
from models import ModelRecord, ModelRegistry, find_model

log = logging.getLogger("chat_relay")


@dataclass(frozen=True)
class RoutingState:
    """Running model/provider while walking the conversation."""

    model: str
    provider: str

    def fold(self, directive: ModelDirective, known_models: Sequence[ModelRecord]) -> RoutingState:
        # Models are checked against the registry, providers are taken as-is.
        model = directive.model if find_model(known_models, directive.model) else self.model
        return RoutingState(model=model, provider=directive.provider)


@dataclass(frozen=True)
class ResolvedRequest:
    model: str
    provider: str
    max_tokens: int
    messages: List[Dict[str, str]]


def flatten_content(content: Content) -> str:
    """Join text parts with a single space; non-text parts become ''."""
    if isinstance(content, str):
        return content
    return " ".join(p.text or "" for p in content)


def resolve_max_tokens(models: Sequence[ModelRecord], model: str, default: int) -> int:
    record = find_model(models, model)
    if record is not None and record.max_token_allowed:
        return record.max_token_allowed
    return default


def route_messages(
    messages: Sequence[ConversationMessage],
    models: Sequence[ModelRecord],
    initial: RoutingState,
) -> Tuple[RoutingState, List[ConversationMessage]]:
    """Single pass over the conversation; later user turns override earlier ones."""
    state = initial
    processed: List[ConversationMessage] = []
    for message in messages:
        if message.role != "user":
            processed.append(message)
            continue
        directive, cleaned = extract_properties(message, initial.model, initial.provider)
        state = state.fold(directive, models)
        processed.append(cleaned)
    return state, processed


async def normalize_messages(
    messages: Sequence[ConversationMessage],
    *,
    registry: ModelRegistry,
    config: AppConfig,
    api_keys: Optional[Mapping[str, str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ResolvedRequest:
    """
    Resolve the effective model, provider and token ceiling for a conversation.

    Unknown model directives silently fall back to the running model
    (initially the configured default); callers that need strict validation
    must compare the resolved values themselves.
    """
    models = await registry.get_model_list(api_keys or {}, env)

    initial = RoutingState(model=config.default_model, provider=config.default_provider)
    state, processed = route_messages(messages, models, initial)

    max_tokens = resolve_max_tokens(models, state.model, config.max_tokens)
    flat = [{"role": m.role, "content": flatten_content(m.content)} for m in processed]

    log.info(
        "Resolved request model=%s provider=%s max_tokens=%d messages=%d registry=%d",
        state.model,
        state.provider,
        max_tokens,
        len(flat),
        len(models),
    )
    return ResolvedRequest(
        model=state.model,
        provider=state.provider,
        max_tokens=max_tokens,
        messages=flat,
    )
