"""
Inline routing directives embedded in user messages.

A user turn may start with ``[Model: <name>]\\n\\n`` and carry a
``[Provider: <name>]\\n\\n`` tag. Parsing the tags into routing hints and
removing them from the visible text are separate steps; the directive is
stripped whether or not it names a known model or provider.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from messages import ContentPart, ConversationMessage

MODEL_REGEX = re.compile(r"^\[Model: (.*?)\]\n\n")
PROVIDER_REGEX = re.compile(r"\[Provider: (.*?)\]\n\n")


@dataclass(frozen=True)
class ModelHint:
    name: str


@dataclass(frozen=True)
class ProviderHint:
    name: str


RoutingHint = Union[ModelHint, ProviderHint]


@dataclass(frozen=True)
class ModelDirective:
    """Model/provider requested by one user message (defaults filled in)."""

    model: str
    provider: str


def format_directives(model: str, provider: str) -> str:
    """Render the prefix understood by `parse_routing_hints`."""
    return f"[Model: {model}]\n\n[Provider: {provider}]\n\n"


def parse_routing_hints(text: str) -> List[RoutingHint]:
    hints: List[RoutingHint] = []
    m = MODEL_REGEX.search(text)
    if m:
        hints.append(ModelHint(m.group(1)))
    p = PROVIDER_REGEX.search(text)
    if p:
        hints.append(ProviderHint(p.group(1)))
    return hints


def strip_directives(text: str) -> str:
    """Remove the first model and the first provider directive."""
    return PROVIDER_REGEX.sub("", MODEL_REGEX.sub("", text, count=1), count=1)


def message_text(message: ConversationMessage) -> str:
    """Whole string content, or the first text part of multi-part content."""
    if isinstance(message.content, str):
        return message.content
    for part in message.content:
        if part.type == "text":
            return part.text or ""
    return ""


def resolve_hints(
    hints: List[RoutingHint], default_model: str, default_provider: str
) -> ModelDirective:
    model: Optional[str] = None
    provider: Optional[str] = None
    for h in hints:
        if isinstance(h, ModelHint):
            model = h.name
        elif isinstance(h, ProviderHint):
            provider = h.name
    return ModelDirective(
        model=default_model if model is None else model,
        provider=default_provider if provider is None else provider,
    )


def _clean_content(message: ConversationMessage) -> Union[str, Tuple[ContentPart, ...]]:
    if isinstance(message.content, str):
        return strip_directives(message.content)
    return tuple(
        replace(p, text=strip_directives(p.text)) if p.type == "text" and p.text is not None else p
        for p in message.content
    )


def extract_properties(
    message: ConversationMessage, default_model: str, default_provider: str
) -> Tuple[ModelDirective, ConversationMessage]:
    """
    Parse the routing directive of a user message and return it together
    with a copy of the message whose text parts have the tags removed.
    """
    hints = parse_routing_hints(message_text(message))
    directive = resolve_hints(hints, default_model, default_provider)
    return directive, replace(message, content=_clean_content(message))
