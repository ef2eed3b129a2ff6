"""Conversation message types accepted by the relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class ContentPart:
    """One typed content segment; non-text parts keep their payload in `extra`."""

    type: str
    text: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> ContentPart:
        if not isinstance(data, dict):
            raise ValueError("content part must be an object")
        ptype = data.get("type")
        if not isinstance(ptype, str) or not ptype:
            raise ValueError("content part requires a string 'type'")
        text = data.get("text")
        if text is not None and not isinstance(text, str):
            raise ValueError("content part 'text' must be a string")
        extra = {k: v for k, v in data.items() if k not in ("type", "text")}
        return cls(type=ptype, text=text, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.text is not None:
            out["text"] = self.text
        out.update(self.extra)
        return out


Content = Union[str, Tuple[ContentPart, ...]]


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: Content
    tool_invocations: Tuple[Mapping[str, Any], ...] = ()
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> ConversationMessage:
        """Parse a JSON message object, raising ValueError when malformed."""
        if not isinstance(data, dict):
            raise ValueError("message must be an object")
        role = data.get("role")
        if role not in ROLES:
            raise ValueError(f"message 'role' must be one of {', '.join(ROLES)}")

        raw = data.get("content")
        content: Content
        if isinstance(raw, str):
            content = raw
        elif isinstance(raw, list):
            content = tuple(ContentPart.from_dict(p) for p in raw)
        else:
            raise ValueError("message 'content' must be a string or an array of parts")

        invocations = data.get("toolInvocations") or []
        if not isinstance(invocations, list):
            raise ValueError("message 'toolInvocations' must be an array")

        model = data.get("model")
        if model is not None and not isinstance(model, str):
            raise ValueError("message 'model' must be a string")

        return cls(
            role=role,
            content=content,
            tool_invocations=tuple(i for i in invocations if isinstance(i, dict)),
            model=model,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            out["content"] = self.content
        else:
            out["content"] = [p.to_dict() for p in self.content]
        if self.tool_invocations:
            out["toolInvocations"] = [dict(i) for i in self.tool_invocations]
        if self.model is not None:
            out["model"] = self.model
        return out


def parse_messages(raw: Any) -> List[ConversationMessage]:
    """Parse a JSON message array; raises ValueError naming the bad index."""
    if not isinstance(raw, list):
        raise ValueError("'messages' field must be an array")
    if not raw:
        raise ValueError("'messages' array cannot be empty")
    out: List[ConversationMessage] = []
    for i, m in enumerate(raw):
        try:
            out.append(ConversationMessage.from_dict(m))
        except ValueError as e:
            raise ValueError(f"messages[{i}]: {e}") from None
    return out
