"""Server-Sent Events parsing for upstream streams and data-stream part encoding."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

log = logging.getLogger("chat_relay")

SSEEventLines = List[str]


def sse_event_data_text(lines: SSEEventLines) -> str:
    """
    Join all `data:` lines in an SSE event into a single payload.

    The SSE format concatenates multiple data lines with '\n'.
    """
    parts: List[str] = []
    for ln in lines:
        if ln.startswith("data:"):
            parts.append(ln[len("data:"):].lstrip())
    return "\n".join(parts)


async def read_next_sse_event(aiter: AsyncIterator[str]) -> SSEEventLines | None:
    """
    Read one SSE event (blank-line delimited) from an async line iterator.

    Returns:
    - list[str]: event lines excluding the terminating blank line (may be empty for keepalive)
    - None: EOF (no more data)
    """
    lines: SSEEventLines = []
    while True:
        try:
            raw = await aiter.__anext__()  # type: ignore[attr-defined]
        except StopAsyncIteration:
            if lines:
                return lines
            return None

        line = raw.rstrip("\r\n")
        if line == "":
            return lines
        lines.append(line)


def is_sse_activity_line(line: str) -> bool:
    """
    SSE field/comment/continuation lines.
    Fields: data, event, id, retry; comments ":"; and (rare) continuation lines that start with space.
    """
    return (
        line.startswith("data:")
        or line.startswith("event:")
        or line.startswith("id:")
        or line.startswith("retry:")
        or line.startswith(":")
        or line.startswith(" ")
    )


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / "data:    [DONE]" (tolerate whitespace)
    """
    if not line.startswith("data:"):
        return False
    return line[len("data:"):].strip() == "[DONE]"


def extract_content_fragments(obj: Any) -> List[str]:
    """Extract content fragments from SSE data object."""
    out: List[str] = []
    if not isinstance(obj, dict):
        return out

    for ch in (obj.get("choices") or []):
        if not isinstance(ch, dict):
            continue
        d = ch.get("delta") or ch.get("message") or {}
        if isinstance(d, dict):
            c = d.get("content")
            if isinstance(c, str) and c:
                out.append(c)
    return out


def extract_finish_reason(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    for ch in (obj.get("choices") or []):
        if isinstance(ch, dict) and isinstance(ch.get("finish_reason"), str):
            return ch["finish_reason"]
    return None


def extract_error_message(obj: Any) -> Optional[str]:
    """Some upstreams report failures as an `error` object inside the stream."""
    if not isinstance(obj, dict):
        return None
    err = obj.get("error")
    if isinstance(err, dict):
        return str(err.get("message") or err)
    if isinstance(err, str) and err:
        return err
    return None


# Data-stream protocol: one `<code>:<json>\n` line per part.

def _part(code: str, value: Any) -> bytes:
    return f"{code}:{json.dumps(value, separators=(',', ':'))}\n".encode("utf-8")


def text_part(text: str) -> bytes:
    return _part("0", text)


def error_part(message: str) -> bytes:
    return _part("3", message)


def start_step_part(message_id: str) -> bytes:
    return _part("f", {"messageId": message_id})


def finish_step_part(finish_reason: str, usage: Dict[str, Any]) -> bytes:
    return _part("e", {"finishReason": finish_reason, "usage": usage, "isContinued": False})


def finish_message_part(finish_reason: str, usage: Dict[str, Any]) -> bytes:
    return _part("d", {"finishReason": finish_reason, "usage": usage})


def to_stream_finish_reason(upstream: Optional[str]) -> str:
    """Map OpenAI finish reasons to data-stream names."""
    if upstream is None:
        return "unknown"
    return {
        "stop": "stop",
        "length": "length",
        "content_filter": "content-filter",
        "tool_calls": "tool-calls",
        "function_call": "tool-calls",
    }.get(upstream, "other")


def to_stream_usage(usage: Any) -> Dict[str, Any]:
    if not isinstance(usage, dict):
        return {"promptTokens": None, "completionTokens": None}
    return {
        "promptTokens": usage.get("prompt_tokens"),
        "completionTokens": usage.get("completion_tokens"),
    }
