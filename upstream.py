"""Streaming text generation against OpenAI-compatible upstreams."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Mapping, Optional

import httpx

from providers import ModelHandle
from sse_handler import (
    error_part,
    extract_content_fragments,
    extract_error_message,
    extract_finish_reason,
    finish_message_part,
    finish_step_part,
    is_done_data_line,
    is_sse_activity_line,
    read_next_sse_event,
    sse_event_data_text,
    start_step_part,
    text_part,
    to_stream_finish_reason,
    to_stream_usage,
)

log = logging.getLogger("chat_relay")

DEFAULT_USER_AGENT = "chat-relay/0.3.0"


class UpstreamError(Exception):
    """Upstream answered with a non-200 status or a broken stream."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


async def read_error_snippet(
    resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
) -> str:
    """Best-effort: read small error body without risking a hang."""
    try:
        raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
    except (asyncio.TimeoutError, httpx.HTTPError):
        return ""
    return raw.decode("utf-8", errors="replace")[:limit]


class TextStream:
    """
    Live token stream from one upstream chat completion.

    Owns the upstream response (and the client when `owns_client` is set);
    both are released by `aclose()`, which every consumer below calls on
    exit, including when the consumer is cancelled.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        resp: httpx.Response,
        handle: ModelHandle,
        *,
        owns_client: bool = True,
    ) -> None:
        self._client = client
        self._resp = resp
        self._owns_client = owns_client
        self._closed = False
        self.handle = handle
        self.message_id = f"msg-{uuid.uuid4().hex}"
        self.finish_reason: Optional[str] = None
        self.usage: Dict[str, Any] = {}

    async def text_deltas(self) -> AsyncIterator[str]:
        """Yield content deltas until `[DONE]` or EOF. Raises UpstreamError on in-band errors."""
        aiter = self._resp.aiter_lines()
        try:
            while True:
                event_lines = await read_next_sse_event(aiter)
                if event_lines is None:
                    break
                if not event_lines:
                    continue
                if any(ln and not is_sse_activity_line(ln) for ln in event_lines):
                    log.warning(
                        "Non-SSE line from upstream provider=%s model=%s line=%r",
                        self.handle.provider,
                        self.handle.model,
                        event_lines[0][:200],
                    )
                    continue

                if any(is_done_data_line(ln) for ln in event_lines):
                    break
                data = sse_event_data_text(event_lines).strip()
                if not data:
                    continue

                try:
                    obj = json.loads(data)
                except json.JSONDecodeError:
                    log.debug("Skipping undecodable SSE payload: %r", data[:200])
                    continue

                err = extract_error_message(obj)
                if err:
                    raise UpstreamError(f"Upstream stream error: {err}")

                reason = extract_finish_reason(obj)
                if reason:
                    self.finish_reason = reason
                if isinstance(obj, dict) and isinstance(obj.get("usage"), dict):
                    self.usage = obj["usage"]

                for frag in extract_content_fragments(obj):
                    yield frag
        finally:
            await self.aclose()

    async def to_data_stream(self) -> AsyncGenerator[bytes, None]:
        """
        Encode the stream with the data-stream protocol.

        An upstream failure after the first byte cannot change the HTTP status
        any more, so it is reported in-band as an error part.
        """
        t0 = time.time()
        n = 0
        yield start_step_part(self.message_id)
        try:
            async for delta in self.text_deltas():
                n += len(delta)
                yield text_part(delta)
        except (UpstreamError, httpx.HTTPError) as e:
            log.warning(
                "Stream failed mid-transmission provider=%s model=%s err=%r",
                self.handle.provider,
                self.handle.model,
                e,
            )
            yield error_part("An error occurred.")
            return
        finally:
            # Client disconnects close this generator, not the inner one.
            await self.aclose()

        reason = to_stream_finish_reason(self.finish_reason)
        usage = to_stream_usage(self.usage)
        yield finish_step_part(reason, usage)
        yield finish_message_part(reason, usage)
        log.info(
            "Stream finished provider=%s model=%s chars=%d finish=%s ms=%.1f",
            self.handle.provider,
            self.handle.model,
            n,
            reason,
            (time.time() - t0) * 1000,
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(Exception):
            await self._resp.aclose()
        if self._owns_client:
            with contextlib.suppress(Exception):
                await self._client.aclose()


async def open_text_stream(
    client: httpx.AsyncClient,
    handle: ModelHandle,
    invocation: Mapping[str, Any],
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    owns_client: bool = True,
) -> TextStream:
    """
    Start a streaming chat completion and return once the upstream accepted it.

    `invocation` carries `system`, `max_tokens` and `messages`; any other
    key is copied into the request body verbatim.
    """
    extra = dict(invocation)
    system: str = extra.pop("system", "")
    max_tokens: Optional[int] = extra.pop("max_tokens", None)
    messages: List[Dict[str, str]] = list(extra.pop("messages", []))

    payload: Dict[str, Any] = {
        "messages": ([{"role": "system", "content": system}] if system else []) + messages,
        "stream": True,
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    payload.update(extra)
    payload["model"] = handle.model
    payload["stream"] = True

    t0 = time.time()
    req = client.build_request(
        "POST",
        handle.chat_url,
        headers=handle.request_headers(user_agent),
        json=payload,
    )
    resp = await client.send(req, stream=True)
    dt = (time.time() - t0) * 1000
    log.info(
        "Upstream chat provider=%s model=%s status=%s ms=%.1f",
        handle.provider,
        handle.model,
        resp.status_code,
        dt,
    )

    if resp.status_code != 200:
        snippet = await read_error_snippet(resp)
        await resp.aclose()
        log.warning(
            "Upstream chat error provider=%s model=%s status=%s body=%s",
            handle.provider,
            handle.model,
            resp.status_code,
            snippet[:500],
        )
        if resp.status_code in (401, 403):
            raise UpstreamError(
                f"Upstream rejected API key for {handle.provider} (status={resp.status_code})",
                resp.status_code,
            )
        raise UpstreamError(
            f"Upstream error {resp.status_code}: {snippet or resp.reason_phrase}",
            resp.status_code,
        )

    return TextStream(client, resp, handle, owns_client=owns_client)
