"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Shared fixtures available to all test modules
- Test environment setup
"""

import json
import os
import sys
from pathlib import Path

import httpx
import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Ensure test environment variables are set early enough (during test collection),
# because the app loads config at import time.
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/chat_relay_test.log")
os.environ.setdefault("LOG_COLOR", "false")
os.environ.setdefault("DISCOVER_LOCAL_MODELS", "false")

from config import AppConfig  # noqa: E402


@pytest.fixture
def test_config():
    """Create test configuration."""
    return AppConfig(
        default_model="claude-3-5-sonnet-latest",
        default_provider="Anthropic",
        max_tokens=8000,
        request_timeout_s=60.0,
        discovery_timeout_s=2.0,
        discover_local_models=False,
        http_referer="http://localhost",
        x_title="test-relay",
        system_prompt_path="",
        port=5173,
        log_level="DEBUG",
        max_request_bytes=2_000_000,
        log_path="/tmp/chat_relay_test.log",
        user_agent="test-agent",
    )


def sse_body(*chunks, done=True) -> bytes:
    """Build an OpenAI-style SSE body from chunk dicts."""
    out = []
    for c in chunks:
        out.append(f"data: {json.dumps(c)}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


def delta_chunk(content=None, finish_reason=None, usage=None) -> dict:
    delta = {} if content is None else {"content": content}
    obj = {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}
    if usage is not None:
        obj["usage"] = usage
    return obj


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler):
        self.requests = []

        def _record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def chat_transport():
    """Upstream that streams 'Hello world' for /chat/completions."""

    def handler(request):
        if request.url.path.endswith("/chat/completions"):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=sse_body(
                    delta_chunk("Hello"),
                    delta_chunk(" world"),
                    delta_chunk(
                        finish_reason="stop",
                        usage={"prompt_tokens": 12, "completion_tokens": 2},
                    ),
                ),
            )
        return httpx.Response(404, text="not found")

    return RecordingTransport(handler)
