"""
Chat relay service: multi-provider LLM chat and prompt enhancement.

Endpoints:
  POST /api/chat      stream a reply to a conversation
  POST /api/enhancer  stream an improved version of a draft prompt
  GET  /api/models    models available for the configured keys
  POST /api/models    models available for caller-supplied keys

User messages may start with "[Model: <name>]\\n\\n[Provider: <name>]\\n\\n"
to pick the model; unknown models fall back to DEFAULT_MODEL.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import load_config
from dispatcher import stream_text
from logger import describe_api_keys, setup_logging
from messages import ConversationMessage, parse_messages
from models import ModelRegistry
from prompts import build_enhancer_prompt
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate()

# Initialize logging
log = setup_logging(config.log_path, config.log_level)
dump_config(config)

model_registry = ModelRegistry(config)

STREAM_HEADERS = {
    "Content-Type": "text/plain; charset=utf-8",
    "Transfer-Encoding": "chunked",
    "X-Content-Type-Options": "nosniff",
}


async def log_available_models() -> None:
    """Log the models reachable with the keys from the environment."""
    try:
        models = await model_registry.get_model_list({}, os.environ)
    except Exception as e:
        log.exception("Failed to list models at startup: %s", e)
        return

    log.info("=== AVAILABLE MODELS ===")
    log.info("Total models=%d default=%s/%s", len(models), config.default_provider, config.default_model)
    for i, m in enumerate(models, start=1):
        log.info("%d. provider=%s name=%s max_tokens=%s", i, m.provider, m.name, m.max_token_allowed)
    log.info("========================")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup model listing runs in the background so readiness is not delayed."""
    startup_task: Optional[asyncio.Task[None]] = asyncio.create_task(
        log_available_models(),
        name="chat_relay.log_available_models",
    )

    yield

    if startup_task is not None:
        startup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await startup_task


app = FastAPI(
    title="chat-relay",
    version="0.3.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )


async def _read_json_object(request: Request) -> Dict[str, Any]:
    """Decode the request body as a JSON object, enforcing MAX_REQUEST_BYTES."""
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid Content-Length header: {cl!r}",
            )
        if n < 0:
            raise HTTPException(
                status_code=400,
                detail="Invalid Content-Length: must be non-negative",
            )
        if n > config.max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
            )

    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body: expected object")
    return body


def _api_keys(body: Dict[str, Any]) -> Dict[str, str]:
    raw = body.get("apiKeys")
    if not isinstance(raw, dict):
        return {}
    return {k: v for k, v in raw.items() if isinstance(k, str) and isinstance(v, str)}


async def _identity_transform(chunks: AsyncIterator[bytes]) -> AsyncGenerator[bytes, None]:
    """Decode and re-encode each chunk; the hook point for rewriting streamed text."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk)
        if text:
            yield text.encode("utf-8")
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail.encode("utf-8")


def _dispatch_error_response(e: Exception, req_id: str) -> Response:
    """401 for credential problems, bare 500 for everything else."""
    if "API key" in str(e):
        log.warning("Dispatch failed (credentials) req_id=%s err=%s", req_id, e)
        return Response(
            content="Invalid or missing API key",
            status_code=401,
            media_type="text/plain",
        )
    log.error("Dispatch failed req_id=%s err=%r", req_id, e, exc_info=e)
    return Response(status_code=500)


async def _relay_stream(
    messages: Sequence[ConversationMessage],
    api_keys: Dict[str, str],
    options: Optional[Dict[str, Any]],
    req_id: str,
) -> Response:
    t0 = time.time()
    try:
        result = await stream_text(
            messages,
            config=config,
            registry=model_registry,
            env=os.environ,
            api_keys=api_keys,
            options=options,
        )
    except Exception as e:
        return _dispatch_error_response(e, req_id)

    log.info("Stream established req_id=%s ms=%.1f", req_id, (time.time() - t0) * 1000)
    return StreamingResponse(
        _identity_transform(result.to_data_stream()),
        headers=STREAM_HEADERS,
    )


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/models")
async def api_models() -> Dict[str, Any]:
    """List models available with the keys from the environment."""
    models = await model_registry.get_model_list({}, os.environ)
    return {"object": "list", "data": [m.to_dict() for m in models]}


@app.post("/api/models")
async def api_models_for_keys(request: Request) -> Dict[str, Any]:
    """List models available with caller-supplied keys."""
    body = await _read_json_object(request)
    models = await model_registry.get_model_list(_api_keys(body), os.environ)
    return {"object": "list", "data": [m.to_dict() for m in models]}


@app.post("/api/chat")
async def api_chat(request: Request) -> Response:
    """Stream a completion for a conversation."""
    body = await _read_json_object(request)

    try:
        messages: List[ConversationMessage] = parse_messages(body.get("messages"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}")

    options = body.get("options")
    if options is not None and not isinstance(options, dict):
        raise HTTPException(status_code=400, detail="Invalid request: 'options' must be an object")

    req_id = _request_id(request)
    client_ip = request.client.host if request.client else "unknown"
    api_keys = _api_keys(body)
    log.info(
        "Incoming chat req_id=%s from=%s messages=%d keys=%s",
        req_id,
        client_ip,
        len(messages),
        describe_api_keys(api_keys),
    )

    return await _relay_stream(messages, api_keys, options, req_id)


@app.post("/api/enhancer")
async def api_enhancer(request: Request) -> Response:
    """Stream an enhanced version of the draft prompt in `message`."""
    body = await _read_json_object(request)

    model = body.get("model")
    provider = body.get("provider")
    provider_name = provider.get("name") if isinstance(provider, dict) else None
    message = body.get("message", "")

    if not model or not isinstance(model, str):
        raise HTTPException(status_code=400, detail="Invalid or missing model")
    if not provider_name or not isinstance(provider_name, str):
        raise HTTPException(status_code=400, detail="Invalid or missing provider")
    if not isinstance(message, str):
        raise HTTPException(status_code=400, detail="Invalid message: expected string")

    req_id = _request_id(request)
    api_keys = _api_keys(body)
    log.info(
        "Incoming enhancer req_id=%s model=%s provider=%s keys=%s",
        req_id,
        model,
        provider_name,
        describe_api_keys(api_keys),
    )

    prompt = ConversationMessage(
        role="user",
        content=build_enhancer_prompt(message, model, provider_name),
    )
    return await _relay_stream([prompt], api_keys, None, req_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
