"""Provider catalogue and model handle resolution.

Every provider in the catalogue speaks the OpenAI-compatible
``/chat/completions`` dialect, so a resolved model is nothing more than a
base URL, a credential and the upstream model id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from config import AppConfig

log = logging.getLogger("chat_relay")


class ProviderError(Exception):
    """Base error for provider resolution failures."""


class UnknownProviderError(ProviderError):
    pass


class MissingAPIKeyError(ProviderError):
    pass


class ProviderConfigError(ProviderError):
    pass


@dataclass(frozen=True)
class StaticModel:
    name: str
    label: str
    max_token_allowed: Optional[int] = None


@dataclass(frozen=True)
class ProviderInfo:
    """Static description of an upstream provider."""

    name: str
    static_models: Tuple[StaticModel, ...] = ()
    api_key_env: str = ""
    base_url: str = ""
    base_url_env: str = ""
    requires_key: bool = True
    # "ollama" (GET /api/tags), "openai" (GET /models) or None
    discovery: Optional[str] = None
    # Appended to the base URL to reach the OpenAI-compatible API
    chat_path: str = ""
    api_key_link: str = ""


PROVIDER_LIST: List[ProviderInfo] = [
    ProviderInfo(
        name="Anthropic",
        static_models=(
            StaticModel("claude-3-5-sonnet-latest", "Claude 3.5 Sonnet (new)", 8000),
            StaticModel("claude-3-5-sonnet-20240620", "Claude 3.5 Sonnet (old)", 8000),
            StaticModel("claude-3-5-haiku-latest", "Claude 3.5 Haiku (new)", 8000),
            StaticModel("claude-3-opus-latest", "Claude 3 Opus", 8000),
            StaticModel("claude-3-haiku-20240307", "Claude 3 Haiku", 8000),
        ),
        api_key_env="ANTHROPIC_API_KEY",
        base_url="https://api.anthropic.com/v1",
        api_key_link="https://console.anthropic.com/settings/keys",
    ),
    ProviderInfo(
        name="OpenAI",
        static_models=(
            StaticModel("gpt-4o", "GPT-4o", 8000),
            StaticModel("gpt-4o-mini", "GPT-4o Mini", 8000),
            StaticModel("gpt-4-turbo", "GPT-4 Turbo", 8000),
            StaticModel("gpt-4", "GPT-4", 8000),
            StaticModel("gpt-3.5-turbo", "GPT-3.5 Turbo", 8000),
        ),
        api_key_env="OPENAI_API_KEY",
        base_url="https://api.openai.com/v1",
        api_key_link="https://platform.openai.com/api-keys",
    ),
    ProviderInfo(
        name="Groq",
        static_models=(
            StaticModel("llama-3.1-8b-instant", "Llama 3.1 8b (Groq)", 8000),
            StaticModel("llama-3.2-11b-vision-preview", "Llama 3.2 11b (Groq)", 8000),
            StaticModel("llama-3.3-70b-versatile", "Llama 3.3 70b (Groq)", 8000),
        ),
        api_key_env="GROQ_API_KEY",
        base_url="https://api.groq.com/openai/v1",
        api_key_link="https://console.groq.com/keys",
    ),
    ProviderInfo(
        name="Google",
        static_models=(
            StaticModel("gemini-1.5-flash-latest", "Gemini 1.5 Flash", 8192),
            StaticModel("gemini-2.0-flash-exp", "Gemini 2.0 Flash", 8192),
            StaticModel("gemini-1.5-pro-latest", "Gemini 1.5 Pro", 8192),
        ),
        api_key_env="GOOGLE_GENERATIVE_AI_API_KEY",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        api_key_link="https://aistudio.google.com/app/apikey",
    ),
    ProviderInfo(
        name="Mistral",
        static_models=(
            StaticModel("mistral-large-latest", "Mistral Large Latest", 8000),
            StaticModel("codestral-latest", "Codestral", 8000),
            StaticModel("open-mistral-nemo", "Mistral Nemo", 8000),
        ),
        api_key_env="MISTRAL_API_KEY",
        base_url="https://api.mistral.ai/v1",
        api_key_link="https://console.mistral.ai/api-keys/",
    ),
    ProviderInfo(
        name="Deepseek",
        static_models=(
            StaticModel("deepseek-coder", "Deepseek-Coder", 8000),
            StaticModel("deepseek-chat", "Deepseek-Chat", 8000),
        ),
        api_key_env="DEEPSEEK_API_KEY",
        base_url="https://api.deepseek.com/v1",
        api_key_link="https://platform.deepseek.com/apiKeys",
    ),
    ProviderInfo(
        name="OpenRouter",
        static_models=(
            StaticModel("anthropic/claude-3.5-sonnet", "Anthropic: Claude 3.5 Sonnet (OpenRouter)", 8000),
            StaticModel("openai/gpt-4o", "OpenAI: GPT-4o (OpenRouter)", 8000),
            StaticModel("qwen/qwen-2.5-coder-32b-instruct", "Qwen 2.5 Coder 32B (OpenRouter)", 8000),
        ),
        api_key_env="OPEN_ROUTER_API_KEY",
        base_url="https://openrouter.ai/api/v1",
        api_key_link="https://openrouter.ai/settings/keys",
    ),
    ProviderInfo(
        name="xAI",
        static_models=(StaticModel("grok-beta", "xAI Grok Beta", 8000),),
        api_key_env="XAI_API_KEY",
        base_url="https://api.x.ai/v1",
        api_key_link="https://docs.x.ai/docs/quickstart#creating-an-api-key",
    ),
    ProviderInfo(
        name="Together",
        static_models=(
            StaticModel(
                "Qwen/Qwen2.5-Coder-32B-Instruct", "Qwen/Qwen2.5-Coder-32B-Instruct", 8000
            ),
        ),
        api_key_env="TOGETHER_API_KEY",
        base_url="https://api.together.xyz/v1",
        api_key_link="https://api.together.xyz/settings/api-keys",
    ),
    ProviderInfo(
        name="Ollama",
        base_url="http://127.0.0.1:11434",
        base_url_env="OLLAMA_API_BASE_URL",
        requires_key=False,
        discovery="ollama",
        chat_path="/v1",
    ),
    ProviderInfo(
        name="LMStudio",
        base_url="http://127.0.0.1:1234",
        base_url_env="LMSTUDIO_API_BASE_URL",
        requires_key=False,
        discovery="openai",
        chat_path="/v1",
    ),
    ProviderInfo(
        name="OpenAILike",
        api_key_env="OPENAI_LIKE_API_KEY",
        base_url_env="OPENAI_LIKE_API_BASE_URL",
        discovery="openai",
    ),
]


def get_provider(name: str) -> ProviderInfo:
    """Look up a provider by name, case-insensitively."""
    key = (name or "").strip().lower()
    for p in PROVIDER_LIST:
        if p.name.lower() == key:
            return p
    raise UnknownProviderError(f"Unknown provider: {name!r}")


def get_api_key(
    provider: ProviderInfo,
    env: Mapping[str, str],
    api_keys: Optional[Mapping[str, str]] = None,
) -> str:
    """Caller-supplied key wins over the environment; returns "" when none is set."""
    for k, v in (api_keys or {}).items():
        if isinstance(k, str) and k.lower() == provider.name.lower() and isinstance(v, str) and v.strip():
            return v.strip()
    if provider.api_key_env:
        return (env.get(provider.api_key_env) or "").strip()
    return ""


def get_base_url(provider: ProviderInfo, env: Mapping[str, str]) -> str:
    if provider.base_url_env:
        v = (env.get(provider.base_url_env) or "").strip()
        if v:
            return v.rstrip("/")
    return provider.base_url.rstrip("/")


def has_credentials(
    provider: ProviderInfo,
    env: Mapping[str, str],
    api_keys: Optional[Mapping[str, str]] = None,
) -> bool:
    """A provider is usable when it needs no key or one is present."""
    if not provider.requires_key:
        return True
    return bool(get_api_key(provider, env, api_keys))


@dataclass(frozen=True)
class ModelHandle:
    """Resolved upstream target for one request."""

    provider: str
    model: str
    base_url: str
    api_key: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def request_headers(self, user_agent: str) -> Dict[str, str]:
        out = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        }
        if self.api_key:
            out["Authorization"] = f"Bearer {self.api_key}"
        out.update(self.headers)
        return out


def get_model(
    provider_name: str,
    model_name: str,
    env: Mapping[str, str],
    api_keys: Optional[Mapping[str, str]],
    config: AppConfig,
) -> ModelHandle:
    """
    Resolve a provider/model pair into a `ModelHandle`.

    Raises UnknownProviderError for names outside the catalogue,
    MissingAPIKeyError when a keyed provider has no credential and
    ProviderConfigError when a provider has no usable base URL.
    """
    provider = get_provider(provider_name)

    api_key = get_api_key(provider, env, api_keys)
    if provider.requires_key and not api_key:
        raise MissingAPIKeyError(f"Missing API key for {provider.name} provider")

    base_url = get_base_url(provider, env)
    if not base_url:
        raise ProviderConfigError(
            f"No base URL configured for {provider.name} provider "
            f"(set {provider.base_url_env or 'a base URL'})"
        )

    headers: Dict[str, str] = {}
    if provider.name == "OpenRouter":
        headers = {"HTTP-Referer": config.http_referer, "X-Title": config.x_title}

    log.debug(
        "Resolved model provider=%s model=%s base_url=%s key_set=%s",
        provider.name,
        model_name,
        base_url,
        bool(api_key),
    )
    return ModelHandle(
        provider=provider.name,
        model=model_name,
        base_url=base_url + provider.chat_path,
        api_key=api_key,
        headers=headers,
    )
