"""Model registry for the chat relay."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from config import AppConfig
from providers import PROVIDER_LIST, ProviderInfo, get_api_key, get_base_url, has_credentials

log = logging.getLogger("chat_relay")

# Ceiling assigned to models found through discovery endpoints
DISCOVERED_MAX_TOKENS = 8000


@dataclass(frozen=True)
class ModelRecord:
    """One selectable model."""

    name: str
    label: str
    provider: str
    max_token_allowed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "name": self.name,
            "label": self.label,
            "provider": self.provider,
            "maxTokenAllowed": self.max_token_allowed,
        }


class ModelRegistry:
    """
    Build the list of available models for one request.

    Static models come from the provider catalogue; providers with a
    discovery endpoint are queried on every call. Nothing is cached, the
    list reflects the credentials supplied with the request.
    """

    def __init__(
        self,
        config: AppConfig,
        providers: Optional[List[ProviderInfo]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._providers = list(PROVIDER_LIST if providers is None else providers)
        self._transport = transport

    def available_providers(
        self, env: Mapping[str, str], api_keys: Optional[Mapping[str, str]] = None
    ) -> List[ProviderInfo]:
        return [p for p in self._providers if has_credentials(p, env, api_keys)]

    async def get_model_list(
        self,
        api_keys: Optional[Mapping[str, str]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> List[ModelRecord]:
        """Return static plus discovered models of every available provider."""
        env = env if env is not None else {}
        providers = self.available_providers(env, api_keys)

        out: List[ModelRecord] = []
        for p in providers:
            out.extend(
                ModelRecord(m.name, m.label, p.name, m.max_token_allowed) for m in p.static_models
            )

        dynamic = [p for p in providers if p.discovery and self._should_discover(p)]
        if dynamic:
            t0 = time.time()
            async with httpx.AsyncClient(
                timeout=self._config.discovery_timeout_s, transport=self._transport
            ) as client:
                results = await asyncio.gather(
                    *(self._discover(client, p, env, api_keys) for p in dynamic),
                    return_exceptions=True,
                )
            dt = (time.time() - t0) * 1000
            for p, found in zip(dynamic, results):
                if isinstance(found, BaseException):
                    log.warning("Model discovery failed provider=%s err=%r", p.name, found)
                    continue
                out.extend(found)
            log.debug("Model discovery providers=%d ms=%.1f", len(dynamic), dt)

        return out

    def _should_discover(self, provider: ProviderInfo) -> bool:
        if provider.requires_key:
            return True
        return self._config.discover_local_models

    async def _discover(
        self,
        client: httpx.AsyncClient,
        provider: ProviderInfo,
        env: Mapping[str, str],
        api_keys: Optional[Mapping[str, str]],
    ) -> List[ModelRecord]:
        """Query one provider's listing endpoint; failures yield no models."""
        base_url = get_base_url(provider, env)
        if not base_url:
            log.debug("Skipping discovery for %s: no base URL", provider.name)
            return []

        headers = {"User-Agent": self._config.user_agent}
        api_key = get_api_key(provider, env, api_keys)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        if provider.discovery == "ollama":
            url = f"{base_url}/api/tags"
        else:
            url = f"{base_url}{provider.chat_path}/models"

        try:
            r = await client.get(url, headers=headers)
            if r.status_code != 200:
                log.warning(
                    "Model discovery failed provider=%s status=%s body=%s",
                    provider.name,
                    r.status_code,
                    r.text[:500],
                )
                return []
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("Model discovery failed provider=%s err=%r", provider.name, e)
            return []

        key = "models" if provider.discovery == "ollama" else "data"
        items = data.get(key) if isinstance(data, dict) else None
        if not isinstance(items, list):
            log.warning(
                "Model discovery failed provider=%s: expected a list under %r", provider.name, key
            )
            return []
        if provider.discovery == "ollama":
            return [m for m in (self._parse_ollama_model(provider, it) for it in items) if m]
        return [m for m in (self._parse_openai_model(provider, it) for it in items) if m]

    @staticmethod
    def _parse_ollama_model(provider: ProviderInfo, data: Any) -> Optional[ModelRecord]:
        if not isinstance(data, dict):
            return None
        name = data.get("name") or ""
        if not name:
            return None
        details = data.get("details") or {}
        size = details.get("parameter_size") if isinstance(details, dict) else None
        label = f"{name} ({size})" if size else name
        return ModelRecord(name, label, provider.name, DISCOVERED_MAX_TOKENS)

    @staticmethod
    def _parse_openai_model(provider: ProviderInfo, data: Any) -> Optional[ModelRecord]:
        if not isinstance(data, dict):
            return None
        mid = data.get("id") or ""
        if not mid:
            return None
        return ModelRecord(mid, mid, provider.name, DISCOVERED_MAX_TOKENS)


def find_model(models: Sequence[ModelRecord], name: str) -> Optional[ModelRecord]:
    for m in models:
        if m.name == name:
            return m
    return None
