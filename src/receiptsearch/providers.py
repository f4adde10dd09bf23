"""
Embedding provider adapter.

Providers are tried in order; the first one that returns a vector of the
configured dimension wins. Unconfigured providers are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from receiptsearch.config import Settings
from receiptsearch.errors import InvalidContent, ProviderRequestFailed, ProviderUnavailable
from receiptsearch.utils import truncate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    url: str
    api_key: str = ""
    model: str = "text-embedding-3-small"
    require_api_key: bool = True


@dataclass(frozen=True)
class Embedding:
    vector: list[float]
    provider: str
    model: str


class ProviderError(Exception):
    """A single provider failed; the adapter moves on to the next one."""


class EmbeddingProvider:
    """Base class for one embedding backend."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def model(self) -> str:
        return self.config.model

    def is_available(self) -> bool:
        if not self.config.url:
            return False
        if self.config.require_api_key and not self.config.api_key:
            return False
        return True

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _payload(self, text: str, dimension: int) -> dict[str, Any]:
        raise NotImplementedError

    def _parse(self, data: Any) -> list[float]:
        raise NotImplementedError

    def embed(self, client: httpx.Client, text: str, dimension: int) -> list[float]:
        try:
            response = client.post(
                self.config.url,
                json=self._payload(text, dimension),
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} request error: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderError(f"{self.name} API error: {response.status_code}")

        try:
            vector = self._parse(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.name} returned a malformed response") from exc

        if len(vector) != dimension:
            raise ProviderError(
                f"{self.name} returned {len(vector)} dimensions, expected {dimension}"
            )
        return vector


def _as_floats(values: Any) -> list[float]:
    if not isinstance(values, list):
        raise TypeError("embedding must be a list")
    return [float(v) for v in values]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible `/embeddings` endpoint with a requested dimension."""

    def _payload(self, text: str, dimension: int) -> dict[str, Any]:
        return {"model": self.config.model, "input": text, "dimensions": dimension}

    def _parse(self, data: Any) -> list[float]:
        return _as_floats(data["data"][0]["embedding"])


class HTTPEmbeddingProvider(EmbeddingProvider):
    """Generic embed function: POST {input, model} returning {embedding}."""

    def _payload(self, text: str, dimension: int) -> dict[str, Any]:
        return {"input": text, "model": self.config.model}

    def _parse(self, data: Any) -> list[float]:
        return _as_floats(data["embedding"])


class EmbeddingAdapter:
    """Ordered failover across embedding providers. Holds no per-call state."""

    def __init__(
        self,
        providers: Sequence[EmbeddingProvider],
        dimension: int = 384,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.providers = list(providers)
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    @property
    def configured(self) -> bool:
        return any(provider.is_available() for provider in self.providers)

    def embed(self, text: str) -> Embedding:
        """
        Return a vector for `text` from the first provider that succeeds.

        Raises InvalidContent for blank input, ProviderUnavailable when no
        provider is configured and ProviderRequestFailed when all of them fail.
        """
        if not text or not text.strip():
            raise InvalidContent("Content is empty")

        available = [provider for provider in self.providers if provider.is_available()]
        if not available:
            raise ProviderUnavailable("No embedding provider is configured")

        client = self._client
        failures: list[str] = []
        for provider in available:
            try:
                vector = provider.embed(client, text, self.dimension)
            except ProviderError as exc:
                logger.warning("Embedding provider %s failed: %s", provider.name, exc)
                failures.append(str(exc))
                continue
            logger.debug(
                "Embedding generated by %s for content %r",
                provider.name,
                truncate(text),
            )
            return Embedding(vector=vector, provider=provider.name, model=provider.model)

        raise ProviderRequestFailed(
            f"All embedding providers failed: {'; '.join(failures)}",
            failures=failures,
        )

    def close(self) -> None:
        self._client.close()


def build_adapter_from_settings(
    config: Settings,
    client: Optional[httpx.Client] = None,
) -> EmbeddingAdapter:
    providers: list[EmbeddingProvider] = [
        OpenAIEmbeddingProvider(
            ProviderConfig(
                name="openai",
                url=f"{config.openai_base_url.rstrip('/')}/embeddings",
                api_key=config.openai_api_key.get_secret_value(),
                model=config.openai_embedding_model,
            )
        ),
        HTTPEmbeddingProvider(
            ProviderConfig(
                name="fallback",
                url=config.fallback_embedding_url,
                api_key=config.fallback_embedding_api_key.get_secret_value(),
                model=config.fallback_embedding_model,
                require_api_key=False,
            )
        ),
    ]
    return EmbeddingAdapter(
        providers,
        dimension=config.embedding_dimension,
        timeout_seconds=config.provider_timeout_seconds,
        client=client,
    )
