"""Embedding provider abstraction.

Supports the OpenAI, Gemini and Voyage embedding APIs over HTTP. A project
without a usable provider runs in keyword-only mode.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

import httpx
import numpy as np

from squad_memory.config import Config
from squad_memory.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    VOYAGE = "voyage"
    NONE = "none"


@dataclass(frozen=True)
class ProviderInfo:
    """Static description of an embedding backend."""

    name: str
    default_model: str
    dimensions: dict[str, int]
    env_var: str
    max_batch_size: int


PROVIDERS: dict[ProviderKind, ProviderInfo] = {
    ProviderKind.OPENAI: ProviderInfo(
        name="OpenAI",
        default_model="text-embedding-3-small",
        dimensions={"text-embedding-3-small": 1536, "text-embedding-3-large": 3072},
        env_var="OPENAI_API_KEY",
        max_batch_size=2048,
    ),
    ProviderKind.GEMINI: ProviderInfo(
        name="Gemini",
        default_model="gemini-embedding-001",
        dimensions={"gemini-embedding-001": 3072, "text-embedding-004": 768},
        env_var="GEMINI_API_KEY",
        max_batch_size=100,
    ),
    ProviderKind.VOYAGE: ProviderInfo(
        name="Voyage",
        default_model="voyage-3",
        dimensions={"voyage-3": 1024, "voyage-3-lite": 512},
        env_var="VOYAGE_API_KEY",
        max_batch_size=128,
    ),
}

# Auto-detection order when no provider is configured
AUTO_DETECT_ORDER = (ProviderKind.OPENAI, ProviderKind.GEMINI, ProviderKind.VOYAGE)


class EmbeddingProvider(ABC):
    """Converts texts into fixed-dimension vectors.

    Implementations raise ProviderUnavailable for any backend failure.
    """

    kind: ProviderKind
    model: str
    dimension: int
    max_batch_size: int = 64

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def identity(self) -> tuple[str, str, int]:
        """(provider, model, dimension) recorded alongside stored vectors."""
        return (self.kind.value, self.model, self.dimension)

    @abstractmethod
    def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Embed texts, preserving order."""

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class HttpEmbeddingProvider(EmbeddingProvider):
    """Shared batching and error handling for the HTTP backends."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        info = PROVIDERS[self.kind]
        self.model = model or info.default_model
        if self.model not in info.dimensions:
            raise ValueError(
                f"Unknown model {self.model} for provider {self.kind.value}. "
                f"Supported: {', '.join(info.dimensions)}"
            )
        self.dimension = info.dimensions[self.model]
        self.max_batch_size = info.max_batch_size
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []

        results: list[np.ndarray] = []
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                for i in range(0, len(texts), self.max_batch_size):
                    batch = texts[i : i + self.max_batch_size]
                    vectors = self._embed_batch(client, batch)
                    if len(vectors) != len(batch):
                        raise ProviderUnavailable(
                            self.name,
                            f"expected {len(batch)} embeddings, got {len(vectors)}",
                        )
                    results.extend(self._to_array(v) for v in vectors)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(self.name, "request timed out") from e
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                self.name,
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
            ) from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(self.name, str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderUnavailable(self.name, f"malformed response: {e}") from e

        return results

    def _to_array(self, values) -> np.ndarray:
        vector = np.asarray(values, dtype=np.float32)
        if vector.shape != (self.dimension,):
            raise ProviderUnavailable(
                self.name,
                f"expected dimension {self.dimension}, got {vector.shape}",
            )
        return vector

    @abstractmethod
    def _embed_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        """Embed one batch within the provider's size limit."""


class OpenAIProvider(HttpEmbeddingProvider):
    kind = ProviderKind.OPENAI
    url = "https://api.openai.com/v1/embeddings"

    def _embed_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        response = client.post(
            self.url,
            json={"input": texts, "model": self.model},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response.raise_for_status()
        data = sorted(response.json()["data"], key=lambda d: d["index"])
        return [d["embedding"] for d in data]


class VoyageProvider(HttpEmbeddingProvider):
    kind = ProviderKind.VOYAGE
    url = "https://api.voyageai.com/v1/embeddings"

    def _embed_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        response = client.post(
            self.url,
            json={"input": texts, "model": self.model},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response.raise_for_status()
        data = sorted(response.json()["data"], key=lambda d: d["index"])
        return [d["embedding"] for d in data]


class GeminiProvider(HttpEmbeddingProvider):
    kind = ProviderKind.GEMINI
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def _embed_batch(self, client: httpx.Client, texts: list[str]) -> list[list[float]]:
        requests = [
            {
                "model": f"models/{self.model}",
                "content": {"parts": [{"text": text}]},
                "taskType": "RETRIEVAL_DOCUMENT",
            }
            for text in texts
        ]
        response = client.post(
            f"{self.base_url}/{self.model}:batchEmbedContents",
            json={"requests": requests},
            headers={"x-goog-api-key": self._api_key},
        )
        response.raise_for_status()
        return [e["values"] for e in response.json()["embeddings"]]


PROVIDER_CLASSES: dict[ProviderKind, type[HttpEmbeddingProvider]] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.VOYAGE: VoyageProvider,
}


def resolve_api_key(kind: ProviderKind, env: Mapping[str, str] | None = None) -> str | None:
    """Look up the API key for a provider in the environment."""
    env = os.environ if env is None else env
    key = env.get(PROVIDERS[kind].env_var, "").strip()
    return key or None


def create_provider(
    config: Config,
    env: Mapping[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> EmbeddingProvider | None:
    """
    Select the embedding provider for a project index.

    An explicit provider setting wins; otherwise the first provider with an
    API key is used. Returns None for keyword-only mode.

    Raises:
        ValueError: For an unknown provider or model.
    """
    if config.provider is not None:
        kind = ProviderKind(config.provider)
        if kind == ProviderKind.NONE:
            return None
        api_key = resolve_api_key(kind, env)
        if api_key is None:
            logger.warning(
                "No API key for %s (set %s); running keyword-only",
                PROVIDERS[kind].name,
                PROVIDERS[kind].env_var,
            )
            return None
    else:
        for candidate in AUTO_DETECT_ORDER:
            api_key = resolve_api_key(candidate, env)
            if api_key:
                kind = candidate
                break
        else:
            logger.debug("No embedding API key found; running keyword-only")
            return None

    provider = PROVIDER_CLASSES[kind](
        api_key,
        model=config.model,
        timeout=config.embed_timeout,
        transport=transport,
    )
    logger.debug(
        "Embedding provider: %s (%s, dim=%d)", provider.name, provider.model, provider.dimension
    )
    return provider


def list_providers(env: Mapping[str, str] | None = None) -> list[dict]:
    """List supported providers with their API key status."""
    return [
        {
            "id": kind.value,
            "name": info.name,
            "default_model": info.default_model,
            "env_var": info.env_var,
            "available": resolve_api_key(kind, env) is not None,
        }
        for kind, info in PROVIDERS.items()
    ]
