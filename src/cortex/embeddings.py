"""
Pluggable embedding capability.

Providers:
- voyage, openai, venice: OpenAI-compatible POST /embeddings over HTTPS
- ollama: local GPU via Ollama, nothing leaves the machine

Embedders never raise: a failed call yields None (per item for batches)
and callers fall back to lexical scoring.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional

import requests

from .config import EmbeddingConfig

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000
CACHE_KEY_CHARS = 500


class EmbeddingCache:
    """
    In-memory LRU cache for query embeddings.

    Pattern: first 500 lowercased chars -> vector, expiring after ttl_seconds
    """

    def __init__(self, max_entries: int = 200, ttl_seconds: float = 30 * 60):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _key(text: str) -> str:
        return text[:CACHE_KEY_CHARS].lower().strip()

    def get(self, text: str) -> Optional[List[float]]:
        key = self._key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            embedding, stored_at = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return embedding

    def put(self, text: str, embedding: List[float]) -> None:
        key = self._key(text)
        with self._lock:
            self._entries[key] = (embedding, time.monotonic())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class Embedder(ABC):
    """Text -> vector capability."""

    dimensions: Optional[int] = None

    @abstractmethod
    def embed(self, text: str) -> Optional[List[float]]:
        """Embed one text; None on failure."""

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Embed many texts; result matches input length, None per failure."""
        return [self.embed(t) for t in texts]


class HTTPEmbedder(Embedder):
    """
    Embeddings from an OpenAI-compatible /embeddings endpoint.

    Request:  {"input": str | [str], "model": str}
    Response: {"data": [{"embedding": [...], "index": n}]}
    """

    PROVIDERS = {
        "voyage": ("https://api.voyageai.com/v1", "voyage-3-lite"),
        "openai": ("https://api.openai.com/v1", "text-embedding-3-small"),
        "venice": ("https://api.venice.ai/api/v1", "text-embedding-3-small"),
    }

    def __init__(self,
                 provider: str,
                 api_key: str,
                 model: Optional[str] = None,
                 dimensions: Optional[int] = None,
                 base_url: Optional[str] = None,
                 timeout: int = 30,
                 cache: Optional[EmbeddingCache] = None):
        if provider not in self.PROVIDERS:
            raise ValueError(f"Unsupported embedding provider: {provider}")

        default_url, default_model = self.PROVIDERS[provider]
        self.provider = provider
        self.model = model or default_model
        self.dimensions = dimensions
        self.base_url = (base_url or default_url).rstrip("/")
        self.timeout = timeout
        self.cache = cache

        self._session = requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json"
        })

    def _payload(self, texts) -> Dict:
        payload = {"input": texts, "model": self.model}
        if self.provider == "openai" and self.dimensions:
            payload["dimensions"] = self.dimensions
        return payload

    def _post(self, texts) -> Optional[List[Dict]]:
        try:
            response = self._session.post(
                f"{self.base_url}/embeddings",
                json=self._payload(texts),
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json().get("data") or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Embedding request to {self.provider} failed: {e}")
            return None

    def embed(self, text: str) -> Optional[List[float]]:
        """Generate embedding for text, consulting the cache first."""
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                logger.debug("Embedding cache hit")
                return cached

        data = self._post(text[:MAX_INPUT_CHARS])
        if not data:
            return None

        embedding = data[0].get("embedding")
        if embedding and self.cache is not None:
            self.cache.put(text, embedding)
        return embedding

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Generate embeddings for multiple texts in one request."""
        result: List[Optional[List[float]]] = [None] * len(texts)
        if not texts:
            return result

        data = self._post([t[:MAX_INPUT_CHARS] for t in texts])
        for position, item in enumerate(data or []):
            index = item.get("index", position)
            if 0 <= index < len(result):
                result[index] = item.get("embedding")
        return result


class OllamaEmbedder(Embedder):
    """
    Local embedding generation via Ollama

    Models:
    - nomic-embed-text (fast, good quality)
    - mxbai-embed-large (higher quality, slower)

    Default: nomic-embed-text (768 dimensions)
    """

    DEFAULT_MODEL = "nomic-embed-text"
    DEFAULT_DIM = 768

    def __init__(self, model: Optional[str] = None,
                 base_url: Optional[str] = None,
                 timeout: int = 30,
                 cache: Optional[EmbeddingCache] = None):
        self.model = model or self.DEFAULT_MODEL
        self.base_url = (base_url or "http://localhost:11434").rstrip("/")
        self.dimensions = self.DEFAULT_DIM
        self.timeout = timeout
        self.cache = cache
        self._session = requests.Session()

    def embed(self, text: str) -> Optional[List[float]]:
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached
        try:
            response = self._session.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text[:MAX_INPUT_CHARS]},
                timeout=self.timeout
            )
            response.raise_for_status()
            embedding = response.json().get("embedding")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Ollama embedding failed: {e}")
            return None

        if embedding and self.cache is not None:
            self.cache.put(text, embedding)
        return embedding or None


def create_embedder(config: EmbeddingConfig) -> Optional[Embedder]:
    """
    Build the configured embedder, or None when embeddings are disabled.

    Cloud providers need an API key; without one the capability is absent
    and retrieval runs on lexical and metadata signals only.
    """
    provider = (config.provider or "").lower()
    if not provider:
        return None

    cache = EmbeddingCache(config.cache_size, config.cache_ttl_seconds)

    if provider == "ollama":
        logger.info("Embedding system enabled (ollama)")
        return OllamaEmbedder(config.model, config.base_url, config.timeout, cache)

    if provider not in HTTPEmbedder.PROVIDERS:
        logger.warning(f"Unknown embedding provider {provider!r}; embeddings disabled")
        return None
    if not config.api_key:
        logger.warning(f"No API key for embedding provider {provider!r}; embeddings disabled")
        return None

    logger.info(f"Embedding system enabled ({provider})")
    return HTTPEmbedder(
        provider,
        config.api_key,
        model=config.model,
        dimensions=config.dimensions,
        base_url=config.base_url,
        timeout=config.timeout,
        cache=cache,
    )
