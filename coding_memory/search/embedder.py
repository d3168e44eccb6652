"""
Embedding backends for the similarity stage.

Two providers: OpenAI (``openai`` SDK, the ``semantic`` extra) and a local
Ollama server (plain HTTP through ``requests``).  ``create_embedder``
returns ``None`` when no provider is configured, which turns the
similarity stage off.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import requests

from ..models import Observation

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OPENAI_DEFAULT_MODEL = "text-embedding-3-small"
OLLAMA_DEFAULT_URL = "http://localhost:11434"
MAX_RETRIES = 3
MAX_TEXT_CHARS = 8000


def observation_text(obs: Observation) -> str:
    """Format an observation into embeddable text."""
    parts = [f"Type: {obs.type}", f"Title: {obs.title}"]
    if obs.subtitle:
        parts.append(f"Subtitle: {obs.subtitle}")
    if obs.narrative:
        parts.append(f"Narrative: {obs.narrative}")
    if obs.facts:
        parts.append("Facts: " + "; ".join(obs.facts))
    if obs.concepts:
        parts.append("Concepts: " + ", ".join(obs.concepts))
    files = obs.files_read + obs.files_modified
    if files:
        parts.append("Files: " + ", ".join(files))
    return "\n".join(parts)[:MAX_TEXT_CHARS]


class Embedder(ABC):
    """Turns text into a dense vector."""

    model: str = ""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        ...


class OpenAIEmbedder(Embedder):
    """
    OpenAI Embeddings API.

    Parameters
    ----------
    api_key:
        OpenAI API key.
    model:
        Embedding model name.
    base_url:
        Optional override for OpenAI-compatible servers.
    """

    def __init__(self, api_key: str, model: str = OPENAI_DEFAULT_MODEL,
                 base_url: str = "") -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._client = None

    def _get_client(self):
        """Return an openai.OpenAI client, raising ImportError if not installed."""
        if self._client is None:
            try:
                import openai  # type: ignore
            except ImportError as exc:
                raise ImportError(
                    "openai package is required for OpenAI embeddings. "
                    "Install it with: pip install 'coding_memory[semantic]'"
                ) from exc
            if not self._api_key:
                raise EnvironmentError("OpenAI API key is not configured.")
            kwargs = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = openai.OpenAI(**kwargs)
        return self._client

    def embed(self, text: str) -> list[float]:
        client = self._get_client()
        delay = 1.0
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = client.embeddings.create(model=self.model, input=[text])
                return list(response.data[0].embedding)
            except Exception as exc:
                if attempt == MAX_RETRIES:
                    raise
                logger.warning(
                    "[OpenAIEmbedder] Attempt %d/%d failed: %s; retrying in %.0fs",
                    attempt, MAX_RETRIES, exc, delay,
                )
                time.sleep(delay)
                delay *= 2
        return []


class OllamaEmbedder(Embedder):
    """Local Ollama ``/api/embed`` endpoint."""

    def __init__(self, model: str, base_url: str = OLLAMA_DEFAULT_URL,
                 timeout: float = 30.0) -> None:
        self.model = model
        self._base_url = (base_url or OLLAMA_DEFAULT_URL).rstrip("/")
        self._timeout = timeout

    def embed(self, text: str) -> list[float]:
        url = f"{self._base_url}/api/embed"
        response = requests.post(
            url, json={"model": self.model, "input": text},
            timeout=(10, self._timeout),
        )
        response.raise_for_status()
        data = response.json()
        embeddings = data.get("embeddings") or []
        if not embeddings:
            raise ValueError(f"Ollama returned no embedding for model {self.model}")
        return list(embeddings[0])


def create_embedder(config: "Config") -> Optional[Embedder]:
    """Build the configured embedder, or ``None`` when embeddings are off."""
    provider = config.embedding_provider
    if provider == "openai":
        model = config.embedding_model
        if not model or model == "nomic-embed-text":
            model = OPENAI_DEFAULT_MODEL
        return OpenAIEmbedder(
            api_key=config.openai_api_key,
            model=model,
            base_url=config.embedding_base_url,
        )
    if provider == "ollama":
        return OllamaEmbedder(
            model=config.embedding_model,
            base_url=config.embedding_base_url or OLLAMA_DEFAULT_URL,
        )
    return None
