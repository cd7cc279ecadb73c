"""
Embedding providers.

Two backends:
- sentence-transformers: local model, no API key, the default
- openai: hosted embeddings API
"""

import logging
import os

from .base import get_registry

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Local embeddings via sentence-transformers.

    Vectors are L2-normalized so cosine distance is well-behaved.
    The model is downloaded on first use and cached by huggingface_hub.
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: str | None = None):
        from sentence_transformers import SentenceTransformer

        self.model_name = model
        logger.info("Loading embedding model %s", model)
        self._model = SentenceTransformer(model, device=device)
        self._dimension = int(self._model.get_sentence_embedding_dimension())

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self._model.encode(text, normalize_embeddings=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._model.encode(list(texts), normalize_embeddings=True).tolist()


class OpenAIEmbedding:
    """
    Embeddings via OpenAI's API.

    Requires: RECALL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    # Native output width per model; text-embedding-3-* also accept `dimensions`
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int | None = None,
    ):
        from openai import OpenAI

        key = api_key or os.environ.get("RECALL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set RECALL_OPENAI_API_KEY or OPENAI_API_KEY"
            )
        if dimensions is None and model not in self.MODEL_DIMENSIONS:
            raise ValueError(
                f"Unknown dimension for OpenAI model '{model}'; set 'dimensions' in [embedding]"
            )

        self.model_name = model
        self._requested_dimensions = dimensions
        self._dimension = dimensions or self.MODEL_DIMENSIONS[model]
        self._client = OpenAI(api_key=key)

    @property
    def dimension(self) -> int:
        return self._dimension

    def _create(self, texts: list[str]) -> list[list[float]]:
        kwargs = {"model": self.model_name, "input": texts}
        if self._requested_dimensions:
            kwargs["dimensions"] = self._requested_dimensions
        response = self._client.embeddings.create(**kwargs)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    def embed(self, text: str) -> list[float]:
        return self._create([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._create(list(texts))


# Register providers
_registry = get_registry()
_registry.register_embedding("sentence-transformers", SentenceTransformerEmbedding)
_registry.register_embedding("openai", OpenAIEmbedding)
