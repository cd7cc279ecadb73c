"""
Base provider protocol.

Defines the interface that embedding providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider (same model, same dimension) must be used for both
    indexing and querying, otherwise distances are meaningless. Changing the
    model means rebuilding the index.

    Example implementation:
        class SentenceTransformerEmbedding:
            def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
                from sentence_transformers import SentenceTransformer
                self.model = SentenceTransformer(model_name)

            @property
            def dimension(self) -> int:
                return self.model.get_sentence_embedding_dimension()

            def embed(self, text: str) -> list[float]:
                return self.model.encode(text).tolist()

            def embed_batch(self, texts: list[str]) -> list[list[float]]:
                return self.model.encode(texts).tolist()
    """

    @property
    def dimension(self) -> int:
        """
        The dimensionality of the embedding vectors.

        Must be constant for the life of the provider. The index is created
        with this width.
        """
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per input text, in order
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating embedding providers.

    Providers are registered by name so the store configuration (TOML) can
    select one without code changes.

    Example:
        registry = get_registry()
        provider = registry.create_embedding("sentence-transformers", {"model": "all-MiniLM-L6-v2"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load the provider modules so they can register."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import embeddings  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """
        Create an embedding provider instance.

        Raises:
            ValueError: Unknown provider name
            RuntimeError: The provider failed to initialize
        """
        self._ensure_providers_loaded()
        if name not in self._embedding_providers:
            available = ", ".join(self._embedding_providers.keys()) or "none"
            raise ValueError(
                f"Unknown embedding provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return self._embedding_providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create embedding provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create embedding provider '{name}': {e}"
            ) from e

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
