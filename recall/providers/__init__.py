"""Embedding providers for recall."""

from .base import EmbeddingProvider, ProviderRegistry, get_registry

__all__ = ["EmbeddingProvider", "ProviderRegistry", "get_registry"]
