"""
Shared pytest fixtures for recall tests.

Provides a mock embedding provider to avoid loading ML models during testing.
"""

import hashlib
import math
import re
from pathlib import Path

import pytest

from recall.event_log import EventLog
from recall.types import MemoryRecord


_WORD_RE = re.compile(r"[a-z0-9]+")


class MockEmbeddingProvider:
    """
    Deterministic bag-of-words embedding provider for testing.

    Each word is hashed into one of ``dimension`` buckets and the counts are
    L2-normalized, so texts sharing words land close together under cosine
    distance. No ML model loading.
    """

    dimension = 384
    model_name = "mock-model"

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.embed_calls = 0
        self.batch_calls = 0

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimension
        words = _WORD_RE.findall(text.lower())
        for word in words:
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        if not words:
            # Never return a zero vector; cosine distance is undefined for it
            vec[0] = 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec]

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        return self._vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self._vector(t) for t in texts]


class FailingEmbeddingProvider(MockEmbeddingProvider):
    """Raises on embed_batch until ``fail`` is cleared."""

    def __init__(self, dimension: int = 384):
        super().__init__(dimension)
        self.fail = True

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            self.batch_calls += 1
            raise RuntimeError("embedding backend unavailable")
        return super().embed_batch(texts)


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def store_root(tmp_path) -> Path:
    """A store directory laid out as <workspace>/.recall."""
    root = tmp_path / "workspace" / ".recall"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def event_log(store_root) -> EventLog:
    return EventLog(store_root)


def make_record(content: str = "hello", *, type: str = "note", source: str = "test",
                workspace: str | None = "/work/proj", timestamp=None) -> MemoryRecord:
    """Build a MemoryRecord with sensible test defaults."""
    kwargs = {"type": type, "source": source, "content": content, "workspace": workspace}
    if timestamp is not None:
        kwargs["timestamp"] = timestamp
    return MemoryRecord(**kwargs)
