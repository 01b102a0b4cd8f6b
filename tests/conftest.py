"""Shared test fixtures for knowledge garden testing."""

import hashlib
import math
import re
import sys
from pathlib import Path
from typing import List

import pytest

# Add parent directory to path so we can import knowledge_garden
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge_garden.config import Settings
from knowledge_garden.dependencies import ServiceContainer
from knowledge_garden.embedding import Embedder
from knowledge_garden.ingestion import IngestionPipeline
from knowledge_garden.retrieval import Retriever
from knowledge_garden.services.query_router import QueryRouter
from knowledge_garden.services.tabular import TabularAnalyzer
from knowledge_garden.storage import InMemoryVectorStore

TEST_DIM = 256

_TOKEN = re.compile(r"[a-z0-9]+")


class HashingEmbeddingModel:
    """Deterministic bag-of-words embedding: texts sharing words score high."""

    def __init__(self, dimensions: int = TEST_DIM):
        self.dimensions = dimensions
        self.calls: List[List[str]] = []

    def preload(self):
        return self

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:4], "big") % self.dimensions] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec] if norm else vec

    def encode(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]


class FailingEmbeddingModel(HashingEmbeddingModel):
    """Fails on the n-th encode call (1-based)."""

    def __init__(self, fail_on_call: int = 1, dimensions: int = TEST_DIM):
        super().__init__(dimensions)
        self.fail_on_call = fail_on_call

    def encode(self, texts):
        if len(self.calls) + 1 == self.fail_on_call:
            self.calls.append(list(texts))
            raise ConnectionError("embedding backend unavailable")
        return super().encode(texts)


@pytest.fixture
def embedding_model() -> HashingEmbeddingModel:
    return HashingEmbeddingModel()


@pytest.fixture
def embedder(embedding_model) -> Embedder:
    return Embedder(embedding_model, TEST_DIM)


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def bucket(store):
    """An empty bucket to upload into."""
    return store.create_bucket("HR Documents", description="Policies", bucket_id="hr-docs")


@pytest.fixture
def pipeline(store, embedder) -> IngestionPipeline:
    return IngestionPipeline(store, embedder, chunk_size=1000, chunk_overlap=100)


@pytest.fixture
def retriever(store, embedder) -> Retriever:
    return Retriever(embedder, store, top_k=4, min_similarity=0.1)


@pytest.fixture
def analyzer(store) -> TabularAnalyzer:
    return TabularAnalyzer(store, max_files=2, max_queries=5)


@pytest.fixture
def router(retriever, analyzer) -> QueryRouter:
    return QueryRouter(retriever, analyzer)


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_backend="memory", embed_dim=TEST_DIM)


@pytest.fixture
def services(settings, embedder, store) -> ServiceContainer:
    return ServiceContainer.from_settings(settings, embedder=embedder, store=store)


@pytest.fixture
def sample_policy_text() -> str:
    """Prose document about leave policy."""
    return """Vacation Policy

Employees accrue vacation days every month. Full-time staff receive twenty
vacation days per year, and unused vacation days roll over up to a limit of
five days.

Sick Leave

Sick leave is separate from vacation. Employees should notify their manager
before the start of the working day when taking sick leave.
"""


@pytest.fixture
def sample_travel_text() -> str:
    """Unrelated prose document."""
    return """Travel Expenses

Flights must be booked through the corporate travel portal. Hotel receipts
are required for reimbursement, and meals are covered up to a daily allowance.
"""


@pytest.fixture
def sample_csv_bytes() -> bytes:
    """Small CSV with exactly one fully duplicated row."""
    return (
        b"name,email,age\n"
        b"Alice,alice@example.com,30\n"
        b"Bob,bob@example.com,25\n"
        b"Alice,alice@example.com,30\n"
        b"Carol,carol@example.com,41\n"
    )


def make_csv(rows: int, columns=("id", "name", "score")) -> bytes:
    lines = [",".join(columns)]
    for i in range(rows):
        lines.append(f"{i},name_{i},{i % 97}")
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def csv_factory():
    """Build CSV bytes with a given number of data rows."""
    return make_csv
