"""
Embedding service.

``Embedder`` wraps an embedding backend, normalizes input text and checks
that every vector has the configured dimensionality. Backend failures are
raised as ``EmbeddingServiceError``; retry policy belongs to the caller.
"""
from typing import List, Optional, Sequence

import numpy as np

from .config import Settings
from .errors import EmbeddingServiceError
from .logging_config import logger


class SentenceTransformerModel:
    """Local sentence-transformers model, loaded lazily."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        self._model = None

    def preload(self):
        """Load the model up front to avoid first-request delay."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading embedding model", model=self.model_name)

            # Explicit tokenizer settings avoid a FutureWarning
            self._model = SentenceTransformer(
                self.model_name,
                tokenizer_kwargs={'clean_up_tokenization_spaces': False}
            )

            # Warm up with a test embedding
            self._model.encode(["test"], normalize_embeddings=True, show_progress_bar=False)
            logger.info("Embedding model loaded", model=self.model_name)
        return self._model

    def encode(self, texts: List[str]) -> List[List[float]]:
        model = self.preload()
        vecs = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        if isinstance(vecs, np.ndarray):
            return vecs.tolist()
        return [list(v) for v in vecs]


class OpenAIEmbeddingModel:
    """Embeddings from an OpenAI-compatible endpoint (OpenAI or Azure OpenAI proxy)."""

    def __init__(self, model_name: str, api_key: str, base_url: Optional[str] = None,
                 dimensions: Optional[int] = None):
        from openai import OpenAI

        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set. Put it in env or .env (server-side only).")
        self.model_name = model_name
        self.dimensions = dimensions
        self._client = OpenAI(api_key=api_key, base_url=base_url or None)

    def preload(self):
        return self._client

    def encode(self, texts: List[str]) -> List[List[float]]:
        kwargs = {"model": self.model_name, "input": texts}
        # only the v3 models accept a dimensions override
        if self.dimensions and self.model_name.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        response = self._client.embeddings.create(**kwargs)
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


def normalize_text(text: str) -> str:
    return text.replace("\r\n", " ").replace("\n", " ")


class Embedder:
    def __init__(self, model, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    def preload(self):
        self.model.preload()

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts in one backend call.

        Returns:
            One vector per input, in input order

        Raises:
            EmbeddingServiceError: backend failure or malformed output
        """
        if not texts:
            return []
        inputs = [normalize_text(t) for t in texts]
        try:
            vectors = self.model.encode(inputs)
        except Exception as e:
            logger.error("Embedding request failed", count=len(inputs), error=str(e))
            raise EmbeddingServiceError(f"Embedding service failed: {e}") from e

        if len(vectors) != len(inputs):
            raise EmbeddingServiceError(
                f"Embedding service returned {len(vectors)} vectors for {len(inputs)} inputs"
            )
        result = []
        for vec in vectors:
            values = [float(v) for v in vec]
            if len(values) != self.dimensions:
                raise EmbeddingServiceError(
                    f"Embedding has {len(values)} dimensions, expected {self.dimensions}. "
                    "Rebuild all vectors after changing embedding models."
                )
            result.append(values)
        return result


def build_embedding_model(settings: Settings):
    if settings.embed_provider == "openai":
        return OpenAIEmbeddingModel(
            settings.embed_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            dimensions=settings.embed_dim,
        )
    return SentenceTransformerModel(settings.embed_model)


def build_embedder(settings: Settings) -> Embedder:
    return Embedder(build_embedding_model(settings), settings.embed_dim)
