import asyncio
from time import perf_counter
from typing import Callable, Hashable, Iterable, List, Optional, Sequence

from .embedding import Embedder
from .logging_config import logger
from .storage import RetrievedChunk, VectorStore

DEFAULT_TOP_K = 4
DEFAULT_MIN_SIMILARITY = 0.1


def content_key(result: RetrievedChunk) -> Hashable:
    return result.content


def dedupe_results(
    results: Iterable[RetrievedChunk],
    key: Callable[[RetrievedChunk], Hashable] = content_key,
) -> List[RetrievedChunk]:
    """Drop repeated results, keeping the first occurrence of each key."""
    seen = set()
    unique = []
    for result in results:
        k = key(result)
        if k in seen:
            continue
        seen.add(k)
        unique.append(result)
    return unique


class Retriever:
    """
    Similarity search over stored chunk vectors.

    Retrieval is advisory: any failure is logged and turned into an empty
    result so the caller can still answer by other means.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        top_k: int = DEFAULT_TOP_K,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ):
        self.embedder = embedder
        self.store = store
        self.top_k = top_k
        self.min_similarity = min_similarity

    def find_relevant(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        bucket_id: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """
        Search for chunks similar to the query.

        Parameters:
        query (str): The query string to search for.
        top_k (int): Maximum number of results. Defaults to the configured value.
        min_similarity (float): Results at or below this score are dropped.
        bucket_id (str): Restrict the search to one bucket.

        Returns:
        List[RetrievedChunk]: Results sorted by descending similarity.
        """
        k = self.top_k if top_k is None else top_k
        threshold = self.min_similarity if min_similarity is None else min_similarity
        t = perf_counter()
        try:
            vector = self.embedder.embed(query)
            candidates = self.store.query_top_k(vector, k, threshold, bucket_id=bucket_id)
        except Exception as e:
            logger.error("Retrieval failed", query=query[:100], error=str(e))
            return []

        # the index may be approximate; enforce the contract here
        results = sorted(
            (c for c in candidates if c.similarity > threshold),
            key=lambda c: c.similarity,
            reverse=True,
        )[:k]
        logger.info(
            "Search for similar chunks",
            query=query[:100],
            results=len(results),
            time_ms=round((perf_counter() - t) * 1000, 2),
        )
        return results

    async def find_relevant_many(
        self,
        queries: Sequence[str],
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        bucket_id: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """
        Run several searches concurrently and merge them.

        Each query runs in a worker thread. A failing query contributes
        nothing; the merged list keeps the first occurrence of each chunk.
        """
        queries = [q for q in queries if q and q.strip()]
        if not queries:
            return []

        outcomes = await asyncio.gather(
            *(
                asyncio.to_thread(self.find_relevant, q, top_k, min_similarity, bucket_id)
                for q in queries
            ),
            return_exceptions=True,
        )

        merged: List[RetrievedChunk] = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Sub-query failed", query=query[:100], error=str(outcome))
                continue
            merged.extend(outcome)
        return dedupe_results(merged)

