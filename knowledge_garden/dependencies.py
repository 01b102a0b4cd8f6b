"""
Service wiring.
Everything is built once from Settings at startup and kept on app.state;
routes receive it through Depends(get_services).
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .config import Settings
from .db import create_db_engine, create_session_factory
from .embedding import Embedder, build_embedder
from .ingestion import IngestionPipeline
from .logging_config import logger
from .models import EMBED_DIM
from .retrieval import Retriever
from .services.query_router import QueryRouter
from .services.tabular import TabularAnalyzer
from .storage import InMemoryVectorStore, PgVectorStore, VectorStore

DEFAULT_BUCKETS = [
    ("hr-docs", "HR Documents", "Policies, handbooks and HR procedures", "#344736"),
    ("reports", "Reports", "Business reports and data exports", "#3b5b7a"),
    ("marketing", "Marketing", "Campaigns, brand guidelines and market research", "#7a3b5b"),
]


@dataclass
class ServiceContainer:
    settings: Settings
    store: VectorStore
    embedder: Embedder
    retriever: Retriever
    analyzer: TabularAnalyzer
    router: QueryRouter
    ingestion: IngestionPipeline
    engine: Optional[object] = None

    @classmethod
    def from_settings(cls, settings: Settings, embedder: Optional[Embedder] = None,
                      store: Optional[VectorStore] = None) -> "ServiceContainer":
        engine = None
        if store is None:
            if settings.storage_backend == "memory":
                store = InMemoryVectorStore()
            else:
                if settings.embed_dim != EMBED_DIM:
                    raise ValueError(
                        f"EMBED_DIM {settings.embed_dim} does not match the embeddings column "
                        f"dimension {EMBED_DIM}; set EMBED_DIM before the process starts"
                    )
                engine = create_db_engine(settings.database_url)
                store = PgVectorStore(engine, create_session_factory(engine))
        if embedder is None:
            embedder = build_embedder(settings)

        retriever = Retriever(
            embedder,
            store,
            top_k=settings.retrieval_top_k,
            min_similarity=settings.retrieval_min_similarity,
        )
        analyzer = TabularAnalyzer(
            store,
            max_files=settings.sql_max_files,
            max_queries=settings.sql_max_queries_per_file,
        )
        ingestion = IngestionPipeline(
            store,
            embedder,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            batch_size=settings.embed_batch_size,
            max_upload_bytes=settings.max_upload_bytes,
            pdf_timeout=settings.pdf_timeout_seconds,
        )
        logger.info("Services configured", storage=settings.storage_backend,
                    embed_provider=settings.embed_provider, embed_model=settings.embed_model)
        return cls(
            settings=settings,
            store=store,
            embedder=embedder,
            retriever=retriever,
            analyzer=analyzer,
            router=QueryRouter(retriever, analyzer),
            ingestion=ingestion,
            engine=engine,
        )

    def seed_default_buckets(self) -> int:
        """Create the default buckets when the store has none; return how many were created."""
        if self.store.list_buckets():
            return 0
        for bucket_id, name, description, color in DEFAULT_BUCKETS:
            self.store.create_bucket(name, description=description, color=color, bucket_id=bucket_id)
        return len(DEFAULT_BUCKETS)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
