"""
Storage for buckets, chunk resources and their embeddings.

``PgVectorStore`` is the production backend (PostgreSQL + pgvector).
``InMemoryVectorStore`` keeps everything in process and ranks with numpy;
it backs local development and the test suite.

Deletes cascade explicitly (bucket -> resources -> embeddings) instead of
relying on database constraints alone.
"""
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Set

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy import text as sa_text

from .logging_config import logger
from .models import Bucket, Embedding, Resource

DEFAULT_BUCKET_COLOR = "#344736"


def new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BucketRecord:
    id: str
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_BUCKET_COLOR
    created_at: datetime = field(default_factory=_now)
    document_count: int = 0


@dataclass
class ResourceRecord:
    id: str
    bucket_id: str
    file_name: str
    file_type: str
    file_size: int
    content: str
    chunk_index: int
    total_chunks: int
    description: str = ""
    uploaded_by: str = ""
    brand: str = ""
    created_at: datetime = field(default_factory=_now)


@dataclass
class EmbeddingRecord:
    id: str
    resource_id: str
    content: str
    embedding: List[float]


@dataclass
class DocumentSummary:
    bucket_id: str
    file_name: str
    file_type: str
    file_size: int
    total_chunks: int
    uploaded_at: datetime


@dataclass(frozen=True)
class Provenance:
    resource_id: str
    bucket_id: str
    file_name: str
    file_type: str
    chunk_index: int
    total_chunks: int


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    similarity: float
    provenance: Provenance

    def to_dict(self) -> Dict:
        return {
            "content": self.content,
            "similarity": round(float(self.similarity), 4),
            "file_name": self.provenance.file_name,
            "file_type": self.provenance.file_type,
            "bucket_id": self.provenance.bucket_id,
            "resource_id": self.provenance.resource_id,
            "chunk_index": self.provenance.chunk_index,
            "total_chunks": self.provenance.total_chunks,
        }


@dataclass
class BucketDeletion:
    bucket: BucketRecord
    deleted_resources: int
    deleted_embeddings: int


class VectorStore:
    """Storage operations the ingestion, retrieval and analysis code relies on."""

    def transaction(self):
        """Context manager grouping one document's writes: all of them commit or none do."""
        raise NotImplementedError

    def delete_resources_by_document(self, bucket_id: str, file_name: str) -> List[str]:
        with self.transaction() as tx:
            return tx.delete_document(bucket_id, file_name)

    def delete_embeddings_by_resource_ids(self, resource_ids: Sequence[str]) -> int:
        raise NotImplementedError

    def query_top_k(
        self,
        vector: Sequence[float],
        k: int,
        min_score: float,
        bucket_id: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        raise NotImplementedError

    def list_resources_by_bucket(self, bucket_id: str) -> List[ResourceRecord]:
        raise NotImplementedError

    def list_documents(self, bucket_id: str) -> List[DocumentSummary]:
        raise NotImplementedError

    def create_bucket(self, name: str, description: Optional[str] = None,
                      color: Optional[str] = None, bucket_id: Optional[str] = None) -> BucketRecord:
        raise NotImplementedError

    def get_bucket(self, bucket_id: str) -> Optional[BucketRecord]:
        raise NotImplementedError

    def list_buckets(self) -> List[BucketRecord]:
        raise NotImplementedError

    def delete_bucket(self, bucket_id: str) -> Optional[BucketDeletion]:
        raise NotImplementedError


class StoreTransaction:
    def insert_resource(self, record: ResourceRecord) -> None:
        raise NotImplementedError

    def insert_embedding(self, record: EmbeddingRecord) -> None:
        raise NotImplementedError

    def delete_document(self, bucket_id: str, file_name: str) -> List[str]:
        """Delete every resource (and its embedding) of one document; return the resource ids."""
        raise NotImplementedError


def _summarize_documents(bucket_id: str, resources: Sequence[ResourceRecord]) -> List[DocumentSummary]:
    docs: Dict[str, DocumentSummary] = {}
    for r in resources:
        doc = docs.get(r.file_name)
        if doc is None:
            docs[r.file_name] = DocumentSummary(
                bucket_id=bucket_id,
                file_name=r.file_name,
                file_type=r.file_type,
                file_size=r.file_size,
                total_chunks=r.total_chunks,
                uploaded_at=r.created_at,
            )
        else:
            doc.total_chunks = max(doc.total_chunks, r.total_chunks)
            doc.uploaded_at = min(doc.uploaded_at, r.created_at)
    return sorted(docs.values(), key=lambda d: d.uploaded_at, reverse=True)


# ==================== PostgreSQL / pgvector ====================

class _PgTransaction(StoreTransaction):
    def __init__(self, db):
        self.db = db

    def insert_resource(self, record: ResourceRecord) -> None:
        self.db.add(Resource(
            id=record.id,
            bucket_id=record.bucket_id,
            file_name=record.file_name,
            file_type=record.file_type,
            file_size=record.file_size,
            content=record.content,
            chunk_index=record.chunk_index,
            total_chunks=record.total_chunks,
            description=record.description,
            uploaded_by=record.uploaded_by,
            brand=record.brand,
        ))
        # resource row must exist before its embedding references it
        self.db.flush()

    def insert_embedding(self, record: EmbeddingRecord) -> None:
        self.db.add(Embedding(
            id=record.id,
            resource_id=record.resource_id,
            content=record.content,
            embedding=record.embedding,
        ))

    def delete_document(self, bucket_id: str, file_name: str) -> List[str]:
        ids = list(self.db.execute(
            select(Resource.id).where(Resource.bucket_id == bucket_id, Resource.file_name == file_name)
        ).scalars())
        if ids:
            self.db.execute(delete(Embedding).where(Embedding.resource_id.in_(ids)))
            self.db.execute(delete(Resource).where(Resource.id.in_(ids)))
        return ids


class PgVectorStore(VectorStore):
    def __init__(self, engine, session_factory):
        self.engine = engine
        self.session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self.session_factory() as db, db.begin():
            yield _PgTransaction(db)

    def delete_embeddings_by_resource_ids(self, resource_ids: Sequence[str]) -> int:
        if not resource_ids:
            return 0
        with self.session_factory() as db, db.begin():
            result = db.execute(delete(Embedding).where(Embedding.resource_id.in_(list(resource_ids))))
            return result.rowcount or 0

    def query_top_k(self, vector, k, min_score, bucket_id=None) -> List[RetrievedChunk]:
        bucket_clause = "AND r.bucket_id = :bucket_id" if bucket_id else ""
        params = {"qv": str([float(v) for v in vector]), "k": k, "min_score": min_score}
        if bucket_id:
            params["bucket_id"] = bucket_id

        with self.engine.begin() as conn:
            rows = conn.execute(
                sa_text(f"""
                    SELECT
                        e.content,
                        r.id AS resource_id,
                        r.bucket_id,
                        r.file_name,
                        r.file_type,
                        r.chunk_index,
                        r.total_chunks,
                        1 - (e.embedding <=> CAST(:qv AS vector)) AS similarity
                    FROM embeddings e
                    JOIN resources r ON r.id = e.resource_id
                    WHERE 1 - (e.embedding <=> CAST(:qv AS vector)) > :min_score
                    {bucket_clause}
                    ORDER BY e.embedding <=> CAST(:qv AS vector)
                    LIMIT :k
                """),
                params,
            ).mappings().all()

        return [
            RetrievedChunk(
                content=row["content"],
                similarity=float(row["similarity"]),
                provenance=Provenance(
                    resource_id=row["resource_id"],
                    bucket_id=row["bucket_id"],
                    file_name=row["file_name"],
                    file_type=row["file_type"],
                    chunk_index=row["chunk_index"],
                    total_chunks=row["total_chunks"],
                ),
            )
            for row in rows
        ]

    def list_resources_by_bucket(self, bucket_id: str) -> List[ResourceRecord]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Resource)
                .where(Resource.bucket_id == bucket_id)
                .order_by(Resource.created_at, Resource.file_name, Resource.chunk_index)
            ).scalars().all()
        return [
            ResourceRecord(
                id=r.id,
                bucket_id=r.bucket_id,
                file_name=r.file_name,
                file_type=r.file_type,
                file_size=r.file_size or 0,
                content=r.content,
                chunk_index=r.chunk_index,
                total_chunks=r.total_chunks,
                description=r.description or "",
                uploaded_by=r.uploaded_by or "",
                brand=r.brand or "",
                created_at=r.created_at,
            )
            for r in rows
        ]

    def list_documents(self, bucket_id: str) -> List[DocumentSummary]:
        with self.engine.begin() as conn:
            rows = conn.execute(sa_text("""
                SELECT file_name,
                       MAX(file_type) AS file_type,
                       MAX(file_size) AS file_size,
                       MAX(total_chunks) AS total_chunks,
                       MIN(created_at) AS uploaded_at
                FROM resources
                WHERE bucket_id = :bucket_id
                GROUP BY file_name
                ORDER BY MIN(created_at) DESC
            """), {"bucket_id": bucket_id}).mappings().all()
        return [
            DocumentSummary(
                bucket_id=bucket_id,
                file_name=r["file_name"],
                file_type=r["file_type"],
                file_size=r["file_size"] or 0,
                total_chunks=r["total_chunks"],
                uploaded_at=r["uploaded_at"],
            )
            for r in rows
        ]

    def create_bucket(self, name, description=None, color=None, bucket_id=None) -> BucketRecord:
        record = BucketRecord(
            id=bucket_id or new_id(),
            name=name,
            description=description,
            color=color or DEFAULT_BUCKET_COLOR,
        )
        with self.session_factory() as db, db.begin():
            db.add(Bucket(id=record.id, name=record.name, description=record.description, color=record.color))
        logger.info("Created bucket", bucket_id=record.id, name=name)
        return record

    def get_bucket(self, bucket_id: str) -> Optional[BucketRecord]:
        with self.session_factory() as db:
            row = db.get(Bucket, bucket_id)
            if row is None:
                return None
            return BucketRecord(
                id=row.id, name=row.name, description=row.description,
                color=row.color or DEFAULT_BUCKET_COLOR, created_at=row.created_at,
            )

    def list_buckets(self) -> List[BucketRecord]:
        with self.engine.begin() as conn:
            rows = conn.execute(sa_text("""
                SELECT b.id, b.name, b.description, b.color, b.created_at,
                       COUNT(DISTINCT r.file_name)::int AS document_count
                FROM buckets b
                LEFT JOIN resources r ON r.bucket_id = b.id
                GROUP BY b.id
                ORDER BY b.created_at
            """)).mappings().all()
        return [BucketRecord(**dict(r)) for r in rows]

    def delete_bucket(self, bucket_id: str) -> Optional[BucketDeletion]:
        with self.session_factory() as db, db.begin():
            bucket = db.get(Bucket, bucket_id)
            if bucket is None:
                return None
            record = BucketRecord(id=bucket.id, name=bucket.name, description=bucket.description,
                                  color=bucket.color or DEFAULT_BUCKET_COLOR, created_at=bucket.created_at)
            ids = list(db.execute(select(Resource.id).where(Resource.bucket_id == bucket_id)).scalars())
            deleted_embeddings = 0
            if ids:
                deleted_embeddings = db.execute(
                    delete(Embedding).where(Embedding.resource_id.in_(ids))
                ).rowcount or 0
                db.execute(delete(Resource).where(Resource.bucket_id == bucket_id))
            db.execute(delete(Bucket).where(Bucket.id == bucket_id))
        logger.info("Bucket deleted", bucket_id=bucket_id, resources=len(ids), embeddings=deleted_embeddings)
        return BucketDeletion(record, len(ids), deleted_embeddings)


# ==================== In-memory ====================

class _MemoryTransaction(StoreTransaction):
    """
    Reads and writes go to a private snapshot; the changes are recorded so
    ``apply`` can replay them onto the live maps at commit.
    """

    def __init__(self, resources: Dict[str, ResourceRecord], embeddings: Dict[str, EmbeddingRecord]):
        self.resources = resources
        self.embeddings = embeddings
        self.added_resources: Dict[str, ResourceRecord] = {}
        self.added_embeddings: Dict[str, EmbeddingRecord] = {}
        self.removed_resources: Set[str] = set()
        self.removed_embeddings: Set[str] = set()

    def insert_resource(self, record: ResourceRecord) -> None:
        self.resources[record.id] = record
        self.added_resources[record.id] = record

    def insert_embedding(self, record: EmbeddingRecord) -> None:
        if record.resource_id not in self.resources:
            raise KeyError(f"Unknown resource {record.resource_id}")
        self.embeddings[record.id] = record
        self.added_embeddings[record.id] = record

    def delete_document(self, bucket_id: str, file_name: str) -> List[str]:
        ids = [r.id for r in self.resources.values()
               if r.bucket_id == bucket_id and r.file_name == file_name]
        id_set = set(ids)
        for emb_id in [e.id for e in self.embeddings.values() if e.resource_id in id_set]:
            del self.embeddings[emb_id]
            self.added_embeddings.pop(emb_id, None)
            self.removed_embeddings.add(emb_id)
        for rid in ids:
            del self.resources[rid]
            self.added_resources.pop(rid, None)
            self.removed_resources.add(rid)
        return ids

    def apply(self, buckets, resources, embeddings) -> None:
        """Replay onto the live maps. Caller holds the store lock."""
        for record in self.added_resources.values():
            if record.bucket_id not in buckets:
                raise KeyError(f"Unknown bucket {record.bucket_id}")
        for emb_id in self.removed_embeddings:
            embeddings.pop(emb_id, None)
        for rid in self.removed_resources:
            resources.pop(rid, None)
        resources.update(self.added_resources)
        embeddings.update(self.added_embeddings)


class InMemoryVectorStore(VectorStore):
    """
    Process-local store with exact cosine ranking.

    Writes inside ``transaction()`` go to a private snapshot and reach the
    live state only when the block exits cleanly. The lock is held while the
    snapshot is taken and while the changes are applied, not in between.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._buckets: Dict[str, BucketRecord] = {}
        self._resources: Dict[str, ResourceRecord] = {}
        self._embeddings: Dict[str, EmbeddingRecord] = {}

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self._lock:
            tx = _MemoryTransaction(dict(self._resources), dict(self._embeddings))
        yield tx
        with self._lock:
            tx.apply(self._buckets, self._resources, self._embeddings)

    def delete_embeddings_by_resource_ids(self, resource_ids: Sequence[str]) -> int:
        targets = set(resource_ids)
        with self._lock:
            doomed = [e.id for e in self._embeddings.values() if e.resource_id in targets]
            for emb_id in doomed:
                del self._embeddings[emb_id]
        return len(doomed)

    def query_top_k(self, vector, k, min_score, bucket_id=None) -> List[RetrievedChunk]:
        with self._lock:
            pairs = [
                (emb, self._resources[emb.resource_id])
                for emb in self._embeddings.values()
                if bucket_id is None or self._resources[emb.resource_id].bucket_id == bucket_id
            ]
        if not pairs or k <= 0:
            return []

        matrix = np.array([emb.embedding for emb, _ in pairs], dtype=float)
        query = np.asarray(vector, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        ranked = sorted(range(len(pairs)), key=lambda i: float(scores[i]), reverse=True)
        results = []
        for i in ranked:
            score = float(scores[i])
            if score <= min_score:
                break
            emb, res = pairs[i]
            results.append(RetrievedChunk(
                content=emb.content,
                similarity=score,
                provenance=Provenance(
                    resource_id=res.id,
                    bucket_id=res.bucket_id,
                    file_name=res.file_name,
                    file_type=res.file_type,
                    chunk_index=res.chunk_index,
                    total_chunks=res.total_chunks,
                ),
            ))
            if len(results) >= k:
                break
        return results

    def list_resources_by_bucket(self, bucket_id: str) -> List[ResourceRecord]:
        with self._lock:
            rows = [r for r in self._resources.values() if r.bucket_id == bucket_id]
        return sorted(rows, key=lambda r: (r.created_at, r.file_name, r.chunk_index))

    def list_documents(self, bucket_id: str) -> List[DocumentSummary]:
        return _summarize_documents(bucket_id, self.list_resources_by_bucket(bucket_id))

    def create_bucket(self, name, description=None, color=None, bucket_id=None) -> BucketRecord:
        record = BucketRecord(
            id=bucket_id or new_id(),
            name=name,
            description=description,
            color=color or DEFAULT_BUCKET_COLOR,
        )
        with self._lock:
            self._buckets[record.id] = record
        logger.info("Created bucket", bucket_id=record.id, name=name)
        return record

    def get_bucket(self, bucket_id: str) -> Optional[BucketRecord]:
        with self._lock:
            return self._buckets.get(bucket_id)

    def list_buckets(self) -> List[BucketRecord]:
        with self._lock:
            buckets = list(self._buckets.values())
            counts = {
                b.id: len({r.file_name for r in self._resources.values() if r.bucket_id == b.id})
                for b in buckets
            }
        return [replace(b, document_count=counts[b.id]) for b in sorted(buckets, key=lambda b: b.created_at)]

    def delete_bucket(self, bucket_id: str) -> Optional[BucketDeletion]:
        with self._lock:
            bucket = self._buckets.get(bucket_id)
            if bucket is None:
                return None
            ids = [r.id for r in self._resources.values() if r.bucket_id == bucket_id]
            deleted_embeddings = self.delete_embeddings_by_resource_ids(ids)
            for rid in ids:
                del self._resources[rid]
            del self._buckets[bucket_id]
        logger.info("Bucket deleted", bucket_id=bucket_id, resources=len(ids), embeddings=deleted_embeddings)
        return BucketDeletion(bucket, len(ids), deleted_embeddings)
