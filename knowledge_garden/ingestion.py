"""
Document ingestion: extract -> chunk -> embed -> store.

A document's chunks are written inside one store transaction, so a failure
part-way through (for example an embedding error) leaves nothing behind.
Re-uploading a file name into the same bucket replaces the previous copy.
"""
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List

from .chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text, max_chunks_for
from .embedding import Embedder
from .errors import BucketNotFoundError, DocumentNotFoundError, TooManyChunksError, UploadTooLargeError
from .logging_config import get_logger
from .storage import EmbeddingRecord, ResourceRecord, VectorStore, new_id
from .text_extraction import FileKind, extract

logger = get_logger("ingestion")

DEFAULT_BATCH_SIZE = 5
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024

_KIND_MIME_TYPES = {
    FileKind.PDF: "application/pdf",
    FileKind.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    FileKind.DOC: "application/msword",
    FileKind.SPREADSHEET: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    FileKind.CSV: "text/csv",
    FileKind.JSON: "application/json",
    FileKind.TEXT: "text/plain",
    FileKind.HTML: "text/html",
    FileKind.XML: "application/xml",
}


@dataclass
class IngestionReport:
    bucket_id: str
    file_name: str
    file_type: str
    file_size: int
    chunks_created: int
    total_text_length: int
    replaced_chunks: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    resource_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "bucket_id": self.bucket_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "chunks_created": self.chunks_created,
            "total_text_length": self.total_text_length,
            "replaced_chunks": self.replaced_chunks,
            "metadata": self.metadata,
        }


class IngestionPipeline:
    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        pdf_timeout: float = 30.0,
    ):
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.batch_size = batch_size
        self.max_upload_bytes = max_upload_bytes
        self.pdf_timeout = pdf_timeout

    def ingest(
        self,
        data: bytes,
        declared_type: str,
        file_name: str,
        bucket_id: str,
        description: str = "",
        uploaded_by: str = "",
        brand: str = "",
    ) -> IngestionReport:
        """
        Ingest one uploaded file into a bucket.

        Process:
        1. Check size and target bucket
        2. Extract text
        3. Split text into chunks and enforce the chunk budget
        4. Embed chunks in small batches and store them with their vectors

        Raises:
            UploadTooLargeError, BucketNotFoundError, UnsupportedTypeError,
            ExtractionError, EmptyContentError, TooManyChunksError,
            EmbeddingServiceError
        """
        t = perf_counter()
        size = len(data)
        if size > self.max_upload_bytes:
            raise UploadTooLargeError(size, self.max_upload_bytes)
        if self.store.get_bucket(bucket_id) is None:
            raise BucketNotFoundError(bucket_id)

        logger.info("Processing file", filename=file_name, content_type=declared_type,
                    size_bytes=size, bucket_id=bucket_id)

        extracted = extract(data, declared_type, file_name, pdf_timeout=self.pdf_timeout)
        chunks = chunk_text(extracted.text, self.chunk_size, self.chunk_overlap)
        logger.info("Created chunks", filename=file_name, chunk_count=len(chunks))

        max_chunks = max_chunks_for(extracted.metadata)
        if len(chunks) > max_chunks:
            raise TooManyChunksError(len(chunks), max_chunks)

        file_type = declared_type or _KIND_MIME_TYPES[extracted.kind]
        total = len(chunks)
        resource_ids: List[str] = []

        with self.store.transaction() as tx:
            replaced = tx.delete_document(bucket_id, file_name)
            if replaced:
                logger.info("Replacing existing document", filename=file_name, old_chunks=len(replaced))

            batches = (total + self.batch_size - 1) // self.batch_size
            for batch_no, start in enumerate(range(0, total, self.batch_size), start=1):
                batch = chunks[start:start + self.batch_size]
                vectors = self.embedder.embed_batch(batch)

                for offset, (chunk, vector) in enumerate(zip(batch, vectors)):
                    resource_id = new_id()
                    tx.insert_resource(ResourceRecord(
                        id=resource_id,
                        bucket_id=bucket_id,
                        file_name=file_name,
                        file_type=file_type,
                        file_size=size,
                        content=chunk,
                        chunk_index=start + offset,
                        total_chunks=total,
                        description=description,
                        uploaded_by=uploaded_by,
                        brand=brand,
                    ))
                    tx.insert_embedding(EmbeddingRecord(
                        id=new_id(),
                        resource_id=resource_id,
                        content=chunk,
                        embedding=vector,
                    ))
                    resource_ids.append(resource_id)
                logger.debug("Stored batch", filename=file_name, batch=batch_no, batches=batches)

        logger.info("Document uploaded successfully", filename=file_name, bucket_id=bucket_id,
                    chunks=total, time_ms=round((perf_counter() - t) * 1000, 2))
        return IngestionReport(
            bucket_id=bucket_id,
            file_name=file_name,
            file_type=file_type,
            file_size=size,
            chunks_created=total,
            total_text_length=len(extracted.text),
            replaced_chunks=len(replaced),
            metadata=extracted.metadata,
            resource_ids=resource_ids,
        )

    def delete_document(self, bucket_id: str, file_name: str) -> int:
        """Delete every chunk of a document (and its embeddings); return the chunk count."""
        deleted = self.store.delete_resources_by_document(bucket_id, file_name)
        if not deleted:
            raise DocumentNotFoundError(bucket_id, file_name)
        logger.info("Document deleted", bucket_id=bucket_id, filename=file_name, chunks=len(deleted))
        return len(deleted)
