"""
Error taxonomy for ingestion and query handling.

Every error carries a short, user-facing message; routes surface it as the
HTTP ``detail``.
"""


class KnowledgeGardenError(Exception):
    """Base class for all errors raised by the knowledge pipeline."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedTypeError(KnowledgeGardenError):
    """Neither the declared MIME type nor the file extension is supported."""

    status_code = 415


class ExtractionError(KnowledgeGardenError):
    """The file has a supported type but its contents could not be parsed."""


class EmptyContentError(KnowledgeGardenError):
    """Extraction succeeded but produced no usable text."""


class EmbeddingServiceError(KnowledgeGardenError):
    """The embedding model failed or returned malformed vectors."""

    status_code = 502


class TooManyChunksError(KnowledgeGardenError):
    """The document would produce more chunks than allowed for its kind."""

    status_code = 413

    def __init__(self, chunk_count: int, max_chunks: int):
        super().__init__(
            f"File too complex. Generated {chunk_count} chunks, but maximum allowed "
            f"is {max_chunks}. Please consider splitting the file or reducing content size."
        )
        self.chunk_count = chunk_count
        self.max_chunks = max_chunks


class UploadTooLargeError(KnowledgeGardenError):
    status_code = 413

    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(
            f"File too large. Maximum file size is {max_bytes / (1024 * 1024):.0f}MB. "
            f"Your file is {size_bytes / (1024 * 1024):.2f}MB."
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class BucketNotFoundError(KnowledgeGardenError):
    status_code = 404

    def __init__(self, bucket_id: str):
        super().__init__(f"Bucket not found: {bucket_id}")
        self.bucket_id = bucket_id


class DocumentNotFoundError(KnowledgeGardenError):
    status_code = 404

    def __init__(self, bucket_id: str, file_name: str):
        super().__init__(f"Document '{file_name}' not found in bucket {bucket_id}")
        self.bucket_id = bucket_id
        self.file_name = file_name
