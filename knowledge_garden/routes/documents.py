"""
Document management API routes.
Handles document upload, listing, and deletion within a bucket.
"""
from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..dependencies import ServiceContainer, get_services
from ..errors import KnowledgeGardenError
from ..logging_config import logger
from ..schemas import DocumentOut

router = APIRouter(prefix="/api", tags=["documents"])


# ==================== Document Upload ====================

@router.post("/buckets/{bucket_id}/documents", status_code=201)
async def upload_document(
    bucket_id: str,
    file: UploadFile = File(...),
    description: str = Form(""),
    uploaded_by: str = Form(""),
    brand: str = Form(""),
    services: ServiceContainer = Depends(get_services),
):
    """
    Upload one document into a bucket.

    Supported formats: PDF, DOCX, DOC, XLSX/XLS, CSV, JSON, TXT, MD, HTML, XML

    Process:
    1. Extract text from the file
    2. Split text into chunks
    3. Generate embeddings for chunks in batches
    4. Store chunks with their vector embeddings

    Returns:
        Upload report with chunk counts and extraction metadata
    """
    data = await file.read()
    try:
        report = await run_in_threadpool(
            services.ingestion.ingest,
            data,
            file.content_type or "",
            file.filename or "upload",
            bucket_id,
            description,
            uploaded_by,
            brand,
        )
    except KnowledgeGardenError as e:
        logger.warning("Upload rejected", filename=file.filename, bucket_id=bucket_id, error=e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return report.to_dict()


# ==================== Document Listing ====================

@router.get("/buckets/{bucket_id}/documents", response_model=List[DocumentOut])
async def list_documents(bucket_id: str, services: ServiceContainer = Depends(get_services)):
    """Return the documents of a bucket, newest first."""
    if services.store.get_bucket(bucket_id) is None:
        raise HTTPException(status_code=404, detail="Bucket not found")

    documents = services.store.list_documents(bucket_id)
    logger.info("Listed documents", bucket_id=bucket_id, count=len(documents))
    return [DocumentOut(**vars(d)) for d in documents]


# ==================== Document Deletion ====================

@router.delete("/buckets/{bucket_id}/documents/{file_name}")
async def delete_document(bucket_id: str, file_name: str, services: ServiceContainer = Depends(get_services)):
    """Delete every chunk of a document and the embeddings that belong to them."""
    try:
        chunks = services.ingestion.delete_document(bucket_id, file_name)
    except KnowledgeGardenError as e:
        logger.warning("Document not found for deletion", bucket_id=bucket_id, filename=file_name)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"ok": True, "deleted": file_name, "chunks": chunks}
