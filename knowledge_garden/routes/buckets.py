"""
Bucket management API routes.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import ServiceContainer, get_services
from ..logging_config import logger
from ..schemas import BucketCreate, BucketOut

router = APIRouter(prefix="/api", tags=["buckets"])


@router.get("/buckets", response_model=List[BucketOut])
async def list_buckets(services: ServiceContainer = Depends(get_services)):
    """Return all buckets with their document counts, oldest first."""
    buckets = services.store.list_buckets()
    logger.info("Listed buckets", count=len(buckets))
    return [BucketOut(**vars(b)) for b in buckets]


@router.post("/buckets", response_model=BucketOut, status_code=201)
async def create_bucket(payload: BucketCreate, services: ServiceContainer = Depends(get_services)):
    bucket = services.store.create_bucket(payload.name, description=payload.description, color=payload.color)
    return BucketOut(**vars(bucket))


@router.delete("/buckets/{bucket_id}")
async def delete_bucket(bucket_id: str, services: ServiceContainer = Depends(get_services)):
    """
    Delete a bucket together with all of its documents and embeddings.

    Returns:
        Counts of deleted resources and embeddings
    """
    deletion = services.store.delete_bucket(bucket_id)
    if deletion is None:
        logger.warning("Bucket not found for deletion", bucket_id=bucket_id)
        raise HTTPException(status_code=404, detail="Bucket not found")

    return {
        "ok": True,
        "deleted": bucket_id,
        "name": deletion.bucket.name,
        "deleted_resources": deletion.deleted_resources,
        "deleted_embeddings": deletion.deleted_embeddings,
    }
