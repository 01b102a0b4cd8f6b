"""
Knowledge API routes.
Semantic search over buckets and routed data analysis.
"""
from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import ServiceContainer, get_services
from ..logging_config import logger
from ..schemas import AnalyzeBody, AnalyzeResponse, SearchBody, SearchResponse
from ..utils.helpers import summarize_sources

router = APIRouter(prefix="/api", tags=["knowledge"])


@router.post("/search", response_model=SearchResponse)
async def search(payload: SearchBody, services: ServiceContainer = Depends(get_services)):
    """
    Search the knowledge base with a question and its paraphrases.

    Each query is searched concurrently; results are merged and
    deduplicated by content, keeping the first occurrence.
    """
    if payload.bucket_id and services.store.get_bucket(payload.bucket_id) is None:
        raise HTTPException(status_code=404, detail="Bucket not found")

    results = await services.retriever.find_relevant_many(
        [payload.question, *payload.similar_questions],
        top_k=payload.top_k,
        min_similarity=payload.min_similarity,
        bucket_id=payload.bucket_id,
    )
    logger.info("Search completed", question=payload.question[:80], results=len(results))
    return {
        "question": payload.question,
        "results": [r.to_dict() for r in results],
        "sources": summarize_sources(results),
    }


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(payload: AnalyzeBody, services: ServiceContainer = Depends(get_services)):
    """
    Answer a data question with tabular analysis, semantic search, or both.

    Example response:
    {
        "type": "sql",
        "success": true,
        "explanation": "SQL Analysis Results for: ...",
        "sql_results": [...],
        "rag_results": [],
        "error": null
    }
    """
    if payload.bucket_id and services.store.get_bucket(payload.bucket_id) is None:
        raise HTTPException(status_code=404, detail="Bucket not found")

    result = await services.router.analyze(
        payload.question,
        bucket_id=payload.bucket_id,
        similar_questions=payload.similar_questions,
        mode=payload.mode,
    )
    return result.to_dict()
