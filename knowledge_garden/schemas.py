"""
Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Mode = Literal["auto", "sql", "rag", "hybrid"]


class BucketCreate(BaseModel):
    """Request body for creating a bucket."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")


class BucketOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    color: str
    created_at: datetime
    document_count: int = 0


class DocumentOut(BaseModel):
    bucket_id: str
    file_name: str
    file_type: str
    file_size: int
    total_chunks: int
    uploaded_at: datetime


class SearchBody(BaseModel):
    """Request body for knowledge base search."""
    question: str = Field(..., min_length=1, description="The user's question")
    similar_questions: List[str] = Field(default_factory=list,
                                         description="Paraphrases or keywords searched alongside the question")
    bucket_id: Optional[str] = Field(None, description="Restrict the search to one bucket")
    top_k: Optional[int] = Field(None, ge=1, le=50, description="Results per query")
    min_similarity: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum similarity score")


class Source(BaseModel):
    """A chunk returned by search."""
    content: str
    similarity: float
    file_name: str
    file_type: str
    bucket_id: str
    resource_id: str
    chunk_index: int
    total_chunks: int


class SearchResponse(BaseModel):
    question: str
    results: List[Source]
    sources: List[Dict[str, Any]] = Field(default_factory=list)


class AnalyzeBody(BaseModel):
    """Request body for data analysis questions."""
    question: str = Field(..., min_length=1)
    bucket_id: Optional[str] = None
    similar_questions: List[str] = Field(default_factory=list)
    mode: Mode = Field("auto", description="'auto' to classify the question, or force a strategy")


class AnalyzeResponse(BaseModel):
    type: str
    success: bool
    explanation: str
    sql_results: List[Dict[str, Any]] = Field(default_factory=list)
    rag_results: List[Source] = Field(default_factory=list)
    error: Optional[str] = None
