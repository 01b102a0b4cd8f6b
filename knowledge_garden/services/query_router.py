"""
Query routing between semantic search and tabular analysis.

Questions are scored against a keyword table of quantitative terms:
two or more matches route to SQL-style analysis, exactly one to a hybrid
of both, none to semantic search (RAG). SQL analysis degrades to RAG
whenever it has nothing to offer.
"""
import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..logging_config import get_logger
from ..retrieval import Retriever
from ..storage import RetrievedChunk
from .tabular import FileAnalysis, TabularAnalyzer

logger = get_logger("query_router")

NO_INFORMATION = (
    "I couldn't find relevant information in the knowledge base for this question."
)

SQL_KEYWORD_WEIGHTS: Dict[str, int] = {
    keyword: 1
    for keyword in [
        'duplicate', 'duplicates', 'count', 'sum', 'average', 'avg', 'max', 'min',
        'group', 'aggregate', 'total', 'how many', 'statistics', 'stats',
        'unique', 'distinct', 'sort', 'order', 'ranking', 'top', 'bottom',
        'filter', 'where', 'greater than', 'less than', 'between',
        'percentage', 'ratio', 'compare', 'comparison', 'trend', 'pattern',
    ]
}
SQL_THRESHOLD = 2
HYBRID_THRESHOLD = 1


class AnalysisMode(str, Enum):
    SQL = "sql"
    RAG = "rag"
    HYBRID = "hybrid"


def _keyword_pattern(keyword: str) -> "re.Pattern":
    body = re.escape(keyword).replace(r"\ ", r"\s+")
    return re.compile(r"\b" + body + r"(?:s|es)?\b", re.IGNORECASE)


@dataclass
class AnalysisResult:
    type: AnalysisMode
    success: bool
    explanation: str = ""
    sql_results: List[FileAnalysis] = field(default_factory=list)
    rag_results: List[RetrievedChunk] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "success": self.success,
            "explanation": self.explanation,
            "sql_results": [r.to_dict() for r in self.sql_results],
            "rag_results": [r.to_dict() for r in self.rag_results],
            "error": self.error,
        }


class QueryRouter:
    def __init__(
        self,
        retriever: Retriever,
        analyzer: TabularAnalyzer,
        keyword_weights: Optional[Mapping[str, int]] = None,
        sql_threshold: int = SQL_THRESHOLD,
        hybrid_threshold: int = HYBRID_THRESHOLD,
    ):
        self.retriever = retriever
        self.analyzer = analyzer
        weights = SQL_KEYWORD_WEIGHTS if keyword_weights is None else keyword_weights
        self._weights = dict(weights)
        self._patterns = [(kw, _keyword_pattern(kw)) for kw in self._weights]
        self.sql_threshold = sql_threshold
        self.hybrid_threshold = hybrid_threshold

    # ==================== Classification ====================

    def score(self, question: str) -> Tuple[int, List[str]]:
        """Sum the weights of the distinct keywords found in the question."""
        matched = [kw for kw, pattern in self._patterns if pattern.search(question or "")]
        return sum(self._weights[kw] for kw in matched), matched

    def classify(self, question: str) -> AnalysisMode:
        score, matched = self.score(question)
        if score >= self.sql_threshold:
            mode = AnalysisMode.SQL
        elif score >= self.hybrid_threshold:
            mode = AnalysisMode.HYBRID
        else:
            mode = AnalysisMode.RAG
        logger.info("Question classified", question=(question or "")[:80], mode=mode.value,
                    score=score, keywords=matched)
        return mode

    # ==================== Dispatch ====================

    async def analyze(
        self,
        question: str,
        bucket_id: Optional[str] = None,
        similar_questions: Optional[Sequence[str]] = None,
        mode: str = "auto",
    ) -> AnalysisResult:
        """
        Answer a question with the most suitable strategy.

        Args:
            question: The user's question
            bucket_id: Bucket whose documents are searched and analyzed
            similar_questions: Paraphrases/keywords searched alongside the question
            mode: "auto" to classify, or force "sql", "rag" or "hybrid"

        Returns:
            AnalysisResult; never raises
        """
        try:
            selected = self.classify(question) if mode == "auto" else AnalysisMode(mode)
            if selected is AnalysisMode.SQL:
                return await self._sql(question, bucket_id, similar_questions)
            if selected is AnalysisMode.HYBRID:
                return await self._hybrid(question, bucket_id, similar_questions)
            return await self._rag(question, bucket_id, similar_questions)
        except Exception as e:
            logger.error("Analysis failed", question=(question or "")[:80], error=str(e))
            return AnalysisResult(AnalysisMode.RAG, success=False,
                                  explanation=NO_INFORMATION, error=str(e))

    async def _rag(self, question, bucket_id, similar_questions) -> AnalysisResult:
        queries = list(dict.fromkeys([question, *(similar_questions or [])]))
        results = await self.retriever.find_relevant_many(queries, bucket_id=bucket_id)
        explanation = f"Found {len(results)} relevant documents" if results else NO_INFORMATION
        return AnalysisResult(AnalysisMode.RAG, success=True, explanation=explanation,
                              rag_results=results)

    async def _sql_branch(self, question: str, bucket_id: str) -> List[FileAnalysis]:
        return await asyncio.to_thread(self.analyzer.analyze_bucket, question, bucket_id)

    async def _sql(self, question, bucket_id, similar_questions) -> AnalysisResult:
        if not bucket_id:
            logger.info("No bucket for SQL analysis, using semantic search")
            return await self._rag(question, bucket_id, similar_questions)

        try:
            analyses = await self._sql_branch(question, bucket_id)
        except Exception as e:
            logger.warning("SQL analysis failed, using semantic search", error=str(e))
            analyses = []

        if not analyses:
            return await self._rag(question, bucket_id, similar_questions)

        return AnalysisResult(AnalysisMode.SQL, success=True, sql_results=analyses,
                              explanation=sql_explanation(analyses, question))

    async def _hybrid(self, question, bucket_id, similar_questions) -> AnalysisResult:
        async def no_sql():
            return []

        sql_task = self._sql_branch(question, bucket_id) if bucket_id else no_sql()
        sql_out, rag_out = await asyncio.gather(
            sql_task,
            self._rag(question, bucket_id, similar_questions),
            return_exceptions=True,
        )

        if isinstance(sql_out, BaseException):
            logger.warning("SQL branch failed", error=str(sql_out))
            sql_out = []
        if isinstance(rag_out, BaseException):
            logger.warning("RAG branch failed", error=str(rag_out))
            rag_out = None

        rag_results = rag_out.rag_results if rag_out is not None else []
        return AnalysisResult(
            AnalysisMode.HYBRID,
            success=True,
            sql_results=sql_out,
            rag_results=rag_results,
            explanation=combined_explanation(sql_out, rag_results, question),
        )


def sql_explanation(analyses: Sequence[FileAnalysis], question: str) -> str:
    if not analyses:
        return "No data analysis results found."
    parts = [f'SQL Analysis Results for: "{question}"', ""]
    for analysis in analyses:
        parts.append(f"File: {analysis.file_name}")
        parts.append(analysis.analysis)
        parts.append(f"Found {len(analysis.results)} analysis results")
        parts.append("")
    return "\n".join(parts).rstrip()


def combined_explanation(analyses: Sequence[FileAnalysis], rag_results: Sequence[RetrievedChunk],
                         question: str) -> str:
    if not analyses and not rag_results:
        return NO_INFORMATION
    parts = [f'Combined Analysis for: "{question}"', ""]
    if analyses:
        parts.append("Quantitative Analysis (SQL):")
        parts.append(sql_explanation(analyses, question))
        parts.append("")
    if rag_results:
        parts.append("Contextual Information (RAG):")
        parts.append(f"Found {len(rag_results)} relevant documents")
    return "\n".join(parts).rstrip()
