"""
Knowledge base search over PostgreSQL.

Chunks carry a pgvector embedding; hybrid search blends cosine similarity
with ``ts_rank`` full-text relevance. Document metadata (forms, guides,
brochures) lives in ``document_files`` and is matched on title and
description.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import text

from compass_agent.domain.interfaces import EmbeddingProvider, KnowledgeSearch
from compass_agent.domain.models.tooling import ChunkResult
from compass_agent.infrastructure.persistence.database import Database
from compass_agent.infrastructure.persistence.retry import RetryPolicy, run_with_retry
from compass_agent.infrastructure.persistence.session_store import _json_value

logger = structlog.get_logger(__name__)


HYBRID_SEARCH_SQL = """
    WITH vector_search AS (
        SELECT c.id, c.content, c.document_id, c.metadata,
               d.title AS document_title, d.source AS document_source,
               1 - (c.embedding <=> CAST(:embedding AS vector)) AS vector_score
        FROM chunks c
        JOIN documents d ON c.document_id = d.id
        ORDER BY c.embedding <=> CAST(:embedding AS vector)
        LIMIT :candidates
    ),
    text_search AS (
        SELECT c.id, c.content, c.document_id, c.metadata,
               d.title AS document_title, d.source AS document_source,
               ts_rank(to_tsvector('english', c.content), plainto_tsquery('english', :query)) AS text_score
        FROM chunks c
        JOIN documents d ON c.document_id = d.id
        WHERE to_tsvector('english', c.content) @@ plainto_tsquery('english', :query)
        ORDER BY text_score DESC
        LIMIT :candidates
    )
    SELECT
        COALESCE(v.id, t.id)::text AS chunk_id,
        COALESCE(v.document_id, t.document_id)::text AS document_id,
        COALESCE(v.content, t.content) AS content,
        COALESCE(v.document_title, t.document_title) AS document_title,
        COALESCE(v.document_source, t.document_source) AS document_source,
        COALESCE(v.metadata, t.metadata) AS metadata,
        (COALESCE(v.vector_score, 0) * :vector_weight + COALESCE(t.text_score, 0) * :text_weight) AS combined_score
    FROM vector_search v
    FULL OUTER JOIN text_search t ON v.id = t.id
    ORDER BY combined_score DESC
    LIMIT :limit
"""

TEXT_SEARCH_SQL = """
    SELECT c.id::text AS chunk_id, c.document_id::text AS document_id, c.content, c.metadata,
           d.title AS document_title, d.source AS document_source,
           ts_rank(to_tsvector('english', c.content), plainto_tsquery('english', :query)) AS combined_score
    FROM chunks c
    JOIN documents d ON c.document_id = d.id
    WHERE to_tsvector('english', c.content) @@ plainto_tsquery('english', :query)
    ORDER BY combined_score DESC
    LIMIT :limit
"""

DOCUMENT_COLUMNS = "document_number, title, category, document_type, description"


def document_summary(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Shape a ``document_files`` row for the model and the client"""

    number = row.get("document_number")
    return {
        "document_number": number,
        "title": row.get("title"),
        "category": row.get("category"),
        "document_type": row.get("document_type"),
        "description": row.get("description") or "",
        "download_url": f"/api/documents/{number}/download",
    }


def _chunk_from_row(row: Mapping[str, Any]) -> ChunkResult:
    return ChunkResult(
        chunk_id=row["chunk_id"],
        document_id=row.get("document_id"),
        content=row["content"],
        score=float(row.get("combined_score") or 0.0),
        metadata=_json_value(row.get("metadata")),
        document_title=row.get("document_title"),
        document_source=row.get("document_source"),
    )


class PostgresKnowledgeSearch(KnowledgeSearch):
    """Hybrid vector + full-text search; falls back to full-text only without embeddings"""

    def __init__(
        self,
        database: Database,
        embeddings: Optional[EmbeddingProvider] = None,
        text_weight: float = 0.3,
        retry_policy: RetryPolicy = RetryPolicy()
    ):
        self.database = database
        self.embeddings = embeddings
        self.text_weight = min(max(text_weight, 0.0), 1.0)
        self.retry_policy = retry_policy

    async def _rows(self, operation: str, sql: str, params: Dict[str, Any]) -> List[Mapping[str, Any]]:
        async def run():
            async with self.database.transaction() as conn:
                result = await conn.execute(text(sql), params)
                return result.mappings().all()
        return await run_with_retry(run, self.retry_policy, operation)

    async def hybrid_search(self, query: str, limit: int = 5) -> List[ChunkResult]:
        if self.embeddings is None:
            rows = await self._rows("text_search", TEXT_SEARCH_SQL, {"query": query, "limit": limit})
            return [_chunk_from_row(row) for row in rows]

        embedding = await self.embeddings.embed(query)
        params = {
            "embedding": "[" + ",".join(str(value) for value in embedding) + "]",
            "query": query,
            "candidates": limit * 2,
            "limit": limit,
            "vector_weight": 1 - self.text_weight,
            "text_weight": self.text_weight,
        }
        rows = await self._rows("hybrid_search", HYBRID_SEARCH_SQL, params)
        logger.debug("hybrid_search_completed", result_count=len(rows))
        return [_chunk_from_row(row) for row in rows]

    async def search_documents(self, query: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = (
            f"SELECT {DOCUMENT_COLUMNS} FROM document_files "
            "WHERE is_active = true "
            "AND (title ILIKE :pattern OR description ILIKE :pattern)"
        )
        params: Dict[str, Any] = {"pattern": f"%{query}%"}
        if category:
            sql += " AND category = :category"
            params["category"] = category
        sql += " ORDER BY category, document_type, title"

        rows = await self._rows("search_documents", sql, params)
        return [document_summary(row) for row in rows]
