"""Retriever for semantic search over ingested pages.

Handles:
- Query embedding generation
- Vector search against the chunk store
- City / category / tag post-filters
"""
from typing import List, Optional
import structlog

from app import config
from app.llm_client import gemini_client
from app.rag.store import ChunkStore, SearchFilters, SearchHit, get_chunk_store

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        store: Optional[ChunkStore] = None,
        llm=None,
        top_k: int = None,
        num_candidates: int = None,
    ):
        """Initialize the retriever.

        Args:
            store: Chunk store (default: configured singleton)
            llm: Client with ``embed_query`` (default: Gemini client)
            top_k: Number of results to return (default from config)
            num_candidates: Nearest-neighbor candidate pool (default from config)
        """
        self.store = store
        self.llm = llm or gemini_client
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.num_candidates = num_candidates or config.NUM_CANDIDATES

        logger.info(
            "retriever_initialized",
            top_k=self.top_k,
            num_candidates=self.num_candidates,
        )

    async def _ensure_store(self) -> ChunkStore:
        if self.store is None:
            self.store = await get_chunk_store()
        return self.store

    async def retrieve(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        top_k: Optional[int] = None,
    ) -> List[SearchHit]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User query text
            filters: Optional city / category / tags filters
            top_k: Number of results to return (overrides default)

        Returns:
            List of SearchHit objects, best first

        Raises:
            RuntimeError: If retrieval fails
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k or self.top_k
        filters = filters or SearchFilters()

        logger.info(
            "retrieval_started",
            query_length=len(query),
            top_k=top_k,
            city=filters.city,
            category=filters.category,
            tags=filters.tags,
        )

        try:
            store = await self._ensure_store()
            query_embedding = await self.llm.embed_query(query)

            hits = await store.search(
                query_embedding,
                filters=filters,
                limit=top_k,
                num_candidates=self.num_candidates,
            )

        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RuntimeError(f"Retrieval failed: {e}") from e

        hits.sort(key=lambda hit: hit.score, reverse=True)

        logger.info(
            "retrieval_completed",
            results_returned=len(hits),
            top_score=hits[0].score if hits else None,
        )

        return hits[:top_k]


# Singleton instance for convenience
_retriever_instance: Optional[Retriever] = None


async def get_retriever() -> Retriever:
    """Get or create a singleton retriever bound to the configured store."""
    global _retriever_instance
    if _retriever_instance is None:
        _retriever_instance = Retriever(store=await get_chunk_store())
    return _retriever_instance
