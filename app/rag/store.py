"""Chunk records, search filters and the chunk store interface.

Two backends implement ``ChunkStore``:
- ``AtlasChunkStore``: MongoDB Atlas collection with ``$vectorSearch``
- ``FAISSChunkStore``: local SQLite rows plus a FAISS index
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import structlog

from app import config

logger = structlog.get_logger()


@dataclass
class ChunkRecord:
    """A stored chunk of page text with its embedding. Unique on (url, pos)."""

    city: str
    category: str
    url: str
    chunk: str
    pos: int
    section: str = config.DEFAULT_SECTION
    tags: List[str] = field(default_factory=list)
    embedding: List[float] = field(default_factory=list)

    @property
    def key(self) -> tuple:
        return (self.url, self.pos)

    def to_document(self) -> Dict[str, Any]:
        """Render the persisted document shape."""
        return {
            "city": self.city,
            "category": self.category,
            "url": self.url,
            "chunk": self.chunk,
            "meta": {"section": self.section, "tags": list(self.tags)},
            "pos": self.pos,
            "embedding": list(self.embedding),
        }


@dataclass
class SearchFilters:
    """Post-filters applied to vector search candidates."""

    city: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def matches(self, city: str, category: str, tags: List[str]) -> bool:
        """Equality on city and category, containment on tags."""
        if self.city is not None and city != self.city:
            return False
        if self.category is not None and category != self.category:
            return False
        if self.tags and not set(self.tags).issubset(tags or []):
            return False
        return True

    def to_match_stages(self) -> List[Dict[str, Any]]:
        """Aggregation ``$match`` stages equivalent to ``matches``."""
        stages = []
        if self.city is not None:
            stages.append({"$match": {"city": self.city}})
        if self.category is not None:
            stages.append({"$match": {"category": self.category}})
        if self.tags:
            stages.append({"$match": {"meta.tags": {"$all": list(self.tags)}}})
        return stages

    @property
    def is_empty(self) -> bool:
        return self.city is None and self.category is None and not self.tags


@dataclass
class SearchHit:
    """A chunk returned by vector search, with similarity score (higher is closer)."""

    chunk: str
    url: str
    city: str
    category: str
    section: str
    tags: List[str]
    score: float
    pos: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "SearchHit":
        meta = doc.get("meta") or {}
        return cls(
            chunk=doc.get("chunk", ""),
            url=doc.get("url", ""),
            city=doc.get("city", ""),
            category=doc.get("category", ""),
            section=meta.get("section", ""),
            tags=list(meta.get("tags") or []),
            score=float(doc.get("score", 0.0)),
            pos=doc.get("pos"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk": self.chunk,
            "url": self.url,
            "city": self.city,
            "category": self.category,
            "meta": {"section": self.section, "tags": self.tags},
            "pos": self.pos,
            "score": self.score,
        }


class ChunkStore:
    """Persistence and vector search for chunks."""

    name = "base"

    async def upsert_chunks(self, records: List[ChunkRecord]) -> int:
        """Insert or overwrite records keyed by (url, pos). Returns records written."""
        raise NotImplementedError

    async def search(
        self,
        query_vector: List[float],
        filters: Optional[SearchFilters] = None,
        limit: int = None,
        num_candidates: int = None,
    ) -> List[SearchHit]:
        """Nearest-neighbor search over ``num_candidates`` candidates.

        Filters apply to the candidates; at most ``limit`` hits are returned,
        best first.
        """
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# Singleton instance for convenience
_store_instance: Optional[ChunkStore] = None


async def get_chunk_store() -> ChunkStore:
    """Get or create the configured chunk store.

    Returns:
        AtlasChunkStore when VECTOR_STORE is "atlas", otherwise FAISSChunkStore

    Raises:
        ValueError: If VECTOR_STORE names an unknown backend
    """
    global _store_instance
    if _store_instance is None:
        backend = config.VECTOR_STORE.lower()

        if backend == "atlas":
            from app.rag.store_atlas import AtlasChunkStore

            store = AtlasChunkStore()
        elif backend == "faiss":
            from app.rag.store_faiss import FAISSChunkStore

            store = FAISSChunkStore()
            await store.init_or_load()
        else:
            raise ValueError(f"Unknown vector store backend: {config.VECTOR_STORE}")

        logger.info("chunk_store_selected", backend=store.name)
        _store_instance = store

    return _store_instance


async def close_chunk_store() -> None:
    """Close and forget the singleton store."""
    global _store_instance
    if _store_instance is not None:
        await _store_instance.close()
        _store_instance = None
