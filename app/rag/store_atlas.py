"""MongoDB Atlas chunk store using ``$vectorSearch``."""
from typing import List, Optional, Dict, Any
import structlog
from pymongo import AsyncMongoClient, UpdateOne

from app import config
from app.rag.store import ChunkStore, ChunkRecord, SearchFilters, SearchHit

logger = structlog.get_logger()

PROJECTION = {
    "_id": 0,
    "chunk": 1,
    "url": 1,
    "city": 1,
    "category": 1,
    "meta": 1,
    "pos": 1,
    "score": {"$meta": "vectorSearchScore"},
}


def build_search_pipeline(
    query_vector: List[float],
    filters: Optional[SearchFilters] = None,
    limit: int = None,
    num_candidates: int = None,
    index_name: str = None,
) -> List[Dict[str, Any]]:
    """Build the aggregation pipeline for a filtered vector search.

    With filters, the vector stage returns every candidate so the ``$match``
    stages see the whole pool before the final ``$limit``.
    """
    limit = limit or config.RETRIEVAL_TOP_K
    num_candidates = max(num_candidates or config.NUM_CANDIDATES, limit)
    filters = filters or SearchFilters()

    vector_limit = limit if filters.is_empty else num_candidates

    return [
        {
            "$vectorSearch": {
                "index": index_name or config.VECTOR_INDEX_NAME,
                "path": "embedding",
                "queryVector": list(query_vector),
                "numCandidates": num_candidates,
                "limit": vector_limit,
            }
        },
        *filters.to_match_stages(),
        {"$limit": limit},
        {"$project": PROJECTION},
    ]


def build_upsert_operations(records: List[ChunkRecord]) -> List[UpdateOne]:
    """One unconditional upsert per record, keyed by (url, pos)."""
    return [
        UpdateOne(
            {"url": record.url, "pos": record.pos},
            {"$set": record.to_document()},
            upsert=True,
        )
        for record in records
    ]


class AtlasChunkStore(ChunkStore):
    """Chunk collection in MongoDB Atlas with a vector search index."""

    name = "atlas"

    def __init__(self, uri: str = None, client=None, collection=None):
        """Initialize the Atlas store.

        Args:
            uri: Connection string (default: config.MONGODB_URI)
            client: Existing async client to reuse
            collection: Collection to use directly, bypassing the client
        """
        self._client = client
        self._collection = collection
        self.uri = uri or config.MONGODB_URI

        if self._collection is None and self._client is None:
            if not self.uri:
                raise ValueError("MONGODB_URI is not configured")
            self._client = AsyncMongoClient(
                self.uri, maxPoolSize=config.MONGODB_MAX_POOL_SIZE
            )

        logger.info(
            "atlas_store_initialized",
            database=config.MONGODB_DB,
            collection=config.MONGODB_COLLECTION,
            index=config.VECTOR_INDEX_NAME,
        )

    @property
    def collection(self):
        if self._collection is None:
            self._collection = self._client[config.MONGODB_DB][config.MONGODB_COLLECTION]
        return self._collection

    async def upsert_chunks(self, records: List[ChunkRecord]) -> int:
        if not records:
            return 0

        try:
            result = await self.collection.bulk_write(
                build_upsert_operations(records), ordered=False
            )
        except Exception as e:
            logger.error(
                "chunk_upsert_failed",
                backend=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "chunks_upserted",
            backend=self.name,
            count=len(records),
            upserted=getattr(result, "upserted_count", None),
            modified=getattr(result, "modified_count", None),
        )

        return len(records)

    async def search(
        self,
        query_vector: List[float],
        filters: Optional[SearchFilters] = None,
        limit: int = None,
        num_candidates: int = None,
    ) -> List[SearchHit]:
        pipeline = build_search_pipeline(
            query_vector, filters=filters, limit=limit, num_candidates=num_candidates
        )

        cursor = await self.collection.aggregate(pipeline)
        docs = await cursor.to_list(length=None)

        logger.info(
            "vector_search_completed",
            backend=self.name,
            results_found=len(docs),
        )

        return [SearchHit.from_document(doc) for doc in docs]

    async def count(self) -> int:
        return await self.collection.count_documents({})

    async def ping(self) -> bool:
        if self._client is None:
            return True
        await self._client.admin.command("ping")
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
