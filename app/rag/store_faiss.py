"""Local chunk store: SQLite rows plus a FAISS vector index.

Handles:
- Lazy index creation with the dimension of the first vectors stored
- Upsert by (url, pos) with vector replacement
- Cosine search with metadata post-filters
- Index persistence, rebuilt from SQLite when missing or stale
"""
import json
from pathlib import Path
from typing import List, Optional, Dict, Any
import numpy as np
import faiss
import structlog

from app import config, db
from app.rag.store import ChunkStore, ChunkRecord, SearchFilters, SearchHit

logger = structlog.get_logger()


def _as_matrix(vectors: List[List[float]]) -> np.ndarray:
    """Convert to a contiguous float32 matrix with unit-length rows."""
    matrix = np.ascontiguousarray(np.array(vectors, dtype=np.float32))
    faiss.normalize_L2(matrix)
    return matrix


class FAISSChunkStore(ChunkStore):
    """FAISS inner-product index over normalized vectors, keyed by SQLite row id."""

    name = "faiss"

    def __init__(self, data_dir: Path = None, db_path: Path = None):
        """Initialize the FAISS chunk store.

        Args:
            data_dir: Directory for index and metadata files (default: DATA_DIR)
            db_path: SQLite database file (default: <data_dir>/chunks.sqlite)
        """
        self.data_dir = Path(data_dir) if data_dir else config.DATA_DIR
        if db_path:
            self.db_path = Path(db_path)
        elif data_dir:
            self.db_path = self.data_dir / "chunks.sqlite"
        else:
            self.db_path = config.DB_PATH

        self.index_path = self.data_dir / "vectors.index"
        self.metadata_path = self.data_dir / "metadata.json"

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self.metadata: Dict[str, Any] = {}
        self.fingerprint: Optional[Dict[str, int]] = None

        logger.info(
            "faiss_store_initialized",
            data_dir=str(self.data_dir),
            db_path=str(self.db_path),
        )

    def _new_index(self, dimension: int) -> None:
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        self.metadata = {
            "embedding_model": config.EMBEDDING_MODEL,
            "embedding_dimension": dimension,
            "index_type": "IndexIDMap2(IndexFlatIP)",
            "vector_count": 0,
        }
        logger.info("faiss_index_created", dimension=dimension)

    async def init_or_load(self) -> None:
        """Prepare the database and load or rebuild the vector index.

        The saved index is used only when it was written at the database's
        current fingerprint; otherwise vectors are re-read from SQLite.

        Raises:
            RuntimeError: If loading fails
        """
        db.init_database(self.db_path)
        await self._load_or_rebuild(db.get_fingerprint(self.db_path))

    async def _load_or_rebuild(self, fingerprint: Dict[str, int]) -> None:
        if self.index_path.exists() and self.metadata_path.exists():
            try:
                with open(self.metadata_path, "r") as f:
                    metadata = json.load(f)
                index = faiss.read_index(str(self.index_path))
            except Exception as e:
                raise RuntimeError(f"Failed to load FAISS index: {e}") from e

            if metadata.get("fingerprint") == fingerprint and index.ntotal == fingerprint["row_count"]:
                self.index = index
                self.metadata = metadata
                self.dimension = metadata.get("embedding_dimension", index.d)
                self.fingerprint = fingerprint
                logger.info(
                    "faiss_index_loaded",
                    dimension=self.dimension,
                    vector_count=index.ntotal,
                )
                return

            logger.warning(
                "faiss_index_stale",
                index_fingerprint=metadata.get("fingerprint"),
                database_fingerprint=fingerprint,
            )

        await self.rebuild_index()

    async def _sync(self) -> None:
        """Reload the index when another writer has changed the database."""
        fingerprint = db.get_fingerprint(self.db_path)
        if fingerprint != self.fingerprint:
            logger.info(
                "faiss_index_out_of_date",
                index_fingerprint=self.fingerprint,
                database_fingerprint=fingerprint,
            )
            await self._load_or_rebuild(fingerprint)

    async def rebuild_index(self) -> None:
        """Rebuild the vector index from embeddings stored in SQLite."""
        self.fingerprint = db.get_fingerprint(self.db_path)
        rows = db.get_all_embeddings(self.db_path)

        self.index = None
        self.dimension = None

        if not rows:
            logger.info("no_chunks_stored_index_deferred")
            return

        self._new_index(len(rows[0]["embedding"]))
        ids = np.array([row["id"] for row in rows], dtype=np.int64)
        self.index.add_with_ids(_as_matrix([row["embedding"] for row in rows]), ids)

        logger.info("faiss_index_rebuilt", vector_count=self.index.ntotal)

        await self.save_index()

    async def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If save fails
        """
        if self.index is None:
            return

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.metadata["vector_count"] = self.index.ntotal
        self.metadata["fingerprint"] = self.fingerprint

        try:
            faiss.write_index(self.index, str(self.index_path))
            with open(self.metadata_path, "w") as f:
                json.dump(self.metadata, f, indent=2)
        except Exception as e:
            raise RuntimeError(f"Failed to save FAISS index: {e}") from e

        logger.debug(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    async def upsert_chunks(self, records: List[ChunkRecord]) -> int:
        """Write records to SQLite and replace their vectors in the index.

        Raises:
            ValueError: If embedding dimensions disagree with the index
        """
        if not records:
            return 0

        dimensions = {len(record.embedding) for record in records}
        if len(dimensions) != 1 or 0 in dimensions:
            raise ValueError(f"Inconsistent embedding dimensions: {sorted(dimensions)}")

        await self._sync()

        dimension = dimensions.pop()
        if self.index is None:
            self._new_index(dimension)
        elif dimension != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {dimension}"
            )

        row_ids = db.upsert_chunks(
            [
                {
                    "url": record.url,
                    "pos": record.pos,
                    "city": record.city,
                    "category": record.category,
                    "content": record.chunk,
                    "section": record.section,
                    "tags": record.tags,
                    "embedding": record.embedding,
                }
                for record in records
            ],
            self.db_path,
        )

        fingerprint = db.get_fingerprint(self.db_path)
        if fingerprint["revision"] != self.fingerprint["revision"] + 1:
            # Another writer committed between our sync and this upsert
            await self.rebuild_index()
        else:
            ids = np.array(row_ids, dtype=np.int64)
            self.index.remove_ids(ids)
            self.index.add_with_ids(_as_matrix([r.embedding for r in records]), ids)
            self.fingerprint = fingerprint
            await self.save_index()

        logger.info(
            "chunks_upserted",
            backend=self.name,
            count=len(records),
            total_vectors=self.index.ntotal,
        )

        return len(records)

    async def search(
        self,
        query_vector: List[float],
        filters: Optional[SearchFilters] = None,
        limit: int = None,
        num_candidates: int = None,
    ) -> List[SearchHit]:
        """Search the index and post-filter candidates on metadata.

        Raises:
            ValueError: On query dimension mismatch
        """
        limit = limit or config.RETRIEVAL_TOP_K
        num_candidates = num_candidates or config.NUM_CANDIDATES
        filters = filters or SearchFilters()

        await self._sync()

        if self.index is None or self.index.ntotal == 0:
            logger.warning("empty_index_no_results")
            return []

        if len(query_vector) != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {len(query_vector)}"
            )

        k = min(max(num_candidates, limit), self.index.ntotal)
        similarities, indices = self.index.search(_as_matrix([query_vector]), k)

        candidates = [
            (int(row_id), float(similarity))
            for row_id, similarity in zip(indices[0], similarities[0])
            if row_id != -1
        ]
        rows = {
            row["id"]: row
            for row in db.get_chunks_by_ids([row_id for row_id, _ in candidates], self.db_path)
        }

        hits = []
        for row_id, similarity in candidates:
            row = rows.get(row_id)
            if row is None:
                continue
            if not filters.matches(row["city"], row["category"], row["tags"]):
                continue

            hits.append(
                SearchHit(
                    chunk=row["content"],
                    url=row["url"],
                    city=row["city"],
                    category=row["category"],
                    section=row["section"] or "",
                    tags=row["tags"],
                    score=(1.0 + similarity) / 2.0,
                    pos=row["pos"],
                )
            )
            if len(hits) >= limit:
                break

        logger.info(
            "vector_search_completed",
            backend=self.name,
            candidates=len(candidates),
            results_found=len(hits),
        )

        return hits

    async def count(self) -> int:
        return db.get_chunk_count(self.db_path)

    async def ping(self) -> bool:
        db.get_chunk_count(self.db_path)
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        return {
            "backend": self.name,
            "initialized": self.index is not None,
            "vector_count": self.index.ntotal if self.index is not None else 0,
            "dimension": self.dimension,
            "index_exists_on_disk": self.index_path.exists(),
        }
