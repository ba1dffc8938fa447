"""Ingest pipeline for indexing web pages.

Orchestrates, per URL:
- Page fetching and main-text extraction
- Text chunking
- Embedding generation
- Upsert into the chunk store keyed by (url, pos)

Each URL is ingested independently; a failure is recorded in that URL's
result and the batch continues.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable
import structlog

from app import config
from app.llm_client import gemini_client
from app.rag.chunker import TextChunker
from app.rag.extractor import PageExtractor
from app.rag.store import ChunkStore, ChunkRecord, get_chunk_store

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class UrlIngestResult:
    """Outcome of ingesting a single URL."""

    url: str
    ok: bool
    chunks: int = 0
    section: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"url": self.url, "ok": self.ok, "ingestedChunks": self.chunks}
        if self.section is not None:
            data["section"] = self.section
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class IngestReport:
    """Per-URL results of an ingestion batch."""

    results: List[UrlIngestResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def ingested_chunks(self) -> int:
        return sum(result.chunks for result in self.results if result.ok)

    @property
    def failed(self) -> List[UrlIngestResult]:
        return [result for result in self.results if not result.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "ingestedChunks": self.ingested_chunks,
            "results": [result.to_dict() for result in self.results],
        }


class IngestPipeline:
    """Pipeline for ingesting web pages into the RAG system."""

    def __init__(
        self,
        store: Optional[ChunkStore] = None,
        llm=None,
        extractor: Optional[PageExtractor] = None,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Chunk store (default: configured singleton)
            llm: Client with ``embed_documents`` (default: Gemini client)
            extractor: Page extractor (default: PageExtractor())
            chunk_size: Chunk size in characters (default from config)
            chunk_overlap: Chunk overlap in characters (default from config)
        """
        self.store = store
        self.llm = llm or gemini_client
        self.extractor = extractor or PageExtractor()
        self.chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
        )

    async def _ensure_store(self) -> ChunkStore:
        if self.store is None:
            self.store = await get_chunk_store()
        return self.store

    async def ingest_url(
        self,
        url: str,
        city: str,
        category: str = None,
        tags: Optional[List[str]] = None,
    ) -> UrlIngestResult:
        """Fetch, chunk, embed and upsert a single URL.

        Returns:
            UrlIngestResult with the number of chunks written

        Raises:
            Exception: Any fetch, embedding or store failure
        """
        category = category or config.DEFAULT_CATEGORY
        tags = list(tags or [])

        logger.info("ingesting_url", url=url, city=city, category=category)

        page = await self.extractor.extract(url)
        chunks = self.chunker.chunk_text(page.text)

        if not chunks:
            logger.warning("no_chunks_created", url=url)
            return UrlIngestResult(url=url, ok=True, chunks=0, section=page.title)

        embeddings = await self.llm.embed_documents([chunk.content for chunk in chunks])

        if len(embeddings) != len(chunks):
            raise RuntimeError(
                f"Embedding count mismatch: {len(embeddings)} for {len(chunks)} chunks"
            )

        records = [
            ChunkRecord(
                city=city,
                category=category,
                url=url,
                chunk=chunk.content,
                pos=chunk.chunk_index,
                section=page.title,
                tags=tags,
                embedding=embedding,
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        store = await self._ensure_store()
        written = await store.upsert_chunks(records)

        logger.info(
            "url_ingested",
            url=url,
            section=page.title,
            chunks_created=written,
        )

        return UrlIngestResult(url=url, ok=True, chunks=written, section=page.title)

    async def ingest_urls(
        self,
        urls: List[str],
        city: str,
        category: str = None,
        tags: Optional[List[str]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestReport:
        """Ingest URLs in order, collecting a tagged result for each.

        Args:
            urls: Page URLs to ingest
            city: City every chunk is filed under
            category: Category (default from config)
            tags: Tags stored in each chunk's metadata
            progress_callback: Optional callback(current, total, url)

        Returns:
            IngestReport with one result per URL
        """
        report = IngestReport()

        logger.info("starting_ingest_batch", url_count=len(urls), city=city)

        for idx, url in enumerate(urls, 1):
            if progress_callback:
                progress_callback(idx, len(urls), url)

            try:
                result = await self.ingest_url(url, city, category=category, tags=tags)
            except Exception as e:
                logger.error(
                    "url_ingestion_failed",
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = UrlIngestResult(url=url, ok=False, error=str(e) or type(e).__name__)

            report.results.append(result)

        logger.info(
            "ingest_batch_completed",
            url_count=len(urls),
            urls_failed=len(report.failed),
            ingested_chunks=report.ingested_chunks,
        )

        return report


# Singleton instance for convenience
_pipeline_instance: Optional[IngestPipeline] = None


async def get_ingest_pipeline() -> IngestPipeline:
    """Get or create a singleton ingest pipeline bound to the configured store."""
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = IngestPipeline(store=await get_chunk_store())
    return _pipeline_instance
