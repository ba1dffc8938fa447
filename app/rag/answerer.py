"""Answer assembly: retrieved chunks in, model answer and citations out."""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import structlog

from app import config
from app.llm_client import gemini_client
from app.rag.retriever import Retriever, get_retriever
from app.rag.store import SearchFilters, SearchHit

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are Transiter. Base your answers only on CONTEXT below. "
    "If the user's wording doesn't exactly match, look for equivalent concepts "
    "(e.g., 2-day = 48 hours). If truly no relevant info exists in CONTEXT, "
    "say you don't know. Be concise with bullet points. Include pass names, "
    "durations, coverage, and prices if present."
)


@dataclass
class Answer:
    """Model answer with the URLs it was grounded on."""

    answer: str
    sources: List[str]
    hits: List[SearchHit] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"answer": self.answer, "sources": self.sources}


def build_context(hits: List[SearchHit], max_chars: int = None) -> str:
    """Label each chunk with its position and source URL.

    Blocks are dropped whole once ``max_chars`` would be exceeded; the first
    block is truncated rather than dropped.
    """
    max_chars = max_chars or config.MAX_CONTEXT_CHARS

    blocks = []
    total_chars = 0

    for i, hit in enumerate(hits, 1):
        block = f"[[DOC {i}]] {hit.chunk}\nSRC: {hit.url or ''}"
        separator = 2 if blocks else 0

        if total_chars + separator + len(block) > max_chars:
            if not blocks:
                blocks.append(block[:max_chars])
            break

        blocks.append(block)
        total_chars += separator + len(block)

    return "\n\n".join(blocks)


def build_prompt(query: str, context: str) -> str:
    return f"{SYSTEM_PROMPT}\n\nCONTEXT:\n{context}\n\nQUESTION:\n{query}"


def citation_urls(hits: List[SearchHit], count: int = None) -> List[str]:
    """Distinct non-empty URLs among the top ``count`` hits, in rank order."""
    count = count or config.CITATION_COUNT
    urls = []
    for hit in hits[:count]:
        if hit.url and hit.url not in urls:
            urls.append(hit.url)
    return urls


class Answerer:
    """Retrieves context for a question and asks the hosted chat model."""

    def __init__(self, retriever: Optional[Retriever] = None, llm=None):
        """Initialize the answerer.

        Args:
            retriever: Retriever (default: singleton)
            llm: Client with ``generate`` (default: Gemini client)
        """
        self.retriever = retriever
        self.llm = llm or gemini_client

    async def answer(
        self, query: str, filters: Optional[SearchFilters] = None
    ) -> Answer:
        """Answer a question from retrieved chunks.

        Raises:
            RuntimeError: If retrieval fails
            httpx.HTTPError: If the chat model call fails
        """
        if self.retriever is None:
            self.retriever = await get_retriever()

        hits = await self.retriever.retrieve(query, filters=filters)
        context = build_context(hits)

        logger.info(
            "context_assembled",
            num_chunks=len(hits),
            context_length=len(context),
        )

        text = await self.llm.generate(build_prompt(query, context))

        return Answer(answer=text, sources=citation_urls(hits), hits=hits)


_answerer_instance: Optional[Answerer] = None


async def get_answerer() -> Answerer:
    """Get or create a singleton answerer."""
    global _answerer_instance
    if _answerer_instance is None:
        _answerer_instance = Answerer(retriever=await get_retriever())
    return _answerer_instance
