"""Pytest configuration and fixtures."""
from typing import Dict, List

import httpx
import pytest

from app.rag.extractor import PageExtractor
from app.rag.store_faiss import FAISSChunkStore


VOCABULARY = ["pass", "suica", "metro", "bus", "fare", "airport", "ferry", "night"]


def keyword_vector(text: str) -> List[float]:
    """Deterministic embedding: keyword counts plus a constant bias component."""
    words = text.lower().split()
    return [1.0] + [float(words.count(term)) for term in VOCABULARY]


class FakeLLM:
    """Stands in for the hosted embeddings and chat API."""

    def __init__(self, answer: str = "- Suica works on all metro lines"):
        self.answer = answer
        self.prompts: List[str] = []
        self.embedded_batches: List[List[str]] = []
        self.queries: List[str] = []

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.embedded_batches.append(list(texts))
        return [keyword_vector(text) for text in texts]

    async def embed_query(self, text: str) -> List[float]:
        self.queries.append(text)
        return keyword_vector(text)

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


class PageServer:
    """Serves canned HTML through an httpx mock transport and records requests."""

    def __init__(self, pages: Dict[str, str] = None):
        self.pages = dict(pages or {})
        self.requested: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url not in self.pages:
            return httpx.Response(404, text="not found")
        return httpx.Response(
            200, text=self.pages[url], headers={"content-type": "text/html"}
        )

    def extractor(self) -> PageExtractor:
        return PageExtractor(transport=httpx.MockTransport(self.handler))


def html_page(body: str, title: str = "Tokyo passes", heading: str = None) -> str:
    h1 = f"<h1>{heading}</h1>" if heading else ""
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><nav>Menu</nav>{h1}<div id=\"content\">{body}</div></body></html>"
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def page_server() -> PageServer:
    return PageServer()


@pytest.fixture
async def faiss_store(tmp_path) -> FAISSChunkStore:
    store = FAISSChunkStore(data_dir=tmp_path)
    await store.init_or_load()
    return store
