"""Tests for the HTTP API using Quart's test client."""
import httpx
import pytest

import app.main as main
from app import config
from app.llm_client import GeminiClient
from app.rag.answerer import Answer
from app.rag.ingest import IngestPipeline
from tests.conftest import PageServer, html_page

ADMIN_TOKEN = "s3cret"
PAGE_URL = "https://transit.example/tokyo/passes"


class StubAnswerer:
    def __init__(self, error: Exception = None):
        self.error = error
        self.calls = []

    async def answer(self, query, filters=None):
        self.calls.append((query, filters))
        if self.error:
            raise self.error
        return Answer(answer="- 24h ticket: 800 yen", sources=["https://a.example"])


@pytest.fixture
def client():
    return main.app.test_client()


@pytest.fixture
def answerer(monkeypatch) -> StubAnswerer:
    stub = StubAnswerer()

    async def get_answerer():
        return stub

    monkeypatch.setattr(main, "get_answerer", get_answerer)
    return stub


@pytest.fixture
def server() -> PageServer:
    return PageServer({PAGE_URL: html_page("pass " * 300, heading="Tokyo Subway Ticket")})


@pytest.fixture
def pipeline(monkeypatch, faiss_store, fake_llm, server) -> IngestPipeline:
    monkeypatch.setattr(config, "ADMIN_TOKEN", ADMIN_TOKEN)
    pipeline = IngestPipeline(store=faiss_store, llm=fake_llm, extractor=server.extractor())

    async def get_ingest_pipeline():
        return pipeline

    monkeypatch.setattr(main, "get_ingest_pipeline", get_ingest_pipeline)
    return pipeline


async def test_healthz(client):
    response = await client.get("/healthz")

    assert response.status_code == 200
    assert await response.get_json() == {"ok": True}


async def test_ask_returns_answer_and_sources(client, answerer):
    response = await client.post(
        "/ask",
        json={"query": "day pass price", "city": "Tokyo", "tags": ["rail"]},
    )

    assert response.status_code == 200
    assert await response.get_json() == {
        "answer": "- 24h ticket: 800 yen",
        "sources": ["https://a.example"],
    }

    query, filters = answerer.calls[0]
    assert query == "day pass price"
    assert filters.city == "Tokyo"
    assert filters.category is None
    assert filters.tags == ["rail"]


async def test_ask_rejects_short_query(client, answerer):
    response = await client.post("/ask", json={"query": "hi"})

    assert response.status_code == 400
    assert "query" in (await response.get_json())["error"]
    assert answerer.calls == []


async def test_ask_rejects_non_json_body(client, answerer):
    response = await client.post("/ask", data="not json")

    assert response.status_code == 400
    assert answerer.calls == []


async def test_ask_failures_surface_as_client_error(client, monkeypatch):
    stub = StubAnswerer(error=RuntimeError("Retrieval failed: store down"))

    async def get_answerer():
        return stub

    monkeypatch.setattr(main, "get_answerer", get_answerer)

    response = await client.post("/ask", json={"query": "night bus"})

    assert response.status_code == 400
    assert (await response.get_json())["error"] == "Retrieval failed: store down"


@pytest.mark.parametrize("headers", [{}, {"x-admin-token": "wrong"}])
async def test_ingest_unauthorized_before_any_fetch(client, pipeline, server, headers):
    response = await client.post(
        "/admin/ingest/url",
        json={"city": "Tokyo", "urls": [PAGE_URL]},
        headers=headers,
    )

    assert response.status_code == 401
    assert await response.get_json() == {"error": "unauthorized"}
    assert server.requested == []


async def test_ingest_rejected_when_no_token_configured(client, pipeline, server, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", "")

    response = await client.post(
        "/admin/ingest/url",
        json={"city": "Tokyo", "urls": [PAGE_URL]},
        headers={"x-admin-token": ""},
    )

    assert response.status_code == 401
    assert server.requested == []


async def test_ingest_stores_chunks(client, pipeline, faiss_store):
    response = await client.post(
        "/admin/ingest/url",
        json={"city": "Tokyo", "urls": [PAGE_URL], "tags": ["rail"]},
        headers={"x-admin-token": ADMIN_TOKEN},
    )

    body = await response.get_json()
    assert response.status_code == 200
    assert body["ok"] is True
    assert body["ingestedChunks"] == 2
    assert body["results"] == [
        {"url": PAGE_URL, "ok": True, "ingestedChunks": 2, "section": "Tokyo Subway Ticket"}
    ]
    assert await faiss_store.count() == 2


async def test_ingest_reports_per_url_failures(client, pipeline):
    missing = "https://transit.example/missing"

    response = await client.post(
        "/admin/ingest/url",
        json={"city": "Tokyo", "urls": [missing, PAGE_URL]},
        headers={"x-admin-token": ADMIN_TOKEN},
    )

    body = await response.get_json()
    assert response.status_code == 200
    assert body["ok"] is False
    assert body["ingestedChunks"] == 2
    assert [r["ok"] for r in body["results"]] == [False, True]
    assert "error" in body["results"][0]


@pytest.mark.parametrize("payload", [
    {"city": "T", "urls": [PAGE_URL]},
    {"city": "Tokyo", "urls": []},
    {"city": "Tokyo", "urls": ["ftp://transit.example/file"]},
    {"city": "Tokyo"},
])
async def test_ingest_validation_errors(client, pipeline, server, payload):
    response = await client.post(
        "/admin/ingest/url",
        json=payload,
        headers={"x-admin-token": ADMIN_TOKEN},
    )

    assert response.status_code == 400
    assert (await response.get_json())["error"]
    assert server.requested == []


async def test_unknown_route_is_json_404(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert await response.get_json() == {"error": "Not found"}


def models_api(monkeypatch, status_code=200, models=("models/gemini-2.5-flash",)):
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"message": "unavailable"}})
        return httpx.Response(200, json={"models": [{"name": name} for name in models]})

    monkeypatch.setattr(config, "CHAT_MODEL", "gemini-2.5-flash")
    monkeypatch.setattr(main, "gemini_client", GeminiClient(
        api_key="test-key",
        base_url="https://api.example/v1beta",
        transport=httpx.MockTransport(handler),
    ))


@pytest.fixture
def ready_store(monkeypatch, faiss_store):
    async def get_chunk_store():
        return faiss_store

    monkeypatch.setattr(main, "get_chunk_store", get_chunk_store)
    return faiss_store


async def test_ready_when_store_and_model_available(client, ready_store, monkeypatch):
    models_api(monkeypatch)

    response = await client.get("/health/ready")

    assert response.status_code == 200
    assert await response.get_json() == {
        "status": "healthy",
        "store": True,
        "store_backend": "faiss",
        "llm": True,
    }


async def test_not_ready_when_chat_model_missing(client, ready_store, monkeypatch):
    models_api(monkeypatch, models=("models/text-embedding-004",))

    response = await client.get("/health/ready")

    body = await response.get_json()
    assert response.status_code == 503
    assert body["status"] == "unhealthy"
    assert body["llm"] is True
    assert "gemini-2.5-flash" in body["error"]


async def test_not_ready_when_model_api_fails(client, ready_store, monkeypatch):
    models_api(monkeypatch, status_code=500)

    response = await client.get("/health/ready")

    body = await response.get_json()
    assert response.status_code == 503
    assert body["store"] is True
    assert body["llm"] is False
    assert body["error"]


async def test_not_ready_when_store_unreachable(client, monkeypatch):
    models_api(monkeypatch)

    async def get_chunk_store():
        raise RuntimeError("store down")

    monkeypatch.setattr(main, "get_chunk_store", get_chunk_store)

    response = await client.get("/health/ready")

    assert response.status_code == 503
    assert (await response.get_json())["error"] == "store down"
