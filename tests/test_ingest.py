"""Tests for the URL ingestion pipeline."""
import pytest

from app.rag.ingest import IngestPipeline, IngestReport, UrlIngestResult
from app.rag.store import SearchFilters
from tests.conftest import PageServer, html_page, keyword_vector

PASS_URL = "https://transit.example/tokyo/passes"
BUS_URL = "https://transit.example/tokyo/bus"
EMPTY_URL = "https://transit.example/empty"
MISSING_URL = "https://transit.example/missing"

# 1000 characters of page text: two chunks at 900/120
PASS_TEXT = ("pass " * 200)[:-1] + "."

# 149 characters: one chunk
BUS_TEXT = ("night bus fare " * 10).strip()


@pytest.fixture
def server() -> PageServer:
    return PageServer({
        PASS_URL: html_page(PASS_TEXT, heading="Tokyo Subway Ticket"),
        BUS_URL: html_page(BUS_TEXT, title="Night buses"),
        EMPTY_URL: "<html><head></head><body></body></html>",
    })


@pytest.fixture
def pipeline(faiss_store, fake_llm, server) -> IngestPipeline:
    return IngestPipeline(store=faiss_store, llm=fake_llm, extractor=server.extractor())


async def test_ingest_url_stores_chunks_with_metadata(pipeline, faiss_store):
    result = await pipeline.ingest_url(PASS_URL, "Tokyo", tags=["rail"])

    assert result == UrlIngestResult(
        url=PASS_URL, ok=True, chunks=2, section="Tokyo Subway Ticket"
    )

    hits = await faiss_store.search(keyword_vector("pass"))
    assert sorted(hit.pos for hit in hits) == [0, 1]
    assert all(hit.category == "Transit" for hit in hits)
    assert all(hit.tags == ["rail"] for hit in hits)
    assert all(hit.section == "Tokyo Subway Ticket" for hit in hits)
    assert sorted(len(hit.chunk) for hit in hits) == [220, 900]


async def test_reingesting_same_url_does_not_duplicate(pipeline, faiss_store):
    await pipeline.ingest_urls([PASS_URL], city="Tokyo")
    report = await pipeline.ingest_urls([PASS_URL], city="Tokyo")

    assert report.ingested_chunks == 2
    assert await faiss_store.count() == 2


async def test_failing_url_does_not_abort_batch(pipeline, faiss_store):
    report = await pipeline.ingest_urls([PASS_URL, MISSING_URL, BUS_URL], city="Tokyo")

    assert [result.ok for result in report.results] == [True, False, True]
    assert "404" in report.results[1].error
    assert report.ok is False
    assert report.ingested_chunks == 3
    assert await faiss_store.count() == 3


async def test_empty_page_ingests_nothing(pipeline, fake_llm, faiss_store):
    report = await pipeline.ingest_urls([EMPTY_URL], city="Tokyo")

    assert report.ok is True
    assert report.ingested_chunks == 0
    assert report.results[0].section == "General"
    assert fake_llm.embedded_batches == []
    assert await faiss_store.count() == 0


async def test_custom_category_and_city_filter(pipeline, faiss_store):
    await pipeline.ingest_urls([BUS_URL], city="Osaka", category="Buses")
    await pipeline.ingest_urls([PASS_URL], city="Tokyo")

    hits = await faiss_store.search(
        keyword_vector("bus"), filters=SearchFilters(city="Osaka", category="Buses")
    )

    assert [hit.url for hit in hits] == [BUS_URL]


async def test_embedding_failure_recorded(faiss_store, server):
    class BrokenLLM:
        async def embed_documents(self, texts):
            raise RuntimeError("quota exceeded")

    pipeline = IngestPipeline(store=faiss_store, llm=BrokenLLM(), extractor=server.extractor())

    report = await pipeline.ingest_urls([BUS_URL], city="Tokyo")

    assert report.results[0].ok is False
    assert report.results[0].error == "quota exceeded"
    assert await faiss_store.count() == 0


async def test_progress_callback_called_per_url(pipeline):
    calls = []

    await pipeline.ingest_urls(
        [BUS_URL, EMPTY_URL],
        city="Tokyo",
        progress_callback=lambda current, total, url: calls.append((current, total, url)),
    )

    assert calls == [(1, 2, BUS_URL), (2, 2, EMPTY_URL)]


def test_report_serialization():
    report = IngestReport(results=[
        UrlIngestResult(url="https://a.example", ok=True, chunks=4, section="Fares"),
        UrlIngestResult(url="https://b.example", ok=False, error="timeout"),
    ])

    assert report.to_dict() == {
        "ok": False,
        "ingestedChunks": 4,
        "results": [
            {"url": "https://a.example", "ok": True, "ingestedChunks": 4, "section": "Fares"},
            {"url": "https://b.example", "ok": False, "ingestedChunks": 0, "error": "timeout"},
        ],
    }


async def test_text_within_overlap_yields_no_chunks(faiss_store, fake_llm):
    url = "https://transit.example/stub"
    server = PageServer({url: html_page("Metro map coming soon")})
    pipeline = IngestPipeline(store=faiss_store, llm=fake_llm, extractor=server.extractor())

    result = await pipeline.ingest_url(url, "Tokyo")

    assert result.ok is True
    assert result.chunks == 0
    assert fake_llm.embedded_batches == []
