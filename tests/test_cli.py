"""Tests for the ingest_urls command-line script."""
import argparse
import importlib.util
from pathlib import Path

import pytest

SCRIPT_PATH = Path(__file__).parent.parent / "scripts" / "ingest_urls.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("ingest_urls", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_read_urls_merges_arguments_and_file(script, tmp_path):
    url_file = tmp_path / "urls.txt"
    url_file.write_text(
        "# Tokyo pages\nhttps://b.example/fares\n\n  https://c.example/bus  \n",
        encoding="utf-8",
    )
    args = argparse.Namespace(urls=["https://a.example/pass"], file=url_file)

    assert script.read_urls(args) == [
        "https://a.example/pass",
        "https://b.example/fares",
        "https://c.example/bus",
    ]


def test_read_urls_without_file(script):
    args = argparse.Namespace(urls=[], file=None)

    assert script.read_urls(args) == []


def test_progress_reporter_summary(script, capsys):
    from app.rag.ingest import IngestReport, UrlIngestResult

    reporter = script.ProgressReporter()
    reporter.start("Ingesting")
    reporter.update(1, 2, "https://a.example/pass")
    reporter.finish(IngestReport(results=[
        UrlIngestResult(url="https://a.example/pass", ok=True, chunks=3),
        UrlIngestResult(url="https://b.example/gone", ok=False, error="404"),
    ]))

    output = capsys.readouterr().out
    assert "Chunks stored:   3" in output
    assert "URLs failed:     1" in output
    assert "1 URL(s) failed" in output
