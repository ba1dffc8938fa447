"""Main Quart application for the transit question-answering API."""
import hmac

from quart import Quart, request, jsonify
from quart_cors import cors
from pydantic import ValidationError
import structlog

from app import config
from app.llm_client import gemini_client
from app.log import configure_logging
from app.rag.answerer import get_answerer
from app.rag.ingest import get_ingest_pipeline
from app.rag.store import get_chunk_store, close_chunk_store
from app.schemas import AskRequest, IngestRequest, validation_message

configure_logging()

logger = structlog.get_logger()

app = cors(Quart(__name__), allow_origin="*")
app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024


def _is_authorized(token: str) -> bool:
    """Constant-time admin token check; no configured token rejects all."""
    expected = config.ADMIN_TOKEN
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode(), expected.encode())


async def _json_body():
    return await request.get_json(force=True, silent=True)


@app.route("/healthz")
async def healthz():
    """Liveness probe."""
    return jsonify({"ok": True})


@app.route("/ask", methods=["POST"])
async def ask():
    """Answer a transit question from ingested pages.

    Expects JSON body:
    {
        "query": "question text (min 3 chars)",
        "city": "optional city filter",
        "category": "optional category filter",
        "tags": ["optional", "tags"]  // all must be present on a chunk
    }

    Returns JSON:
    {
        "answer": "model answer",
        "sources": ["https://...", ...]  // up to 5 URLs
    }
    """
    try:
        body = AskRequest.model_validate(await _json_body() or {})
    except ValidationError as e:
        logger.warning("ask_validation_failed", error=validation_message(e))
        return jsonify({"error": validation_message(e)}), 400

    logger.info(
        "ask_request_received",
        query_length=len(body.query),
        city=body.city,
        category=body.category,
        tags=body.tags,
    )

    try:
        answerer = await get_answerer()
        result = await answerer.answer(body.query, filters=body.to_filters())

    except Exception as e:
        logger.error("ask_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": str(e) or type(e).__name__}), 400

    logger.info(
        "ask_response_sent",
        answer_length=len(result.answer),
        num_sources=len(result.sources),
    )

    return jsonify(result.to_dict())


@app.route("/admin/ingest/url", methods=["POST"])
async def ingest_url():
    """Fetch, chunk, embed and store pages.

    Requires header ``x-admin-token``.

    Expects JSON body:
    {
        "city": "Tokyo",
        "category": "Transit",  // optional
        "urls": ["https://..."],
        "tags": ["passes"]  // optional
    }

    Returns JSON:
    {
        "ok": true,  // false if any URL failed
        "ingestedChunks": 12,
        "results": [{"url": "...", "ok": true, "ingestedChunks": 12, "section": "..."}]
    }
    """
    if not _is_authorized(request.headers.get("x-admin-token", "")):
        logger.warning("ingest_unauthorized", remote_addr=request.remote_addr)
        return jsonify({"error": "unauthorized"}), 401

    try:
        body = IngestRequest.model_validate(await _json_body() or {})
    except ValidationError as e:
        logger.warning("ingest_validation_failed", error=validation_message(e))
        return jsonify({"error": validation_message(e)}), 400

    try:
        pipeline = await get_ingest_pipeline()
        report = await pipeline.ingest_urls(
            body.urls,
            city=body.city,
            category=body.category,
            tags=body.tags,
        )

    except Exception as e:
        logger.error("ingest_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": str(e) or type(e).__name__}), 400

    return jsonify(report.to_dict())


@app.route("/health/ready")
async def health_ready():
    """Readiness check - verify the store and hosted model API are reachable."""
    checks = {"status": "healthy", "store": False, "llm": False}

    try:
        store = await get_chunk_store()
        checks["store"] = await store.ping()
        checks["store_backend"] = store.name

        models = await gemini_client.list_models()
        checks["llm"] = True
        if not any(name.endswith(config.CHAT_MODEL) for name in models):
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing chat model: {config.CHAT_MODEL}"

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


@app.errorhandler(404)
async def not_found(error):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(405)
async def method_not_allowed(error):
    return jsonify({"error": "Method not allowed"}), 405


@app.after_serving
async def shutdown():
    await close_chunk_store()


def run() -> None:
    """Run the development server."""
    logger.info("api_listening", host=config.HOST, port=config.PORT)
    app.run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
