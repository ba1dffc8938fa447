"""Gemini API client wrapper with error handling."""
import httpx
from typing import List, Dict, Optional
import structlog

from app import config

logger = structlog.get_logger()


class GeminiClient:
    """Async client for the hosted Gemini embeddings and chat API."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Gemini client.

        Args:
            api_key: API key (defaults to config.GOOGLE_API_KEY)
            base_url: API base URL (defaults to config.GEMINI_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.LLM_TIMEOUT)
            transport: Optional httpx transport (used to stub the network)
        """
        self.api_key = api_key
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.LLM_TIMEOUT
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        api_key = self.api_key or config.GOOGLE_API_KEY
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY is not configured")
        return {"x-goog-api-key": api_key}

    async def _post(self, path: str, payload: Dict) -> Dict:
        headers = self._headers()

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.post(
                f"{self.base_url}/{path}",
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
            return response.json()

    async def generate(
        self,
        prompt: str,
        model: str = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a single-turn prompt to the chat model.

        Args:
            prompt: Full prompt text
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (defaults to config.CHAT_TEMPERATURE)

        Returns:
            Concatenated text of the first candidate (empty if none)

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.CHAT_MODEL
        if temperature is None:
            temperature = config.CHAT_TEMPERATURE

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": temperature},
        }

        try:
            logger.info(
                "gemini_generate_request",
                model=model,
                prompt_length=len(prompt),
            )

            data = await self._post(f"models/{model}:generateContent", payload)

        except httpx.HTTPError as e:
            logger.error(
                "gemini_generate_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

        text = extract_candidate_text(data)

        logger.info(
            "gemini_generate_response",
            model=model,
            response_length=len(text),
        )

        return text

    async def embed_query(self, text: str, model: str = None) -> List[float]:
        """Embed a search query.

        Raises:
            httpx.HTTPError: On API errors
            RuntimeError: If the API returns no vector
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": f"models/{model}",
            "content": {"parts": [{"text": text}]},
            "taskType": "RETRIEVAL_QUERY",
        }

        try:
            data = await self._post(f"models/{model}:embedContent", payload)
        except httpx.HTTPError as e:
            logger.error("gemini_embedding_error", error=str(e), model=model)
            raise

        values = data.get("embedding", {}).get("values", [])
        if not values:
            raise RuntimeError("Empty embedding returned for query")

        logger.debug("gemini_query_embedded", model=model, dimension=len(values))

        return values

    async def embed_documents(
        self,
        texts: List[str],
        model: str = None,
        batch_size: int = None,
    ) -> List[List[float]]:
        """Embed document chunks, batching at the API request limit.

        Args:
            texts: Texts to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)
            batch_size: Texts per request (defaults to config.EMBED_BATCH_SIZE)

        Returns:
            One vector per input text, in order

        Raises:
            httpx.HTTPError: On API errors
            RuntimeError: If the API returns a different number of vectors
        """
        if not texts:
            return []

        model = model or config.EMBEDDING_MODEL
        batch_size = batch_size or config.EMBED_BATCH_SIZE

        embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            payload = {
                "requests": [
                    {
                        "model": f"models/{model}",
                        "content": {"parts": [{"text": text}]},
                        "taskType": "RETRIEVAL_DOCUMENT",
                    }
                    for text in batch
                ]
            }

            try:
                data = await self._post(f"models/{model}:batchEmbedContents", payload)
            except httpx.HTTPError as e:
                logger.error(
                    "gemini_embedding_error",
                    error=str(e),
                    model=model,
                    batch_size=len(batch),
                )
                raise

            vectors = [item.get("values", []) for item in data.get("embeddings", [])]

            if len(vectors) != len(batch) or not all(vectors):
                raise RuntimeError(
                    f"Expected {len(batch)} embeddings, got {len(vectors)}"
                )

            embeddings.extend(vectors)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    async def list_models(self) -> List[str]:
        """List model names available to the API key, following every page.

        Raises:
            httpx.HTTPError: On API errors
        """
        headers = self._headers()
        names = []
        params = {"pageSize": 1000}

        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
                while True:
                    response = await client.get(
                        f"{self.base_url}/models", headers=headers, params=params
                    )
                    response.raise_for_status()
                    data = response.json()
                    names.extend(m["name"] for m in data.get("models", []))

                    page_token = data.get("nextPageToken")
                    if not page_token:
                        return names
                    params["pageToken"] = page_token
        except httpx.HTTPError as e:
            logger.error("gemini_list_models_error", error=str(e))
            raise


def extract_candidate_text(data: Dict) -> str:
    """Join the text parts of the first candidate in a generateContent response."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""

    parts = candidates[0].get("content", {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


# Global client instance
gemini_client = GeminiClient()
