"""Request bodies for the HTTP API."""
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

from app import config
from app.rag.store import SearchFilters


class AskRequest(BaseModel):
    """Body of POST /ask."""

    query: str = Field(..., min_length=3, description="Question about city transit")
    city: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            city=self.city or None,
            category=self.category or None,
            tags=list(self.tags or []),
        )


class IngestRequest(BaseModel):
    """Body of POST /admin/ingest/url."""

    city: str = Field(..., min_length=2)
    category: str = Field(default_factory=lambda: config.DEFAULT_CATEGORY)
    urls: List[str] = Field(..., min_length=1)
    tags: Optional[List[str]] = None

    @field_validator("urls")
    @classmethod
    def check_urls(cls, urls: List[str]) -> List[str]:
        for url in urls:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"Invalid url: {url}")
        return urls


def validation_message(error: ValidationError) -> str:
    """Flatten a pydantic error into 'field: message' pairs."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or str(error)
