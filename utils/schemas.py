"""
Pydantic Schemas - Data Validation Models

Defines the Pydantic schemas passed between the store, the worker, the
dispatcher and the schedulers:
- Article and tag records read from the store
- Extraction results from the readability layer
- LLM collaborator results
- Completion events published to Redis
- Sweep and cleanup reports

Usage:
    from utils.schemas import Article

    article = Article.from_row(row)
    if article.status is ArticleStatus.COMPLETED:
        ...
"""

import sqlite3
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from utils.states import ArticleStatus


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class ReadingPosition(BaseModel):
    """Where the reader stopped: a DOM element index and a character offset."""

    element: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)


class Tag(BaseModel):
    id: str
    user_id: str
    name: str
    auto_generated: bool = True


class Article(BaseModel):
    """Article record as stored.

    Timestamps are stored as unix epoch floats and exposed as aware datetimes.
    """

    id: str
    user_id: str
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    site_name: Optional[str] = None
    image_url: Optional[str] = None
    language: Optional[str] = None
    word_count: Optional[int] = None
    reading_time_seconds: Optional[int] = None
    status: ArticleStatus = ArticleStatus.PENDING
    processing_attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    rating: Literal[-1, 0, 1] = 0
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    reading_position: Optional[ReadingPosition] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Article":
        data = dict(row)
        position = None
        if data.get("reading_position_element") is not None:
            position = ReadingPosition(
                element=data["reading_position_element"],
                offset=data.get("reading_position_offset") or 0,
            )
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            url=data["url"],
            title=data.get("title"),
            description=data.get("description"),
            site_name=data.get("site_name"),
            image_url=data.get("image_url"),
            language=data.get("language"),
            word_count=data.get("word_count"),
            reading_time_seconds=data.get("reading_time_seconds"),
            status=ArticleStatus(data["status"]),
            processing_attempts=data["processing_attempts"],
            last_error=data.get("last_error"),
            archived=bool(data.get("archived")),
            archived_at=_from_epoch(data.get("archived_at")),
            rating=data.get("rating") or 0,
            created_at=_from_epoch(data["created_at"]),
            updated_at=_from_epoch(data["updated_at"]),
            processed_at=_from_epoch(data.get("processed_at")),
            read_at=_from_epoch(data.get("read_at")),
            reading_position=position,
        )


class ArticleWithTags(Article):
    tags: list[Tag] = Field(default_factory=list)


class ArticleMetadata(BaseModel):
    """Metadata written on completion."""

    title: Optional[str] = None
    description: Optional[str] = None
    site_name: Optional[str] = None
    image_url: Optional[str] = None
    language: Optional[str] = None
    word_count: int = 0
    reading_time_seconds: int = 0


class ExtractedContent(BaseModel):
    """Result of the readability layer for a fetched page."""

    title: str
    content: str
    text_content: str
    excerpt: Optional[str] = None
    byline: Optional[str] = None
    site_name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    language: Optional[str] = None


class TagExtraction(BaseModel):
    """Tagging collaborator output."""

    tags: list[str] = Field(default_factory=list)
    language: str = "en"
    confidence: float = 0.0

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        """Lowercase, strip and dedupe while keeping order."""
        seen: dict[str, None] = {}
        for tag in v:
            name = str(tag).strip().lower()
            if name:
                seen.setdefault(name, None)
        return list(seen)

    @field_validator("language")
    @classmethod
    def normalize_language(cls, v: str) -> str:
        return (v or "en").strip().lower()


class SummaryResult(BaseModel):
    one_sentence: str = Field(..., alias="oneSentence")
    one_paragraph: str = Field(..., alias="oneParagraph")
    long: str

    model_config = {"populate_by_name": True}


class ArticleEvent(BaseModel):
    """Completion event payload.

    Standard format:
    {
        "type": "article_completed" | "article_failed",
        "article_id": "6f1c...",
        "user_id": "u-1",
        "error": null,
        "ts": "2025-01-15T03:15:02Z"
    }
    """

    type: Literal["article_completed", "article_failed"]
    article_id: str
    user_id: Optional[str] = None
    error: Optional[str] = None
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CleanupReport(BaseModel):
    scanned: int = 0
    deleted: int = 0
    errors: int = 0


class SweepReport(BaseModel):
    retried: list[str] = Field(default_factory=list)
    terminalized: list[str] = Field(default_factory=list)
    errors: int = 0
