"""
Article Store - SQLite-backed article, tag and summary repository.

Every public method runs in its own connection and transaction. Status
changes are guarded in SQL with the source states allowed by
``utils.states`` so concurrent workers for the same article (a submission
racing the retry sweep) can only ever land idempotent terminal writes:
a write whose guard no longer matches touches zero rows and returns False.
"""

import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Sequence

import orjson

from utils.db import get_conn
from utils.errors import NotFoundError, ValidationError
from utils.schemas import (
    Article,
    ArticleMetadata,
    ArticleWithTags,
    ReadingPosition,
    SummaryResult,
    Tag,
)
from utils.states import ACTIVE_STATUSES, ArticleStatus, sources_for

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

_TAGS_JSON = """
    COALESCE((
        SELECT json_group_array(json_object(
            'id', t.id,
            'user_id', t.user_id,
            'name', t.name,
            'auto_generated', t.auto_generated
        ))
        FROM article_tags at
        JOIN tags t ON t.id = at.tag_id
        WHERE at.article_id = a.id
    ), '[]') AS tags_json
"""


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally with ESCAPE '\\'."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


def _status_values(statuses: Iterable[ArticleStatus]) -> list[str]:
    return [status.value for status in statuses]


def _with_tags(row: sqlite3.Row) -> ArticleWithTags:
    article = Article.from_row(row)
    tags = [
        Tag(
            id=tag["id"],
            user_id=tag["user_id"],
            name=tag["name"],
            auto_generated=bool(tag["auto_generated"]),
        )
        for tag in orjson.loads(row["tags_json"])
    ]
    tags.sort(key=lambda tag: tag.name)
    return ArticleWithTags(**article.model_dump(), tags=tags)


class ArticleStore:
    """Repository over the articles/tags/article_tags/article_summaries tables."""

    def __init__(self, db_path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        conn = get_conn(self.db_path)
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── Articles ────────────────────────────────────────────────

    def create_article(
        self,
        user_id: str,
        url: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        site_name: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Article:
        """Insert a pending article and return it."""
        if not user_id:
            raise ValidationError("user_id is required", {"user_id": "missing"})
        if not url:
            raise ValidationError("url is required", {"url": "missing"})

        article_id = str(uuid.uuid4())
        now = self._clock()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO articles (
                    id, user_id, url, title, description, site_name, image_url,
                    status, processing_attempts, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    article_id, user_id, url, title, description, site_name, image_url,
                    ArticleStatus.PENDING.value, now, now,
                ),
            )
        logger.info("Article created", extra={"article_id": article_id, "user_id": user_id})
        return self.get_article(article_id)

    def get_article(self, article_id: str) -> Article:
        """Load an article regardless of owner. Internal pipeline use only."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        if row is None:
            raise NotFoundError("Article", article_id)
        return Article.from_row(row)

    def get_article_for_user(self, article_id: str, user_id: str) -> ArticleWithTags:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT a.*, {_TAGS_JSON} FROM articles a WHERE a.id = ? AND a.user_id = ?",
                (article_id, user_id),
            ).fetchone()
        if row is None:
            raise NotFoundError("Article", article_id)
        return _with_tags(row)

    def delete_article(self, article_id: str, user_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM articles WHERE id = ? AND user_id = ?", (article_id, user_id)
            )
        return cursor.rowcount > 0

    def list_articles(
        self,
        user_id: str,
        *,
        statuses: Optional[Sequence[ArticleStatus]] = (ArticleStatus.COMPLETED,),
        archived: Optional[bool] = None,
        tag: Optional[str] = None,
        article_ids: Optional[Iterable[str]] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ArticleWithTags]:
        """Filtered, paginated read of a user's articles with their tags, newest first."""
        conditions = ["a.user_id = ?"]
        params: list[object] = [user_id]

        if statuses:
            values = _status_values(statuses)
            conditions.append(f"a.status IN ({_placeholders(values)})")
            params.extend(values)

        if archived is not None:
            conditions.append("a.archived = ?")
            params.append(1 if archived else 0)

        if tag:
            conditions.append(
                """
                EXISTS (
                    SELECT 1 FROM article_tags at
                    JOIN tags t ON t.id = at.tag_id
                    WHERE at.article_id = a.id AND t.user_id = ? AND t.name = ? COLLATE NOCASE
                )
                """
            )
            params.extend([user_id, tag.strip()])

        if article_ids is not None:
            ids = list(article_ids)
            if not ids:
                return []
            conditions.append(f"a.id IN ({_placeholders(ids)})")
            params.extend(ids)

        params.extend([limit, offset])
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT a.*, {_TAGS_JSON}
                FROM articles a
                WHERE {" AND ".join(conditions)}
                ORDER BY a.created_at DESC, a.id
                LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()
        return [_with_tags(row) for row in rows]

    def search_metadata(self, user_id: str, query: str) -> set[str]:
        """Ids of the user's articles whose title, description or summary contain ``query``."""
        needle = query.strip()
        if not needle:
            return set()

        pattern = f"%{escape_like(needle)}%"
        with self._transaction() as conn:
            rows = conn.execute(
                r"""
                SELECT a.id
                FROM articles a
                LEFT JOIN article_summaries s ON s.article_id = a.id
                WHERE a.user_id = ?
                  AND (
                    a.title LIKE ? ESCAPE '\'
                    OR a.description LIKE ? ESCAPE '\'
                    OR s.one_sentence LIKE ? ESCAPE '\'
                    OR s.one_paragraph LIKE ? ESCAPE '\'
                    OR s.long LIKE ? ESCAPE '\'
                  )
                """,
                (user_id, pattern, pattern, pattern, pattern, pattern),
            ).fetchall()
        return {row["id"] for row in rows}

    # ── Lifecycle writes ────────────────────────────────────────

    def claim_for_processing(self, article_id: str) -> Optional[Article]:
        """Move an article to processing and count the attempt.

        Returns None when the article is gone or no longer claimable
        (another worker completed it, or the sweep terminalized it).
        """
        sources = _status_values(sources_for(ArticleStatus.PROCESSING))
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles
                SET status = ?, processing_attempts = processing_attempts + 1, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(sources)})
                """,
                [ArticleStatus.PROCESSING.value, self._clock(), article_id, *sources],
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        return Article.from_row(row)

    def complete_article(
        self,
        article_id: str,
        metadata: ArticleMetadata,
        tag_names: Sequence[str] = (),
    ) -> bool:
        """Write metadata, replace the tag set and mark completed in one transaction.

        The previous tag set is deleted before the new one is inserted, so
        a second completion leaves exactly its own tags attached.
        """
        sources = _status_values(sources_for(ArticleStatus.COMPLETED))
        now = self._clock()
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT user_id FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
            if row is None:
                return False
            user_id = row["user_id"]

            cursor = conn.execute(
                f"""
                UPDATE articles
                SET title = ?, description = ?, site_name = ?, image_url = ?, language = ?,
                    word_count = ?, reading_time_seconds = ?,
                    status = ?, processed_at = ?, updated_at = ?, last_error = NULL
                WHERE id = ? AND status IN ({_placeholders(sources)})
                """,
                [
                    metadata.title, metadata.description, metadata.site_name,
                    metadata.image_url, metadata.language,
                    metadata.word_count, metadata.reading_time_seconds,
                    ArticleStatus.COMPLETED.value, now, now,
                    article_id, *sources,
                ],
            )
            if cursor.rowcount == 0:
                return False

            conn.execute("DELETE FROM article_tags WHERE article_id = ?", (article_id,))
            for tag in self._ensure_tags(conn, user_id, tag_names):
                conn.execute(
                    "INSERT OR IGNORE INTO article_tags (article_id, tag_id, created_at) "
                    "VALUES (?, ?, ?)",
                    (article_id, tag.id, now),
                )
        return True

    def mark_failed(self, article_id: str, error: str) -> bool:
        """Record a failed attempt. No-op once the article is completed, errored or deleted."""
        sources = _status_values(sources_for(ArticleStatus.FAILED))
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles SET status = ?, last_error = ?, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(sources)})
                """,
                [ArticleStatus.FAILED.value, error, self._clock(), article_id, *sources],
            )
        return cursor.rowcount > 0

    def mark_error(self, article_id: str, error: str) -> bool:
        """Terminalize an article that will not be retried again."""
        sources = _status_values(sources_for(ArticleStatus.ERROR))
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE articles SET status = ?, last_error = ?, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(sources)})
                """,
                [ArticleStatus.ERROR.value, error, self._clock(), article_id, *sources],
            )
        return cursor.rowcount > 0

    def find_stuck(self, updated_before: float, max_attempts: int) -> list[Article]:
        """Active articles untouched since ``updated_before`` with attempts left."""
        statuses = _status_values(ACTIVE_STATUSES)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM articles
                WHERE status IN ({_placeholders(statuses)})
                  AND updated_at < ?
                  AND processing_attempts < ?
                ORDER BY updated_at
                """,
                [*statuses, updated_before, max_attempts],
            ).fetchall()
        return [Article.from_row(row) for row in rows]

    def find_exhausted(self, max_attempts: int) -> list[Article]:
        """Non-terminal articles that have used up their attempts."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM articles
                WHERE status NOT IN (?, ?) AND processing_attempts >= ?
                ORDER BY updated_at
                """,
                (ArticleStatus.COMPLETED.value, ArticleStatus.ERROR.value, max_attempts),
            ).fetchall()
        return [Article.from_row(row) for row in rows]

    # ── Reader state ────────────────────────────────────────────

    def _update_owned(self, article_id: str, user_id: str, assignments: str, params: list) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE articles SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
                [*params, self._clock(), article_id, user_id],
            )
        if cursor.rowcount == 0:
            raise NotFoundError("Article", article_id)

    def mark_read(self, article_id: str, user_id: str) -> None:
        self._update_owned(article_id, user_id, "read_at = ?", [self._clock()])

    def toggle_archive(self, article_id: str, user_id: str) -> bool:
        """Flip the archived flag; returns the new value."""
        article = self.get_article_for_user(article_id, user_id)
        archived = not article.archived
        self._update_owned(
            article_id,
            user_id,
            "archived = ?, archived_at = ?",
            [1 if archived else 0, self._clock() if archived else None],
        )
        return archived

    def set_rating(self, article_id: str, user_id: str, rating: int) -> None:
        if rating not in (-1, 0, 1):
            raise ValidationError("rating must be -1, 0 or 1", {"rating": str(rating)})
        self._update_owned(article_id, user_id, "rating = ?", [rating])

    def set_reading_position(
        self, article_id: str, user_id: str, position: Optional[ReadingPosition]
    ) -> None:
        element = position.element if position else None
        offset = position.offset if position else None
        self._update_owned(
            article_id,
            user_id,
            "reading_position_element = ?, reading_position_offset = ?",
            [element, offset],
        )

    # ── Tags ────────────────────────────────────────────────────

    def _ensure_tags(
        self, conn: sqlite3.Connection, user_id: str, names: Iterable[str]
    ) -> list[Tag]:
        tags: list[Tag] = []
        seen: set[str] = set()
        for raw in names:
            name = raw.strip().lower()
            if not name or name in seen:
                continue
            seen.add(name)
            conn.execute(
                "INSERT OR IGNORE INTO tags (id, user_id, name, auto_generated, created_at) "
                "VALUES (?, ?, ?, 1, ?)",
                (str(uuid.uuid4()), user_id, name, self._clock()),
            )
            row = conn.execute(
                "SELECT * FROM tags WHERE user_id = ? AND name = ? COLLATE NOCASE",
                (user_id, name),
            ).fetchone()
            tags.append(
                Tag(
                    id=row["id"],
                    user_id=row["user_id"],
                    name=row["name"],
                    auto_generated=bool(row["auto_generated"]),
                )
            )
        return tags

    def get_or_create_tag(self, user_id: str, name: str) -> Tag:
        if not name.strip():
            raise ValidationError("tag name is required", {"name": "empty"})
        with self._transaction() as conn:
            return self._ensure_tags(conn, user_id, [name])[0]

    def get_user_tags(self, user_id: str) -> list[Tag]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM tags WHERE user_id = ? ORDER BY name", (user_id,)
            ).fetchall()
        return [
            Tag(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"],
                auto_generated=bool(row["auto_generated"]),
            )
            for row in rows
        ]

    # ── Summaries ───────────────────────────────────────────────

    def get_summary(self, article_id: str) -> Optional[SummaryResult]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM article_summaries WHERE article_id = ?", (article_id,)
            ).fetchone()
        if row is None:
            return None
        return SummaryResult(
            one_sentence=row["one_sentence"],
            one_paragraph=row["one_paragraph"],
            long=row["long"],
        )

    def save_summary(self, article_id: str, summary: SummaryResult) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO article_summaries (article_id, one_sentence, one_paragraph, long, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (article_id) DO UPDATE SET
                    one_sentence = excluded.one_sentence,
                    one_paragraph = excluded.one_paragraph,
                    long = excluded.long
                """,
                (
                    article_id,
                    summary.one_sentence,
                    summary.one_paragraph,
                    summary.long,
                    self._clock(),
                ),
            )
