"""
Article search: literal text over a user's cached content, plus metadata.

The query is always matched as literal text, case-insensitively, so input
such as ``-v``, ``C++``, ``100%`` or ``domain.com`` has no pattern meaning.
"""

import logging
import re

from utils.cache import ContentCache
from utils.schemas import ArticleWithTags
from utils.store import DEFAULT_PAGE_SIZE, ArticleStore

logger = logging.getLogger(__name__)


def search_cached_article_ids(cache: ContentCache, user_id: str, query: str) -> set[str]:
    """Ids of the user's cached articles whose content contains ``query``."""
    needle = query.strip()
    if not needle:
        return set()

    pattern = re.compile(re.escape(needle), re.IGNORECASE)
    matches: set[str] = set()
    for path in cache.iter_user_files(user_id):
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            # Evicted by cleanup mid-scan, or unreadable
            logger.debug("Skipping cache file", extra={"path": str(path), "error": str(e)})
            continue
        if pattern.search(content):
            matches.add(path.stem)

    logger.debug(
        "Cache search finished",
        extra={"user_id": user_id, "matches": len(matches)},
    )
    return matches


class SearchService:
    def __init__(self, store: ArticleStore, cache: ContentCache) -> None:
        self.store = store
        self.cache = cache

    def search(
        self, user_id: str, query: str, limit: int = DEFAULT_PAGE_SIZE
    ) -> list[ArticleWithTags]:
        """Completed articles matching the query in content or metadata, newest first."""
        if not query.strip():
            return []

        ids = search_cached_article_ids(self.cache, user_id, query)
        ids |= self.store.search_metadata(user_id, query)
        logger.info(
            "Search executed",
            extra={"user_id": user_id, "query_length": len(query), "candidates": len(ids)},
        )
        if not ids:
            return []
        return self.store.list_articles(user_id, article_ids=ids, limit=limit)
