"""
Article content read path.

Content normally comes from the cache written by the extraction worker.
When the file is missing (evicted by age, or the cache write failed) the
page is fetched and extracted again on demand and re-cached.
"""

import logging
from typing import Callable

from apps.extractor.extraction import extract_content
from apps.extractor.fetcher import SafeFetcher
from utils.cache import ContentCache
from utils.errors import ExternalServiceError
from utils.store import ArticleStore

logger = logging.getLogger(__name__)


class ContentService:
    def __init__(
        self,
        store: ArticleStore,
        cache: ContentCache,
        fetcher_factory: Callable[[], SafeFetcher],
    ) -> None:
        self.store = store
        self.cache = cache
        self.fetcher_factory = fetcher_factory

    def get_article_content(self, user_id: str, article_id: str) -> str:
        """Cached HTML for the user's article, re-fetched on a cache miss.

        Raises NotFoundError if the article does not belong to the user.
        """
        article = self.store.get_article_for_user(article_id, user_id)

        content = self.cache.get(user_id, article_id)
        if content:
            return content

        logger.info(
            "Cache miss, fetching on-demand",
            extra={"article_id": article_id, "url": article.url},
        )
        fetcher = self.fetcher_factory()
        try:
            page = fetcher.fetch(article.url)
        finally:
            fetcher.close()

        extracted = extract_content(page.text, page.url)
        if not extracted.content:
            raise ExternalServiceError("Readability content extraction", "no content extracted")

        try:
            self.cache.set(user_id, article_id, extracted.content)
        except OSError as e:
            logger.error(
                "Failed to re-cache article content",
                extra={"article_id": article_id, "error": str(e)},
            )
        return extracted.content
