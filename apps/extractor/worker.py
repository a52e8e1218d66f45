"""
Extraction Worker - One-shot processing of a single article

Steps:
1. Load the article (exit quietly if it is already completed or errored)
2. Claim it: status -> processing, processing_attempts + 1
3. Use pre-cached content (long messages) or fetch + extract the URL
4. Compute word count and reading time
5. Ask the LLM collaborator for tags and language
6. Persist metadata and replace tags atomically, status -> completed
7. Write the extracted HTML to the content cache
8. Publish a completion event (optional)

Any failure marks the article failed with the error message. The worker
never retries by itself; the retry sweep re-dispatches failed articles.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from apps.extractor.extraction import extract_content
from apps.extractor.fetcher import SafeFetcher
from apps.extractor.publisher import EventPublisher
from utils.cache import ContentCache
from utils.errors import AppError, ExternalServiceError, NotFoundError
from utils.llm import LLMProvider
from utils.schemas import Article, ArticleMetadata
from utils.states import is_terminal
from utils.store import ArticleStore
from utils.text import calculate_reading_stats, html_to_text

logger = logging.getLogger(__name__)


@dataclass
class WorkerResult:
    success: bool
    article_id: str
    error: Optional[str] = None
    skipped: bool = False


class ProcessingTimeout(ExternalServiceError):
    def __init__(self) -> None:
        super().__init__("Processing timeout", "article took too long to process")


class ExtractionWorker:
    """Processes one article per ``run`` call. Owned by exactly one dispatch."""

    def __init__(
        self,
        store: ArticleStore,
        cache: ContentCache,
        fetcher: SafeFetcher,
        llm: LLMProvider,
        publisher: Optional[EventPublisher] = None,
        processing_timeout_seconds: float = 60,
    ) -> None:
        self.store = store
        self.cache = cache
        self.fetcher = fetcher
        self.llm = llm
        self.publisher = publisher
        self.processing_timeout_seconds = processing_timeout_seconds

    def run(self, article_id: str) -> WorkerResult:
        """Process an article. Never raises; the outcome is written to the store."""
        log_extra = {"article_id": article_id}
        logger.info("Worker started processing", extra=log_extra)
        user_id: Optional[str] = None

        try:
            article = self.store.get_article(article_id)
            user_id = article.user_id

            if is_terminal(article.status):
                logger.info(
                    "Article already %s, skipping", article.status.value, extra=log_extra
                )
                return WorkerResult(success=True, article_id=article_id, skipped=True)

            claimed = self.store.claim_for_processing(article_id)
            if claimed is None:
                logger.info("Article no longer claimable, skipping", extra=log_extra)
                return WorkerResult(success=True, article_id=article_id, skipped=True)

            logger.info(
                "Article claimed",
                extra={**log_extra, "attempt": claimed.processing_attempts, "url": claimed.url},
            )

            deadline = time.monotonic() + self.processing_timeout_seconds
            completed = self._process(claimed, deadline)

        except Exception as e:
            message = str(e) or e.__class__.__name__
            if isinstance(e, NotFoundError):
                logger.warning("Article vanished before processing", extra=log_extra)
            elif isinstance(e, AppError):
                logger.warning(
                    "Article processing failed",
                    extra={**log_extra, "error": message, "error_type": e.__class__.__name__},
                )
            else:
                logger.error(
                    "Unexpected error while processing article",
                    extra={**log_extra, "error": message},
                    exc_info=True,
                )

            self._record_failure(article_id, message)
            if self.publisher is not None:
                self.publisher.publish_failed(article_id, user_id, message)
            return WorkerResult(success=False, article_id=article_id, error=message)

        if not completed:
            logger.info("Article changed state mid-flight, completion dropped", extra=log_extra)
            return WorkerResult(success=True, article_id=article_id, skipped=True)

        logger.info("Article processing completed successfully", extra=log_extra)
        if self.publisher is not None:
            self.publisher.publish_completed(article_id, user_id)
        return WorkerResult(success=True, article_id=article_id)

    def _check_deadline(self, deadline: float) -> None:
        if time.monotonic() > deadline:
            raise ProcessingTimeout()

    def _process(self, article: Article, deadline: float) -> bool:
        cached = self.cache.get(article.user_id, article.id)

        if cached:
            # Long message submitted with its content; keep the stored metadata
            html_content = cached
            text_content = html_to_text(cached)
            title, description = article.title, article.description
            site_name, image_url = article.site_name, article.image_url
            language = article.language
            logger.info(
                "Using pre-cached content",
                extra={"article_id": article.id, "length": len(text_content)},
            )
        else:
            page = self.fetcher.fetch(article.url)
            self._check_deadline(deadline)

            extracted = extract_content(page.text, page.url)
            html_content = extracted.content
            text_content = extracted.text_content
            title, description = extracted.title, extracted.description
            site_name, image_url = extracted.site_name, extracted.image_url
            language = extracted.language
            logger.info(
                "Content extracted",
                extra={
                    "article_id": article.id,
                    "title": title,
                    "site_name": site_name,
                    "length": len(text_content),
                },
            )

        stats = calculate_reading_stats(html_content)
        self._check_deadline(deadline)

        existing_tags = [tag.name for tag in self.store.get_user_tags(article.user_id)]
        tagging = self.llm.extract_tags(text_content, existing_tags)
        self._check_deadline(deadline)
        logger.info(
            "LLM extracted tags and language",
            extra={"article_id": article.id, "tags": tagging.tags, "language": tagging.language},
        )

        metadata = ArticleMetadata(
            title=title,
            description=description,
            site_name=site_name,
            image_url=image_url,
            # Detected from the text itself, preferred over the page's lang attribute
            language=tagging.language if tagging.confidence > 0 or not language else language,
            word_count=stats.word_count,
            reading_time_seconds=stats.reading_time_seconds,
        )

        if not self.store.complete_article(article.id, metadata, tagging.tags):
            return False

        if not cached:
            try:
                self.cache.set(article.user_id, article.id, html_content)
                logger.info("Content cached successfully", extra={"article_id": article.id})
            except OSError as e:
                # Completed is terminal; the reader re-fetches on a cache miss
                logger.error(
                    "Failed to cache article content",
                    extra={"article_id": article.id, "error": str(e)},
                )

        return True

    def _record_failure(self, article_id: str, message: str) -> None:
        try:
            if not self.store.mark_failed(article_id, message):
                logger.info(
                    "Failure not recorded, article is no longer processing",
                    extra={"article_id": article_id},
                )
        except Exception:
            logger.error(
                "Failed to update article status",
                extra={"article_id": article_id},
                exc_info=True,
            )

    def close(self) -> None:
        """Release per-dispatch resources."""
        self.fetcher.close()
