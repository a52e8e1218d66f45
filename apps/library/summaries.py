"""On-demand article summaries, generated once and stored."""

import logging

from apps.library.content import ContentService
from utils.llm import LLMProvider
from utils.schemas import SummaryResult
from utils.store import ArticleStore
from utils.text import html_to_text

logger = logging.getLogger(__name__)


class SummaryService:
    def __init__(self, store: ArticleStore, content: ContentService, llm: LLMProvider) -> None:
        self.store = store
        self.content = content
        self.llm = llm

    def get_or_generate_summary(self, user_id: str, article_id: str) -> SummaryResult:
        """Stored summary for the user's article, generating one on first request."""
        # Ownership check before touching any stored summary
        self.store.get_article_for_user(article_id, user_id)

        existing = self.store.get_summary(article_id)
        if existing is not None:
            return existing

        html_content = self.content.get_article_content(user_id, article_id)
        summary = self.llm.summarize(html_to_text(html_content))
        self.store.save_summary(article_id, summary)
        logger.info("Summary generated", extra={"article_id": article_id})
        return summary
