"""
Submission helpers used by the bot and web layers.

A submission creates a pending article and hands it to the dispatcher.
Long messages are turned into HTML and cached before dispatch so the
worker skips fetching and only computes stats and tags.
"""

import html
import logging
import re
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

from apps.extractor.dispatcher import FailureCallback, SuccessCallback, TaskDispatcher
from utils.cache import ContentCache
from utils.errors import ValidationError
from utils.schemas import Article
from utils.store import ArticleStore

logger = logging.getLogger(__name__)

MESSAGE_SOURCE_URL = "https://lateread.app"
MESSAGE_SITE_NAME = "Telegram Message"
TITLE_MAX_CHARS = 64
DESCRIPTION_MAX_CHARS = 200

_URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass
class MessageMetadata:
    title: str
    description: str
    html_content: str


def extract_url(text: str) -> Optional[str]:
    """First http(s) URL in a message, if any."""
    match = _URL_PATTERN.search(text)
    return match.group(0) if match else None


def is_long_message(text: str, threshold: int) -> bool:
    return len(text) >= threshold


def message_metadata(text: str) -> MessageMetadata:
    """Title, description and HTML body for a message saved as an article."""
    lines = text.split("\n")
    first_line = lines[0] or text[:TITLE_MAX_CHARS]
    title = (
        f"{first_line[:TITLE_MAX_CHARS]}..." if len(first_line) > TITLE_MAX_CHARS else first_line
    )

    rest = "\n".join(lines[1:]).strip()
    if len(rest) > DESCRIPTION_MAX_CHARS:
        description = f"{rest[:DESCRIPTION_MAX_CHARS]}..."
    else:
        description = rest or title[:DESCRIPTION_MAX_CHARS]

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
    html_content = "\n".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )
    return MessageMetadata(title=title, description=description, html_content=html_content)


def submit_url(
    store: ArticleStore,
    dispatcher: TaskDispatcher,
    user_id: str,
    url: str,
    on_success: Optional[SuccessCallback] = None,
    on_failure: Optional[FailureCallback] = None,
) -> tuple[Article, Optional[Future]]:
    """Create a pending article for a URL and dispatch it."""
    url = url.strip()
    if not url:
        raise ValidationError("URL is required", {"url": "empty"})

    article = store.create_article(user_id, url)
    logger.info("Article created for URL", extra={"article_id": article.id, "url": url})
    return article, dispatcher.spawn(article.id, on_success, on_failure)


def submit_message(
    store: ArticleStore,
    cache: ContentCache,
    dispatcher: TaskDispatcher,
    user_id: str,
    text: str,
    source_url: str = MESSAGE_SOURCE_URL,
    site_name: str = MESSAGE_SITE_NAME,
    on_success: Optional[SuccessCallback] = None,
    on_failure: Optional[FailureCallback] = None,
) -> tuple[Article, Optional[Future]]:
    """Save a long message as an article with its content pre-cached."""
    if not text.strip():
        raise ValidationError("Message is empty", {"text": "empty"})

    metadata = message_metadata(text)
    article = store.create_article(
        user_id,
        source_url,
        title=metadata.title,
        description=metadata.description,
        site_name=site_name,
    )
    logger.info(
        "Article created for long message",
        extra={"article_id": article.id, "length": len(text)},
    )

    try:
        cache.set(user_id, article.id, metadata.html_content)
    except OSError as e:
        # The worker fetches the source URL instead; the retry sweep covers the rest
        logger.error(
            "Failed to cache message content",
            extra={"article_id": article.id, "error": str(e)},
        )

    return article, dispatcher.spawn(article.id, on_success, on_failure)
