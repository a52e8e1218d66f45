"""
Completion Event Publisher

Mirrors worker outcomes onto a Redis Pub/Sub channel so the submission
layer (bot reactions, web live updates) can react without polling. The
article row stays the system of record; a publish failure is logged and
never changes the article's status.

Event format:
    {
        "type": "article_completed" | "article_failed",
        "article_id": "6f1c...",
        "user_id": "u-1",
        "error": null,
        "ts": "2025-01-15T03:15:02Z"
    }
"""

import logging
from typing import Optional

from utils.mq import RedisPublisher
from utils.schemas import ArticleEvent

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes ArticleEvents to a single channel."""

    def __init__(self, publisher: RedisPublisher, channel: str) -> None:
        self.publisher = publisher
        self.channel = channel

    def publish_completed(self, article_id: str, user_id: Optional[str]) -> None:
        self._publish(ArticleEvent(type="article_completed", article_id=article_id, user_id=user_id))

    def publish_failed(self, article_id: str, user_id: Optional[str], error: str) -> None:
        self._publish(
            ArticleEvent(type="article_failed", article_id=article_id, user_id=user_id, error=error)
        )

    def _publish(self, event: ArticleEvent) -> None:
        try:
            self.publisher.publish(self.channel, event.to_message())
            logger.debug(
                "Published %s event to %s", event.type, self.channel,
                extra={"article_id": event.article_id},
            )
        except Exception as e:
            logger.error(
                "Failed to publish article event",
                extra={
                    "article_id": event.article_id,
                    "event_type": event.type,
                    "channel": self.channel,
                    "error": str(e),
                },
            )

    def close(self) -> None:
        self.publisher.close()
