"""
Retry Sweep - Recovers stuck articles and terminalizes exhausted ones

Runs periodically from the scheduler:
- Stuck: pending/processing/failed, untouched for longer than the retry
  delay, with attempts left -> dispatched again (fire-and-forget)
- Exhausted: not completed/error, attempts >= max -> status error

Both sets are read before anything is acted on, and the attempt condition
keeps them disjoint, so an article is never retried and terminalized in
the same sweep.
"""

import logging
import time
from datetime import timedelta
from typing import Callable, Optional

from apps.extractor.dispatcher import TaskDispatcher
from utils.schemas import SweepReport
from utils.store import ArticleStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "Max retry attempts exceeded"


class RetryScheduler:
    """Periodic recovery of articles the workers never finished."""

    def __init__(
        self,
        store: ArticleStore,
        dispatcher: TaskDispatcher,
        max_attempts: int = 3,
        retry_delay: timedelta = timedelta(minutes=5),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._clock = clock

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        """Run one retry pass. Safe to call again while a previous pass is in flight."""
        now = self._clock() if now is None else now
        cutoff = now - self.retry_delay.total_seconds()

        stuck = self.store.find_stuck(cutoff, self.max_attempts)
        exhausted = self.store.find_exhausted(self.max_attempts)
        report = SweepReport()

        if not stuck and not exhausted:
            logger.debug("Retry sweep: nothing to do")
            return report

        logger.info(
            "Retry sweep: found %d articles to retry and %d to terminalize",
            len(stuck), len(exhausted),
        )

        for article in stuck:
            try:
                logger.info(
                    "Retrying article",
                    extra={
                        "article_id": article.id,
                        "status": article.status.value,
                        "attempts": article.processing_attempts,
                    },
                )
                self.dispatcher.spawn(article.id)
                report.retried.append(article.id)
            except Exception as e:
                report.errors += 1
                logger.error(
                    "Failed to retry article",
                    extra={"article_id": article.id, "error": str(e)},
                    exc_info=True,
                )

        for article in exhausted:
            try:
                if self.store.mark_error(article.id, MAX_ATTEMPTS_MESSAGE):
                    report.terminalized.append(article.id)
                    logger.warning(
                        "Article marked as error after max retries",
                        extra={
                            "article_id": article.id,
                            "attempts": article.processing_attempts,
                            "last_error": article.last_error,
                        },
                    )
            except Exception as e:
                report.errors += 1
                logger.error(
                    "Failed to mark article as error",
                    extra={"article_id": article.id, "error": str(e)},
                    exc_info=True,
                )

        logger.info(
            "Retry sweep complete",
            extra={
                "retried": len(report.retried),
                "terminalized": len(report.terminalized),
                "errors": report.errors,
            },
        )
        return report
