"""
Ingestion Scheduler - Cron and On-Demand Execution

Runs the periodic maintenance jobs of the ingestion pipeline using APScheduler.

Jobs:
- Retry sweep (configurable via RETRY_SCHEDULE_CRON)
- Content cache cleanup (configurable via CACHE_CLEANUP_CRON)

Features:
- RUN_ONCE mode: run both jobs immediately, wait for dispatched workers, exit
- Extraction workers run on the dispatcher's thread pool, never on the loop
- Graceful shutdown handling

Usage:
    # Scheduled mode (default)
    python -m apps.scheduler

    # Run once and exit
    RUN_ONCE=true python -m apps.scheduler
"""

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.extractor.dispatcher import TaskDispatcher
from apps.extractor.fetcher import SafeFetcher
from apps.extractor.publisher import EventPublisher
from apps.extractor.worker import ExtractionWorker
from apps.scheduler.retry import RetryScheduler
from utils.cache import ContentCache
from utils.config import Settings, settings
from utils.db import init_schema
from utils.llm import LLMProvider, get_llm_provider
from utils.logging import setup_logging
from utils.mq import RedisPublisher
from utils.store import ArticleStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Long-lived pipeline objects, built once per process and injected."""

    store: ArticleStore
    cache: ContentCache
    llm: LLMProvider
    dispatcher: TaskDispatcher
    publisher: Optional[EventPublisher] = None

    def close(self, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)
        if self.publisher is not None:
            self.publisher.close()


def build_fetcher(config: Settings) -> SafeFetcher:
    return SafeFetcher(
        user_agent=config.USER_AGENT,
        timeout_seconds=config.FETCH_TIMEOUT_SECONDS,
        max_redirects=config.FETCH_MAX_REDIRECTS,
        max_bytes=config.FETCH_MAX_BYTES,
        dns_timeout_seconds=config.DNS_TIMEOUT_SECONDS,
    )


def build_components(config: Settings) -> Components:
    """Wire store, cache, LLM, publisher and dispatcher from settings."""
    init_schema(config.DATABASE_PATH)
    store = ArticleStore(config.DATABASE_PATH)
    cache = ContentCache(config.CACHE_DIR, extension=config.CACHE_EXTENSION)
    llm = get_llm_provider(config.ANTHROPIC_API_KEY, config.TAGGING_MODEL, config.SUMMARY_MODEL)

    publisher = None
    if config.EVENTS_ENABLED:
        publisher = EventPublisher(
            RedisPublisher(config.REDIS_URL, max_connections=config.REDIS_MAX_CONNECTIONS),
            config.REDIS_CHANNEL_EVENTS,
        )

    def worker_factory() -> ExtractionWorker:
        return ExtractionWorker(
            store=store,
            cache=cache,
            fetcher=build_fetcher(config),
            llm=llm,
            publisher=publisher,
            processing_timeout_seconds=config.PROCESSING_TIMEOUT_SECONDS,
        )

    dispatcher = TaskDispatcher(worker_factory, max_workers=config.WORKER_CONCURRENCY)
    return Components(
        store=store, cache=cache, llm=llm, dispatcher=dispatcher, publisher=publisher
    )


class IngestScheduler:
    """
    Owns the control loop: two cron jobs on an AsyncIOScheduler.

    Job bodies are blocking (SQLite, filesystem) and run via
    asyncio.to_thread so the loop stays responsive to signals.
    """

    def __init__(
        self,
        components: Components,
        config: Settings,
        run_once: bool = False,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            components: Injected store, cache and dispatcher
            config: Application settings (cron expressions, retry limits)
            run_once: If True, run every job once and exit
        """
        self.components = components
        self.config = config
        self.run_once = run_once
        self.retry = RetryScheduler(
            components.store,
            components.dispatcher,
            max_attempts=config.MAX_RETRY_ATTEMPTS,
            retry_delay=timedelta(minutes=config.RETRY_DELAY_MINUTES),
        )
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()

        logger.info(
            "IngestScheduler initialized",
            extra={
                "run_once": run_once,
                "retry_schedule": config.RETRY_SCHEDULE_CRON,
                "cleanup_schedule": config.CACHE_CLEANUP_CRON,
            },
        )

    async def execute_retry_sweep(self) -> None:
        """Run one retry sweep off the event loop."""
        logger.info("Starting retry sweep")
        try:
            report = await asyncio.to_thread(self.retry.sweep)
            logger.info(
                "Retry sweep finished",
                extra={
                    "retried": len(report.retried),
                    "terminalized": len(report.terminalized),
                    "errors": report.errors,
                },
            )
        except Exception as e:
            logger.error("Retry sweep failed", extra={"error": str(e)}, exc_info=True)

    async def execute_cache_cleanup(self) -> None:
        """Evict cached content older than CACHE_MAX_AGE_DAYS."""
        logger.info("Starting cache cleanup")
        try:
            report = await asyncio.to_thread(
                self.components.cache.cleanup,
                timedelta(days=self.config.CACHE_MAX_AGE_DAYS),
            )
            logger.info(
                "Cache cleanup finished",
                extra={
                    "scanned": report.scanned,
                    "deleted": report.deleted,
                    "errors": report.errors,
                },
            )
        except Exception as e:
            logger.error("Cache cleanup failed", extra={"error": str(e)}, exc_info=True)

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Run the jobs on their cron schedules until SIGINT/SIGTERM, or run
        each one once when RUN_ONCE is set. Components are closed on exit.
        """
        self.setup_signal_handlers()

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            await self.execute_retry_sweep()
            await self.execute_cache_cleanup()
            await asyncio.to_thread(self.components.close)
            return

        logger.info("Running in scheduled mode")

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.execute_retry_sweep,
            trigger=CronTrigger.from_crontab(self.config.RETRY_SCHEDULE_CRON),
            id="retry_sweep",
            name="Retry Stuck Articles",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.execute_cache_cleanup,
            trigger=CronTrigger.from_crontab(self.config.CACHE_CLEANUP_CRON),
            id="cache_cleanup",
            name="Content Cache Cleanup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        # Start scheduler first to get next_run_time
        self.scheduler.start()
        logger.info("Scheduler started")

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            logger.info(
                "Scheduled job",
                extra={
                    "job_id": job.id,
                    "next_run": str(next_run) if next_run is not None else None,
                },
            )
        logger.info("Waiting for jobs...")

        # Wait for shutdown signal
        await self.shutdown_event.wait()

        logger.info("Shutting down scheduler")
        if self.scheduler:
            self.scheduler.shutdown(wait=True)
        await asyncio.to_thread(self.components.close)
        logger.info("Scheduler shutdown complete")


async def main() -> None:
    """Main entry point for scheduler."""
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    try:
        components = build_components(settings)
        scheduler = IngestScheduler(components, settings, run_once=run_once)
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
