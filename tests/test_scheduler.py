"""Tests for scheduler wiring and RUN_ONCE execution."""

import asyncio
from unittest.mock import Mock, patch

from apps.extractor.dispatcher import TaskDispatcher
from apps.scheduler.scheduler import IngestScheduler, build_components
from utils.config import Settings
from utils.llm import NoopProvider
from utils.schemas import CleanupReport, SweepReport


def _settings(tmp_path, **overrides):
    values = dict(
        DATABASE_PATH=str(tmp_path / "db" / "app.db"),
        CACHE_DIR=str(tmp_path / "cache"),
        ANTHROPIC_API_KEY=None,
        EVENTS_ENABLED=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestBuildComponents:
    def test_wires_components_from_settings(self, tmp_path):
        config = _settings(tmp_path, WORKER_CONCURRENCY=3)

        components = build_components(config)
        try:
            assert (tmp_path / "db" / "app.db").exists()
            assert components.cache.root == tmp_path / "cache"
            assert isinstance(components.llm, NoopProvider)
            assert isinstance(components.dispatcher, TaskDispatcher)
            assert components.dispatcher.max_workers == 3
            assert components.publisher is None
        finally:
            components.close()

    @patch("apps.scheduler.scheduler.RedisPublisher")
    def test_events_enabled_builds_publisher(self, mock_redis, tmp_path):
        config = _settings(tmp_path, EVENTS_ENABLED=True, REDIS_CHANNEL_EVENTS="chan")

        components = build_components(config)
        try:
            assert components.publisher is not None
            assert components.publisher.channel == "chan"
        finally:
            components.close()
        mock_redis.return_value.close.assert_called_once()

    def test_worker_factory_builds_a_fresh_worker_each_time(self, tmp_path):
        components = build_components(_settings(tmp_path, PROCESSING_TIMEOUT_SECONDS=42))
        try:
            factory = components.dispatcher.worker_factory
            first, second = factory(), factory()
            assert first is not second
            assert first.fetcher is not second.fetcher
            assert first.fetcher.dns_pool is not second.fetcher.dns_pool
            assert first.processing_timeout_seconds == 42
            first.close()
            second.close()
        finally:
            components.close()


class TestRunOnce:
    @patch("apps.scheduler.scheduler.signal.signal")
    def test_runs_both_jobs_and_closes(self, mock_signal, tmp_path):
        config = _settings(tmp_path)
        components = Mock()
        components.cache.cleanup.return_value = CleanupReport(scanned=2, deleted=1)

        async def run():
            scheduler = IngestScheduler(components, config, run_once=True)
            with patch.object(scheduler.retry, "sweep", return_value=SweepReport()) as sweep:
                await scheduler.start()
            return sweep

        sweep = asyncio.run(run())

        sweep.assert_called_once()
        components.cache.cleanup.assert_called_once()
        components.close.assert_called_once()

    @patch("apps.scheduler.scheduler.signal.signal")
    def test_job_failure_is_logged_not_raised(self, mock_signal, tmp_path):
        config = _settings(tmp_path)
        components = Mock()
        components.cache.cleanup.side_effect = OSError("disk gone")

        async def run():
            scheduler = IngestScheduler(components, config, run_once=True)
            with patch.object(scheduler.retry, "sweep", side_effect=RuntimeError("db locked")):
                await scheduler.start()

        asyncio.run(run())

        components.close.assert_called_once()
