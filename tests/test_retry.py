"""Tests for the retry sweep."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from apps.scheduler.retry import MAX_ATTEMPTS_MESSAGE, RetryScheduler
from utils.states import ArticleStatus

MAX_ATTEMPTS = 3
DELAY = timedelta(minutes=5)


@pytest.fixture
def dispatcher():
    return Mock()


@pytest.fixture
def retry(store, dispatcher, clock):
    return RetryScheduler(store, dispatcher, max_attempts=MAX_ATTEMPTS, retry_delay=DELAY, clock=clock)


def _failed_with_attempts(store, attempts):
    article = store.create_article("u1", "https://example.com/a")
    for _ in range(attempts):
        store.claim_for_processing(article.id)
    store.mark_failed(article.id, "boom")
    return article


class TestSweep:
    """Tests for RetryScheduler.sweep."""

    def test_empty_store_is_a_no_op(self, retry, dispatcher):
        report = retry.sweep()

        assert report.retried == []
        assert report.terminalized == []
        dispatcher.spawn.assert_not_called()

    def test_one_attempt_left_is_retried(self, retry, store, dispatcher, clock):
        article = _failed_with_attempts(store, MAX_ATTEMPTS - 1)
        clock.advance(DELAY.total_seconds() + 1)

        report = retry.sweep()

        assert report.retried == [article.id]
        assert report.terminalized == []
        dispatcher.spawn.assert_called_once_with(article.id)
        assert store.get_article(article.id).status is ArticleStatus.FAILED

    def test_exhausted_is_terminalized_not_retried(self, retry, store, dispatcher, clock):
        article = _failed_with_attempts(store, MAX_ATTEMPTS)
        clock.advance(DELAY.total_seconds() + 1)

        report = retry.sweep()

        assert report.retried == []
        assert report.terminalized == [article.id]
        dispatcher.spawn.assert_not_called()
        errored = store.get_article(article.id)
        assert errored.status is ArticleStatus.ERROR
        assert errored.last_error == MAX_ATTEMPTS_MESSAGE

    def test_recent_articles_are_left_alone(self, retry, store, dispatcher, clock):
        _failed_with_attempts(store, 1)
        clock.advance(60)

        report = retry.sweep()

        assert report.retried == []
        dispatcher.spawn.assert_not_called()

    def test_stuck_pending_and_processing_are_retried(self, retry, store, dispatcher, clock):
        pending = store.create_article("u1", "https://example.com/p")
        processing = store.create_article("u1", "https://example.com/q")
        store.claim_for_processing(processing.id)
        clock.advance(DELAY.total_seconds() + 1)

        report = retry.sweep()

        assert set(report.retried) == {pending.id, processing.id}

    def test_completed_and_error_are_never_touched(self, retry, store, dispatcher, clock, metadata):
        done = store.create_article("u1", "https://example.com/a")
        store.claim_for_processing(done.id)
        store.complete_article(done.id, metadata, [])
        dead = _failed_with_attempts(store, MAX_ATTEMPTS)
        store.mark_error(dead.id, MAX_ATTEMPTS_MESSAGE)
        clock.advance(3600)

        report = retry.sweep()

        assert report.retried == []
        assert report.terminalized == []

    def test_exhausted_processing_article_is_terminalized(self, retry, store, clock):
        article = store.create_article("u1", "https://example.com/a")
        for _ in range(MAX_ATTEMPTS):
            store.claim_for_processing(article.id)

        report = retry.sweep()

        assert report.terminalized == [article.id]

    def test_per_article_errors_do_not_stop_the_sweep(self, retry, store, dispatcher, clock):
        first = _failed_with_attempts(store, 1)
        second = _failed_with_attempts(store, 1)
        clock.advance(DELAY.total_seconds() + 1)
        dispatcher.spawn.side_effect = [RuntimeError("pool gone"), None]

        report = retry.sweep()

        assert report.errors == 1
        assert len(report.retried) == 1
        assert dispatcher.spawn.call_count == 2
        assert {first.id, second.id} >= set(report.retried)

    def test_explicit_now_overrides_clock(self, retry, store, dispatcher, clock):
        article = _failed_with_attempts(store, 1)

        report = retry.sweep(now=clock.now + DELAY.total_seconds() + 1)

        assert report.retried == [article.id]
