"""Tests for completion event publishing."""

from unittest.mock import Mock, patch

import orjson
import redis

from apps.extractor.publisher import EventPublisher
from utils.mq import RedisPublisher


class TestEventPublisher:
    """Tests for EventPublisher."""

    def test_publishes_completed_event(self):
        publisher = Mock()

        EventPublisher(publisher, "articles.events").publish_completed("a1", "u1")

        channel, message = publisher.publish.call_args.args
        assert channel == "articles.events"
        assert message["type"] == "article_completed"
        assert message["article_id"] == "a1"
        assert message["user_id"] == "u1"
        assert message["error"] is None
        assert message["ts"]

    def test_publishes_failed_event_with_error(self):
        publisher = Mock()

        EventPublisher(publisher, "articles.events").publish_failed("a1", "u1", "boom")

        message = publisher.publish.call_args.args[1]
        assert message["type"] == "article_failed"
        assert message["error"] == "boom"

    def test_publish_failure_is_swallowed(self):
        publisher = Mock()
        publisher.publish.side_effect = redis.ConnectionError("down")

        EventPublisher(publisher, "articles.events").publish_completed("a1", "u1")

        publisher.publish.assert_called_once()


class TestRedisPublisher:
    """Tests for the Redis wrapper."""

    @patch("utils.mq.redis.Redis.from_url")
    def test_publish_serializes_with_orjson(self, mock_from_url):
        client = Mock()
        mock_from_url.return_value = client

        RedisPublisher("redis://localhost:6379/0").publish("chan", {"a": 1})

        client.publish.assert_called_once_with("chan", orjson.dumps({"a": 1}))

    @patch("utils.mq.redis.Redis.from_url")
    def test_publish_retries_connection_errors(self, mock_from_url):
        client = Mock()
        client.publish.side_effect = [redis.ConnectionError("blip"), 1]
        mock_from_url.return_value = client
        publisher = RedisPublisher("redis://localhost:6379/0")

        with patch("time.sleep"):
            publisher.publish("chan", {"a": 1})

        assert client.publish.call_count == 2

    @patch("utils.mq.redis.Redis.from_url")
    def test_close_releases_client(self, mock_from_url):
        publisher = RedisPublisher("redis://localhost:6379/0")
        publisher.connect()

        publisher.close()

        assert publisher.client is None
        mock_from_url.return_value.close.assert_called_once()
