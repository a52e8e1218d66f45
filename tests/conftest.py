"""Shared fixtures: a real SQLite store and content cache under tmp_path."""

import pytest

from utils.cache import ContentCache
from utils.db import init_schema
from utils.schemas import ArticleMetadata
from utils.store import ArticleStore

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "data" / "app.db"
    init_schema(path)
    return path


@pytest.fixture
def store(db_path, clock):
    return ArticleStore(db_path, clock=clock)


@pytest.fixture
def cache(tmp_path):
    return ContentCache(tmp_path / "cache")


@pytest.fixture
def metadata():
    return ArticleMetadata(
        title="An Article",
        description="About things",
        site_name="Example",
        language="en",
        word_count=450,
        reading_time_seconds=120,
    )
