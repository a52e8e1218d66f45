"""
Article State Machine

    pending ──► processing ──► completed
                   │  ▲
                   ▼  │
                  failed ──► error

pending and processing may also be forced to error by the retry sweep once
an article has used up its attempts (a worker that crashed after claiming
never gets to write failed). completed and error have no way out.

The store turns these tables into SQL guards (``WHERE status IN (...)``) so
every write is a no-op when the row is no longer in an allowed source state.
"""

from enum import Enum

from utils.errors import InvalidTransitionError


class ArticleStatus(str, Enum):
    """Processing lifecycle of an article."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


TRANSITIONS: dict[ArticleStatus, frozenset[ArticleStatus]] = {
    ArticleStatus.PENDING: frozenset({ArticleStatus.PROCESSING, ArticleStatus.ERROR}),
    ArticleStatus.PROCESSING: frozenset(
        {ArticleStatus.COMPLETED, ArticleStatus.FAILED, ArticleStatus.ERROR}
    ),
    ArticleStatus.FAILED: frozenset({ArticleStatus.PROCESSING, ArticleStatus.ERROR}),
    ArticleStatus.COMPLETED: frozenset(),
    ArticleStatus.ERROR: frozenset(),
}

# Same-state rewrites that are not transitions but must stay idempotent:
# a stuck processing article is re-claimed by a retry, and a duplicate
# worker may complete an already completed article (last write wins).
REWRITES: frozenset[ArticleStatus] = frozenset(
    {ArticleStatus.PROCESSING, ArticleStatus.COMPLETED}
)

ACTIVE_STATUSES: tuple[ArticleStatus, ...] = (
    ArticleStatus.PENDING,
    ArticleStatus.PROCESSING,
    ArticleStatus.FAILED,
)


def is_terminal(status: ArticleStatus) -> bool:
    return not TRANSITIONS[status]


def can_transition(source: ArticleStatus, target: ArticleStatus) -> bool:
    """Whether a write moving ``source`` to ``target`` is allowed."""
    if source == target:
        return source in REWRITES
    return target in TRANSITIONS[source]


def ensure_transition(source: ArticleStatus, target: ArticleStatus) -> None:
    if not can_transition(source, target):
        raise InvalidTransitionError(source.value, target.value)


def sources_for(target: ArticleStatus) -> tuple[ArticleStatus, ...]:
    """All statuses a row may be in for a write to ``target`` to apply."""
    return tuple(status for status in ArticleStatus if can_transition(status, target))
