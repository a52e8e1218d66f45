"""
Extractor Module Entry Point

Allows execution via: python -m apps.extractor ARTICLE_ID [ARTICLE_ID ...]

Processes the given articles synchronously, one worker per article, and
exits non-zero if any of them failed. Useful for reprocessing by hand.
"""

import sys

from apps.scheduler.scheduler import build_components
from utils.config import settings
from utils.logging import setup_logging


def main(argv: list[str]) -> int:
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    if not argv:
        print("usage: python -m apps.extractor ARTICLE_ID [ARTICLE_ID ...]", file=sys.stderr)
        return 2

    components = build_components(settings)
    try:
        futures = [components.dispatcher.spawn(article_id) for article_id in argv]
        results = [future.result() for future in futures if future is not None]
    finally:
        components.close()

    failed = len(argv) - sum(1 for result in results if result.success)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
