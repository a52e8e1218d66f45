"""
Task Dispatcher - Non-blocking launch of extraction work

Each dispatch runs one ExtractionWorker on a thread pool, so a slow fetch
or a crashing worker never blocks the caller or the scheduler loop.
Outcomes are reported through optional callbacks; the article row in the
store remains the source of truth.

Duplicate dispatches for the same article are not deduplicated. The
store's guarded status writes keep concurrent workers consistent.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from apps.extractor.worker import ExtractionWorker, WorkerResult

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str], None]
FailureCallback = Callable[[str, str], None]


class TaskDispatcher:
    """Fire-and-forget launcher for extraction workers."""

    def __init__(
        self,
        worker_factory: Callable[[], ExtractionWorker],
        max_workers: int = 2,
    ) -> None:
        self.worker_factory = worker_factory
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="extract"
        )
        self._lock = threading.Lock()
        self._in_flight = 0

    def spawn(
        self,
        article_id: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> Optional[Future]:
        """Start processing an article and return immediately.

        Returns the Future of the dispatched run, or None when the task could
        not be launched. Launch failures are reported through ``on_failure``
        and never raised.
        """
        logger.info("Dispatching article", extra={"article_id": article_id})
        with self._lock:
            self._in_flight += 1

        try:
            return self._executor.submit(self._execute, article_id, on_success, on_failure)
        except Exception as e:
            with self._lock:
                self._in_flight -= 1
            message = f"Failed to start worker: {e}"
            logger.error(message, extra={"article_id": article_id}, exc_info=True)
            _notify(on_failure, article_id, message)
            return None

    def _execute(
        self,
        article_id: str,
        on_success: Optional[SuccessCallback],
        on_failure: Optional[FailureCallback],
    ) -> WorkerResult:
        try:
            result = self._run_worker(article_id)
        finally:
            with self._lock:
                self._in_flight -= 1

        if result.success:
            _notify(on_success, article_id)
        else:
            _notify(on_failure, article_id, result.error or "Unknown worker error")
        return result

    def _run_worker(self, article_id: str) -> WorkerResult:
        worker = None
        try:
            worker = self.worker_factory()
            return worker.run(article_id)
        except Exception as e:
            logger.error(
                "Worker crashed",
                extra={"article_id": article_id, "error": str(e)},
                exc_info=True,
            )
            return WorkerResult(
                success=False,
                article_id=article_id,
                error=f"Worker crashed: {e}",
            )
        finally:
            if worker is not None:
                try:
                    worker.close()
                except Exception:
                    logger.warning(
                        "Failed to close worker", extra={"article_id": article_id}, exc_info=True
                    )

    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down dispatcher", extra={"in_flight": self.in_flight()})
        self._executor.shutdown(wait=wait)


def _notify(callback: Optional[Callable], *args: str) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.error(
            "Dispatch callback raised",
            extra={"article_id": args[0], "callback": getattr(callback, "__name__", repr(callback))},
            exc_info=True,
        )
