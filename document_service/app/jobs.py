import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .logger import get_logger
from .schemas import DocumentStatus

logger = get_logger(__name__)


@dataclass
class BackgroundOutcome:
    """What a background extraction job ended up doing."""

    document_id: str
    status: DocumentStatus
    error_detail: Optional[str] = None
    persisted: bool = True
    persistence_error: Optional[str] = None


class BackgroundJobRunner:
    """Bounded thread pool for detached per-document jobs.

    Jobs outlive the request that submitted them. Futures are tracked by
    document id until they finish so callers can enumerate or join them;
    the most recent outcomes are remembered afterwards.
    """

    MAX_REMEMBERED = 1000

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extraction")
        self._lock = threading.Lock()
        self._futures: Dict[str, Future] = {}
        self._outcomes: "OrderedDict[str, BackgroundOutcome]" = OrderedDict()

    def submit(self, document_id: str, fn: Callable[[], BackgroundOutcome]) -> Future:
        future = self._executor.submit(fn)
        with self._lock:
            self._futures[document_id] = future
        future.add_done_callback(self._on_done(document_id))
        return future

    def _on_done(self, document_id: str):
        def _callback(future: Future) -> None:
            exc = None if future.cancelled() else future.exception()
            with self._lock:
                if self._futures.get(document_id) is future:
                    del self._futures[document_id]
                if not future.cancelled() and exc is None:
                    self._outcomes[document_id] = future.result()
                    while len(self._outcomes) > self.MAX_REMEMBERED:
                        self._outcomes.popitem(last=False)
            if exc is not None:
                logger.error(f"Unhandled background failure for {document_id}: {exc}", exc_info=exc)

        return _callback

    def in_flight(self) -> List[str]:
        with self._lock:
            return list(self._futures)

    def wait(self, document_id: str, timeout: Optional[float] = None) -> Optional[BackgroundOutcome]:
        with self._lock:
            future = self._futures.get(document_id)
            if future is None:
                return self._outcomes.get(document_id)
        return future.result(timeout=timeout)

    def wait_all(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            futures = list(self._futures.values())
        wait_futures(futures, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineJobRunner:
    """Runs jobs immediately in the caller's thread. Meant for tests."""

    def __init__(self):
        self.outcomes: Dict[str, BackgroundOutcome] = {}

    def submit(self, document_id: str, fn: Callable[[], BackgroundOutcome]) -> Future:
        future = Future()
        try:
            outcome = fn()
        except Exception as exc:
            future.set_exception(exc)
        else:
            self.outcomes[document_id] = outcome
            future.set_result(outcome)
        return future

    def in_flight(self) -> List[str]:
        return []

    def wait(self, document_id: str, timeout: Optional[float] = None) -> Optional[BackgroundOutcome]:
        return self.outcomes.get(document_id)

    def wait_all(self, timeout: Optional[float] = None) -> None:
        return None

    def shutdown(self, wait: bool = True) -> None:
        return None
