"""
Push-based subscriptions over MongoDB change streams.

A subscription delivers the current snapshot once, then a fresh snapshot
after every change event, until it is unsubscribed. Its lifetime belongs
to whoever consumes it (a view, a stream response), never to the process.
"""
import logging
import threading
from typing import Any, Callable, List, Optional

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class ChangeSubscription:
    def __init__(
        self,
        collection,
        load_snapshot: Callable[[], Any],
        on_change: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        pipeline: Optional[List[dict]] = None,
        max_await_ms: int = 1000,
    ):
        self._collection = collection
        self._load_snapshot = load_snapshot
        self._on_change = on_change
        self._on_error = on_error
        self._pipeline = pipeline or []
        self._max_await_ms = max_await_ms
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"watch-{getattr(collection, 'name', 'collection')}",
            daemon=True,
        )

    def start(self) -> "ChangeSubscription":
        self._thread.start()
        return self

    @property
    def active(self) -> bool:
        return not self._stop.is_set() and self._thread.is_alive()

    def unsubscribe(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _emit(self) -> None:
        snapshot = self._load_snapshot()
        # the consumer may have gone away while the snapshot loaded
        if not self._stop.is_set():
            self._on_change(snapshot)

    def _run(self) -> None:
        try:
            self._emit()
            with self._collection.watch(
                self._pipeline,
                full_document="updateLookup",
                max_await_time_ms=self._max_await_ms,
            ) as stream:
                while not self._stop.is_set() and stream.alive:
                    if stream.try_next() is not None:
                        self._emit()
        except PyMongoError as e:
            logger.error(f"Change stream on '{getattr(self._collection, 'name', '?')}' failed: {e}")
            self._report(e)
        except Exception as e:
            # a snapshot that cannot be built ends the listener the same way
            logger.exception(f"Listener on '{getattr(self._collection, 'name', '?')}' stopped: {e}")
            self._report(e)

    def _report(self, error: Exception) -> None:
        if self._on_error is not None and not self._stop.is_set():
            self._on_error(error)
