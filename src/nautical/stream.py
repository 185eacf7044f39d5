"""
Stream

A bounded channel between one producer thread and its consumers. The
producer sends entities and closes the stream exactly once; consumers
iterate it and may cancel it to stop the producer early.
"""

import queue
import threading
from typing import Any, Optional

from nautical.config import config
from nautical.errors import RepositoryException, StreamClosedError

_CLOSED = object()


class Stream:
    """
    Single-pass sequence of entities delivered while they are produced.

    The buffer holds at most ``maxsize`` items (default from STREAM_BUFFER),
    so a producer blocks until consumers catch up. Once the end has been
    seen, iteration stops immediately on every later ``next()``.

    Usage:
        with repo.all() as stream:
            for entity in stream:
                ...
        stream.raise_for_error()
    """

    # Seconds between checks for cancellation while blocked.
    poll_interval = 0.05

    def __init__(self, maxsize: int = None, name: str = "stream"):
        size = config.stream_buffer if maxsize is None else maxsize
        self.name = name
        self.error: Optional[RepositoryException] = None
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, size))
        self._lock = threading.Lock()
        self._closed = False
        self._drained = False
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        if self._cancelled.is_set():
            state = "cancelled"
        return f"<Stream {self.name} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # =========================================================================
    # Producer side
    # =========================================================================

    def send(self, item: Any) -> bool:
        """
        Deliver an item, blocking while the buffer is full.

        Returns False if the stream was cancelled, in which case the item was
        dropped and the producer should stop.
        """
        if self._closed:
            raise StreamClosedError("send")
        return self._put(item)

    def close(self, error: RepositoryException = None) -> None:
        """
        Signal end-of-sequence. Only the producer closes a stream.

        Args:
            error: Why production stopped early, if it did
        """
        with self._lock:
            if self._closed:
                raise StreamClosedError("close")
            self._closed = True
            self.error = error
        self._put(_CLOSED)

    def _put(self, item: Any) -> bool:
        while not self._cancelled.is_set():
            try:
                self._queue.put(item, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False

    # =========================================================================
    # Consumer side
    # =========================================================================

    def __iter__(self):
        return self

    def __next__(self) -> Any:
        while not (self._drained or self._cancelled.is_set()):
            try:
                item = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if item is _CLOSED:
                self._drained = True
                break
            return item
        raise StopIteration

    def cancel(self) -> None:
        """Stop consuming. The producer notices on its next send."""
        self._cancelled.set()

    def raise_for_error(self) -> None:
        """Raise the error that ended production, if any."""
        if self.error is not None:
            raise self.error

    def __enter__(self) -> "Stream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
