from __future__ import annotations

import logging
from queue import Empty, Full, Queue
from typing import Callable, TypeVar

T = TypeVar("T")


def put_latest(queue_obj: Queue[T], item: T) -> None:
    """Enqueue ``item``, evicting the oldest entry when the queue is full."""
    try:
        queue_obj.put_nowait(item)
        return
    except Full:
        pass

    try:
        queue_obj.get_nowait()
    except Empty:
        pass

    try:
        queue_obj.put_nowait(item)
    except Full:
        pass


class EventQueue:
    """Runs submitted callables one at a time on whichever thread drains it.

    Shield and listener calls must never be lost or reordered, so the queue
    is unbounded; backlog is already limited by frame admission upstream.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self._queue: Queue[Callable[[], None]] = Queue()

    def submit(self, action: Callable[[], None]) -> None:
        self._queue.put(action)

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self, timeout: float = 0.0) -> int:
        """Run everything queued. Waits up to ``timeout`` for the first item."""
        handled = 0
        try:
            action = self._queue.get(timeout=timeout) if timeout > 0 else self._queue.get_nowait()
        except Empty:
            return 0
        while True:
            self._run(action)
            handled += 1
            try:
                action = self._queue.get_nowait()
            except Empty:
                return handled

    def _run(self, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception:
            self.logger.exception("Shield event handler failed")
