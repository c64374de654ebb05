"""Single-reader progress channel between worker threads and one consumer.

Drop policy: `publish` never blocks a producer. Events go into a bounded
buffer; when the buffer is full the event is discarded, counted in `dropped`
and `publish` returns False. The terminal `complete` event goes through the
same non-blocking path. Events from one producer keep their relative order;
events from different producers interleave arbitrarily.
"""

import logging
import queue
import threading
from typing import Iterator, Optional
from mediavault.domain.events import Heartbeat, ProgressEvent


def to_frame(event: ProgressEvent) -> str:
    """Server-push text frame for one event."""
    return f"data: {event.to_json()}\n\n"


class ProgressStream:
    def __init__(self, maxsize: int = 1024):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._dropped = 0
        self._dropped_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, event: ProgressEvent) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
            self.logger.debug(f"Progress event dropped (consumer behind): {event.type}")
            return False

    def close(self) -> None:
        """Marks the end of the stream; buffered events are still delivered."""
        self._closed.set()

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None when `timeout` expires or the stream is drained."""
        deadline_wait = 0.1 if timeout is None else min(0.1, timeout)
        waited = 0.0
        while True:
            try:
                return self._queue.get(timeout=deadline_wait)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    return None
                waited += deadline_wait
                if timeout is not None and waited >= timeout:
                    return None

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def iter_with_heartbeat(self, interval: float) -> Iterator[ProgressEvent]:
        """Like iteration, but yields a heartbeat whenever `interval` passes idle."""
        while True:
            event = self.get(timeout=interval)
            if event is not None:
                yield event
                continue
            if self._closed.is_set() and self._queue.empty():
                return
            yield Heartbeat()
