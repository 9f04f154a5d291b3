"""Last-issued-wins ordering and debouncing for search requests."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class RequestSequence:
    """Monotonic ticket counter per resource key.

    A caller takes a ticket before issuing a request and checks it when the
    response arrives; only the holder of the newest ticket may apply its
    result. Arrival order is irrelevant.
    """

    def __init__(self) -> None:
        self._latest: Dict[str, int] = {}
        self.lock = threading.Lock()

    def begin(self, key: str) -> int:
        with self.lock:
            ticket = self._latest.get(key, 0) + 1
            self._latest[key] = ticket
            return ticket

    def is_latest(self, key: str, ticket: int) -> bool:
        with self.lock:
            return self._latest.get(key) == ticket

    def run(self, key: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> tuple[bool, Any]:
        """Call ``fn`` under a fresh ticket.

        Returns ``(fresh, result)``; ``fresh`` is False when a newer call for
        the same key was issued while ``fn`` was running.
        """
        ticket = self.begin(key)
        result = fn(*args, **kwargs)
        fresh = self.is_latest(key, ticket)
        if not fresh:
            logger.debug("discarding superseded response key=%s ticket=%s", key, ticket)
        return fresh, result


class Debouncer:
    """Coalesce bursts of calls into one, fired ``wait_ms`` after the last."""

    def __init__(self, fn: Callable[..., Any], wait_ms: int = 300) -> None:
        self.fn = fn
        self.wait = wait_ms / 1000.0
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[tuple] = None
        # started timers, kept until they finish so flush can wait on them
        self._started: List[threading.Timer] = []
        self.lock = threading.Lock()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = (args, kwargs)
            self._timer = threading.Timer(self.wait, self._fire)
            self._timer.daemon = True
            self._started = [t for t in self._started if t.is_alive()]
            self._started.append(self._timer)
            self._timer.start()

    def _fire(self) -> None:
        with self.lock:
            pending, self._pending, self._timer = self._pending, None, None
        if pending is not None:
            args, kwargs = pending
            self.fn(*args, **kwargs)

    def flush(self) -> None:
        """Run a pending call now and wait for any call already running.

        When this returns every call accepted so far has either completed or
        been superseded.
        """
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
            started, self._started = self._started, []
        current = threading.current_thread()
        for timer in started:
            if timer is not current:
                timer.join()
        self._fire()

    def cancel(self) -> None:
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = self._timer = None


class LiveSearch:
    """Search-as-you-type: debounced input, only the newest answer delivered."""

    def __init__(
        self,
        search: Callable[[str], Any],
        on_result: Callable[[str, Any], None],
        key: str = "search",
        wait_ms: int = 300,
        sequence: Optional[RequestSequence] = None,
    ) -> None:
        self.search = search
        self.on_result = on_result
        self.key = key
        self.sequence = sequence or RequestSequence()
        self.debouncer = Debouncer(self._run, wait_ms=wait_ms)

    def type(self, query: str) -> None:
        self.debouncer(query)

    def _run(self, query: str) -> None:
        fresh, result = self.sequence.run(self.key, self.search, query)
        if fresh:
            self.on_result(query, result)
