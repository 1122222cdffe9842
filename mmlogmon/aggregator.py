"""Line aggregation: decides where one log entry ends and the next begins.

The decision list is a pure function, ``evaluate``, checked after every
line arrival or timer expiry, in priority order:

1. end pattern matches the last buffered line  -> flush everything
2. begin pattern matches the last buffered line
   (and more than one line is buffered)         -> flush all but the last,
                                                   which seeds the next entry
3. ``max_lines`` reached                        -> flush everything
4. fewer than ``min_lines`` buffered            -> wait for a line, no timer
5. otherwise                                    -> idle: take any line that is
                                                   already available, else race
                                                   the next line against the
                                                   timeout; the timeout flushes

``Segmenter`` drives ``evaluate`` synchronously for a list of events and
``Aggregator`` drives it from a line queue on its own thread.
"""

import logging
import os
import queue
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from mmlogmon.config import AggregationPolicy
from mmlogmon.filters import FilterSet
from mmlogmon.models import LogEntry

logger = logging.getLogger(__name__)


class DecisionKind(Enum):
    FLUSH_END = "end"
    FLUSH_BEGIN = "begin"
    FLUSH_MAX = "max"
    NEED_LINE = "min"
    IDLE = "idle"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    entry: tuple[str, ...] = ()       # lines to flush, empty if nothing flushes
    remainder: tuple[str, ...] = ()   # buffer to keep after the decision

    @property
    def flushes(self) -> bool:
        return bool(self.entry)


def evaluate(
    buffer: Sequence[str],
    policy: AggregationPolicy,
    filters: FilterSet,
) -> Decision:
    """Apply the boundary rules to the pending buffer."""
    if buffer:
        last = buffer[-1]
        if filters.matches_end(last):
            return Decision(DecisionKind.FLUSH_END, tuple(buffer))
        if len(buffer) > 1 and filters.matches_begin(last):
            return Decision(DecisionKind.FLUSH_BEGIN, tuple(buffer[:-1]), (last,))
        if policy.max_lines > 0 and len(buffer) >= policy.max_lines:
            return Decision(DecisionKind.FLUSH_MAX, tuple(buffer))
    if not buffer or len(buffer) < policy.min_lines:
        return Decision(DecisionKind.NEED_LINE, remainder=tuple(buffer))
    return Decision(DecisionKind.IDLE, remainder=tuple(buffer))


class Segmenter:
    """Synchronous driver for ``evaluate``; no threads, no clocks."""

    def __init__(self, policy: AggregationPolicy, filters: FilterSet):
        self._policy = policy
        self._filters = filters
        self._buffer: list[str] = []

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._buffer)

    def state(self) -> DecisionKind:
        return evaluate(self._buffer, self._policy, self._filters).kind

    def feed(self, line: str) -> list[tuple[str, ...]]:
        """Append a line and return the entries it completes."""
        self._buffer.append(line)
        return self._settle()

    def expire(self) -> list[tuple[str, ...]]:
        """The timer fired. Only an idle buffer has a timer running."""
        if self.state() is not DecisionKind.IDLE:
            return []
        entry = tuple(self._buffer)
        self._buffer = []
        return [entry]

    def close(self) -> list[tuple[str, ...]]:
        """End of input: whatever is pending becomes the last entry."""
        entries = self._settle()
        if self._buffer:
            entries.append(tuple(self._buffer))
            self._buffer = []
        return entries

    def _settle(self) -> list[tuple[str, ...]]:
        entries = []
        while True:
            decision = evaluate(self._buffer, self._policy, self._filters)
            if not decision.flushes:
                return entries
            entries.append(decision.entry)
            self._buffer = list(decision.remainder)


def segment(
    events: Iterable[str | None],
    policy: AggregationPolicy,
    filters: FilterSet,
) -> list[tuple[str, ...]]:
    """Segment a stream of events into entries.

    Each event is a line, or None when the timer fires. Anything still
    pending at the end of the stream is returned as the last entry.
    """
    segmenter = Segmenter(policy, filters)
    entries = []
    for event in events:
        if event is None:
            entries.extend(segmenter.expire())
        else:
            entries.extend(segmenter.feed(event))
    entries.extend(segmenter.close())
    return entries


_NOTHING = object()


class Aggregator(threading.Thread):
    """Consumes one file's line queue and emits completed entries.

    A ``None`` item on the queue marks the end of the source: pending
    lines are flushed and the thread stops. Setting the shutdown event
    stops the thread without flushing.
    """

    def __init__(
        self,
        source: str,
        lines: queue.Queue,
        policy: AggregationPolicy,
        filters: FilterSet,
        on_entry: Callable[[LogEntry], object],
        shutdown_event: threading.Event,
        poll_interval: float = 0.25,
    ):
        super().__init__(daemon=True, name=f"aggregator-{os.path.basename(source)}")
        self._source = source
        self._lines = lines
        self._policy = policy
        self._filters = filters
        self._on_entry = on_entry
        self._shutdown = shutdown_event
        self._poll_interval = poll_interval
        self._entries_emitted = 0
        self._lines_seen = 0

    @property
    def entries_emitted(self) -> int:
        return self._entries_emitted

    @property
    def lines_seen(self) -> int:
        return self._lines_seen

    def run(self):
        buffer: list[str] = []
        while not self._shutdown.is_set():
            decision = evaluate(buffer, self._policy, self._filters)
            if decision.flushes:
                logger.debug("%s: flush on %s (%d lines)",
                             self._source, decision.kind.value, len(decision.entry))
                self._emit(decision.entry)
                buffer = list(decision.remainder)
                continue

            if decision.kind is DecisionKind.NEED_LINE:
                item = self._next_line(timeout=None)
            else:
                # Take lines already waiting before giving the timer a chance
                item = self._next_line(timeout=0)
                if item is _NOTHING:
                    item = self._next_line(timeout=self._policy.timeout)
                    if item is _NOTHING and not self._shutdown.is_set():
                        logger.debug("%s: timer expired (%d lines)", self._source, len(buffer))
                        self._emit(tuple(buffer))
                        buffer = []
                        continue

            if item is _NOTHING:
                continue
            if item is None:
                logger.info("Source ended for %s, flushing %d pending line(s)",
                            self._source, len(buffer))
                if buffer:
                    self._emit(tuple(buffer))
                return
            self._lines_seen += 1
            buffer.append(item)

    def _next_line(self, timeout: float | None):
        """Next queue item, or _NOTHING on timeout or shutdown.

        A timeout of None blocks until an item arrives.
        """
        if timeout == 0:
            try:
                return self._lines.get_nowait()
            except queue.Empty:
                return _NOTHING

        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._shutdown.is_set():
            wait = self._poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return _NOTHING
                wait = min(wait, remaining)
            try:
                return self._lines.get(timeout=wait)
            except queue.Empty:
                continue
        return _NOTHING

    def _emit(self, lines: tuple[str, ...]):
        if not lines:
            return
        self._entries_emitted += 1
        try:
            self._on_entry(LogEntry(self._source, lines))
        except Exception:
            logger.exception("Entry handler failed for %s (%d lines)", self._source, len(lines))
