"""LogMonitor: wires tailers, aggregators and the dispatcher for every watched file."""

import glob
import logging
import os
import queue
import threading
from dataclasses import dataclass

from watchdog.observers import Observer

from mmlogmon.aggregator import Aggregator
from mmlogmon.config import Settings
from mmlogmon.dispatcher import Dispatcher
from mmlogmon.filters import FilterSet
from mmlogmon.tailer import ChangeNotifier, FileTailer
from mmlogmon.webhook import WebhookClient

logger = logging.getLogger(__name__)


def resolve_targets(files: list[str] | tuple[str, ...], globs: list[str] | tuple[str, ...]) -> list[str]:
    """Explicit paths followed by glob matches, deduplicated, in order.

    Explicit paths are kept even if they do not exist yet; the tailer
    decides what to do with them.
    """
    targets = []
    seen = set()

    def add(path: str):
        key = os.path.abspath(path)
        if key not in seen:
            seen.add(key)
            targets.append(path)

    for path in files:
        add(path)
    for pattern in globs:
        matches = sorted(glob.glob(pattern))
        if not matches:
            logger.warning("Glob %s matched no files", pattern)
        for path in matches:
            add(path)
    return targets


@dataclass
class Watch:
    path: str
    tailer: FileTailer
    aggregator: Aggregator
    tailer_thread: threading.Thread


class LogMonitor:
    """Runs one tailer thread and one aggregator thread per watched file."""

    def __init__(
        self,
        settings: Settings,
        shutdown_event: threading.Event,
        dispatcher: Dispatcher | None = None,
    ):
        self._settings = settings
        self._shutdown = shutdown_event
        self._filters = FilterSet.from_settings(settings)
        self._client = None
        if dispatcher is None:
            self._client = WebhookClient(settings.url, timeout=settings.http_timeout)
            dispatcher = Dispatcher(self._filters, settings.presentation, self._client)
        self._dispatcher = dispatcher
        self._notifier = ChangeNotifier()
        self._observer = None
        self._watches: list[Watch] = []

    @property
    def watches(self) -> list[Watch]:
        return list(self._watches)

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def start(self):
        targets = resolve_targets(self._settings.files, self._settings.globs)
        if not targets:
            logger.warning("No files to watch")
        for path in targets:
            self._watches.append(self._start_watch(path))
        self._start_observer()
        logger.info("Watching %d file(s)", len(self._watches))

    def run(self):
        """Start every watch and block until shutdown_event is set."""
        self.start()
        try:
            self._shutdown.wait()
        finally:
            self.stop()

    def stop(self):
        self._shutdown.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        for watch in self._watches:
            watch.tailer_thread.join(timeout=2)
            watch.aggregator.join(timeout=2)
            logger.info(
                "Watch %s: lines_read=%d lines_aggregated=%d entries=%d",
                watch.path, watch.tailer.lines_read,
                watch.aggregator.lines_seen, watch.aggregator.entries_emitted,
            )
        self._dispatcher.metrics.log_summary()
        if self._client is not None:
            self._client.close()

    def _start_watch(self, path: str) -> Watch:
        logger.debug("Starting watch on file %s", path)
        policy = self._settings.policy
        lines: queue.Queue = queue.Queue()
        tailer = FileTailer(
            path,
            lines,
            self._shutdown,
            start_at_end=policy.start_at_end,
            reopen=policy.reopen,
            poll_interval=self._settings.poll_interval,
            wakeup=self._notifier.register(path),
        )
        aggregator = Aggregator(
            path,
            lines,
            policy,
            self._filters,
            on_entry=self._dispatcher.submit,
            shutdown_event=self._shutdown,
            poll_interval=self._settings.poll_interval,
        )
        tailer_thread = threading.Thread(
            target=tailer.run, daemon=True, name=f"tailer-{os.path.basename(path)}",
        )
        aggregator.start()
        tailer_thread.start()
        return Watch(path, tailer, aggregator, tailer_thread)

    def _start_observer(self):
        observer = Observer()
        scheduled = 0
        for dir_path in self._notifier.watched_dirs():
            if not os.path.isdir(dir_path):
                logger.warning("Directory %s does not exist, polling only", dir_path)
                continue
            observer.schedule(self._notifier, dir_path, recursive=False)
            scheduled += 1
            logger.debug("Watching directory: %s", dir_path)
        if not scheduled:
            return
        try:
            observer.start()
        except OSError as e:
            logger.warning("Change notifications unavailable (%s), polling only", e)
            return
        self._observer = observer
