"""Line source: follows a growing file and queues each appended line."""

import logging
import os
import queue
import threading

from watchdog.events import FileSystemEventHandler

logger = logging.getLogger(__name__)


class ChangeNotifier(FileSystemEventHandler):
    """watchdog handler that wakes the tailer of any file with activity.

    Scheduled on the parent directory of every watched file so that
    rotation (delete/create/move) is seen as well as appends.
    """

    def __init__(self):
        super().__init__()
        self._events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def register(self, path: str) -> threading.Event:
        abs_path = os.path.abspath(path)
        with self._lock:
            return self._events.setdefault(abs_path, threading.Event())

    def watched_dirs(self) -> set[str]:
        with self._lock:
            return {os.path.dirname(p) for p in self._events}

    def _wake(self, path):
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        with self._lock:
            event = self._events.get(os.path.abspath(path))
        if event is not None:
            event.set()

    def on_modified(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._wake(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._wake(event.src_path)
            self._wake(event.dest_path)


class FileTailer:
    """Follows one file and puts every complete line on a queue.

    Handles:
    - Starting at the beginning or at the end of the file
    - Partial lines (held until their newline arrives)
    - File truncation (seek back to start)
    - Rotation when ``reopen`` is set (inode change, or file not yet existing)

    Without ``reopen`` a file that cannot be opened abandons the watch.
    When the watch is abandoned a ``None`` is queued to mark the end.
    """

    def __init__(
        self,
        path: str,
        lines: queue.Queue,
        shutdown_event: threading.Event,
        start_at_end: bool = False,
        reopen: bool = False,
        poll_interval: float = 0.25,
        wakeup: threading.Event | None = None,
    ):
        self._path = path
        self._lines = lines
        self._shutdown = shutdown_event
        self._start_at_end = start_at_end
        self._reopen = reopen
        self._poll_interval = poll_interval
        self._wakeup = wakeup
        self._file = None
        self._inode = None
        self._partial = b""
        self._lines_read = 0

    @property
    def lines_read(self) -> int:
        return self._lines_read

    def run(self):
        """Main tailing loop — blocks until shutdown_event is set."""
        try:
            if not self._open_initial():
                self._abandon()
                return

            while not self._shutdown.is_set():
                if self._reopen and self._check_rotation():
                    continue
                if self._check_truncation():
                    continue

                chunk = self._file.readline()
                if chunk:
                    self._handle_chunk(chunk)
                else:
                    self._wait()
        except OSError as e:
            logger.error("Error tailing %s: %s", self._path, e)
            self._abandon()
        finally:
            self._close_file()

    def _open_initial(self) -> bool:
        if self._reopen:
            self._wait_for_file()
            if self._shutdown.is_set():
                return False
        try:
            self._open_file(seek_end=self._start_at_end)
        except OSError as e:
            logger.error("Error opening %s for tailing: %s", self._path, e)
            return False
        return True

    def _abandon(self):
        if not self._shutdown.is_set():
            logger.warning("Abandoning watch on %s", self._path)
            self._lines.put(None)

    def _wait(self):
        """Sleep until a change notification or the poll interval elapses."""
        if self._wakeup is None:
            self._shutdown.wait(self._poll_interval)
            return
        self._wakeup.wait(self._poll_interval)
        self._wakeup.clear()

    def _wait_for_file(self):
        """Block until the file exists or shutdown is requested."""
        while not self._shutdown.is_set():
            if os.path.exists(self._path):
                return
            logger.debug("Waiting for file %s to appear...", self._path)
            self._wait()

    def _open_file(self, seek_end: bool = False):
        self._file = open(self._path, "rb")
        self._inode = os.fstat(self._file.fileno()).st_ino
        self._partial = b""
        if seek_end:
            self._file.seek(0, os.SEEK_END)
        logger.debug("Opened %s (inode=%d, at_end=%s)", self._path, self._inode, seek_end)

    def _close_file(self):
        if self._file:
            self._file.close()
            self._file = None

    def _handle_chunk(self, chunk: bytes):
        data = self._partial + chunk
        if not data.endswith(b"\n"):
            self._partial = data
            return
        self._partial = b""
        self._push(data)

    def _push(self, data: bytes):
        line = data.rstrip(b"\n")
        if line.endswith(b"\r"):
            line = line[:-1]
        self._lines_read += 1
        self._lines.put(line.decode("utf-8", errors="replace"))

    def _check_rotation(self) -> bool:
        """Detect log rotation by comparing inodes. Returns True if rotated."""
        try:
            current_inode = os.stat(self._path).st_ino
        except FileNotFoundError:
            return False

        if current_inode == self._inode:
            return False

        logger.info("File rotation detected for %s", self._path)
        # Lines still in the old file belong before the new file's lines
        for chunk in self._file:
            self._handle_chunk(chunk)
        if self._partial:
            self._push(self._partial)
        self._close_file()
        self._reopen_rotated()
        return True

    def _reopen_rotated(self):
        """Open the replacement file, waiting again if it vanishes before open."""
        while not self._shutdown.is_set():
            self._wait_for_file()
            if self._shutdown.is_set():
                return
            try:
                self._open_file(seek_end=False)
                return
            except OSError as e:
                logger.info("Reopening %s failed (%s), retrying", self._path, e)
                self._wait()

    def _check_truncation(self) -> bool:
        """Detect file truncation (e.g., > file). Returns True if truncated."""
        size = os.fstat(self._file.fileno()).st_size
        if self._file.tell() > size:
            logger.info("File truncation detected for %s", self._path)
            self._file.seek(0)
            self._partial = b""
            return True
        return False
