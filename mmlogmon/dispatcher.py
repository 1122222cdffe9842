"""Dispatcher: filters completed entries and delivers them to the webhook."""

import logging
import threading
import time
from enum import Enum

import requests

from mmlogmon.config import Presentation
from mmlogmon.filters import FilterSet
from mmlogmon.metrics import DispatchMetrics
from mmlogmon.models import LogEntry
from mmlogmon.payload import SerializationError, build_payload, encode_payload
from mmlogmon.webhook import WebhookClient

logger = logging.getLogger(__name__)

# HTTP/2 stream refusal; the only failure worth a second attempt
REFUSED_STREAM = "REFUSED_STREAM"
RETRY_BACKOFF = 0.001
MAX_ATTEMPTS = 2


class Outcome(Enum):
    DELIVERED = "delivered"
    EXCLUDED = "excluded"
    NO_BEGIN = "no_begin"
    BLANK = "blank"
    UNSERIALIZABLE = "unserializable"
    FAILED = "failed"


def is_refused_stream(exc: Exception) -> bool:
    return REFUSED_STREAM in str(exc)


class Dispatcher:
    """Turns log entries into webhook posts.

    ``dispatch`` runs synchronously and reports the outcome; ``submit``
    runs it on a daemon thread so the caller never waits on the network.
    """

    def __init__(
        self,
        filters: FilterSet,
        presentation: Presentation,
        client: WebhookClient,
        metrics: DispatchMetrics | None = None,
    ):
        self._filters = filters
        self._presentation = presentation
        self._client = client
        self._metrics = metrics or DispatchMetrics()

    @property
    def metrics(self) -> DispatchMetrics:
        return self._metrics

    def submit(self, entry: LogEntry) -> threading.Thread:
        t = threading.Thread(target=self.dispatch, args=(entry,), daemon=True)
        t.start()
        return t

    def dispatch(self, entry: LogEntry) -> Outcome:
        outcome = self._skip_reason(entry)
        if outcome is None:
            outcome = self._deliver(entry)
        self._metrics.record(outcome.value)
        return outcome

    def _skip_reason(self, entry: LogEntry) -> Outcome | None:
        if self._filters.is_excluded(entry.lines):
            logger.debug("Entry from %s excluded (%d lines)", entry.source, len(entry))
            return Outcome.EXCLUDED
        # End-pattern flushes are never re-checked; only the begin marker is.
        if self._filters.has_begin and not self._filters.matches_begin(entry.first_line):
            logger.debug("Entry from %s does not start with begin pattern, skipped: %r",
                         entry.source, entry.first_line)
            return Outcome.NO_BEGIN
        if not "".join(entry.lines).strip():
            logger.debug("Blank entry from %s skipped", entry.source)
            return Outcome.BLANK
        return None

    def _deliver(self, entry: LogEntry) -> Outcome:
        payload = build_payload(entry, self._presentation)
        try:
            body = encode_payload(payload)
        except SerializationError as exc:
            logger.error("Dropping entry from %s (%d lines): %s", entry.source, len(entry), exc)
            logger.debug("Unserializable payload: %r", payload)
            return Outcome.UNSERIALIZABLE

        logger.debug("Posting entry from %s (%d lines, %d bytes)",
                     entry.source, len(entry), len(body))
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = self._client.post(body)
            except requests.RequestException as exc:
                if attempt < MAX_ATTEMPTS and is_refused_stream(exc):
                    logger.debug("Stream refused by %s, retrying: %s", self._client.url, exc)
                    self._metrics.record_retry()
                    time.sleep(RETRY_BACKOFF)
                    continue
                logger.error(
                    "Failed to post entry from %s (%d lines) to %s after %d attempt(s): %s",
                    entry.source, len(entry), self._client.url, attempt, exc,
                )
                logger.debug("Dropped body: %s", body.decode("utf-8"))
                return Outcome.FAILED

            if not response.ok:
                logger.warning("Webhook %s answered %d for entry from %s",
                               self._client.url, response.status_code, entry.source)
            return Outcome.DELIVERED

        return Outcome.FAILED
