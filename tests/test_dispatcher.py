"""Tests for the dispatcher's filtering, delivery and retry policy."""

import json
from unittest import mock

import requests

from mmlogmon import dispatcher as dispatcher_module
from mmlogmon.config import Presentation
from mmlogmon.dispatcher import Dispatcher, Outcome, is_refused_stream
from mmlogmon.filters import FilterSet
from mmlogmon.models import LogEntry


class FakeClient:
    """Records posted bodies; raises queued errors before succeeding."""

    url = "http://hooks.test/xyz"

    def __init__(self, errors=(), status=200):
        self.bodies: list[bytes] = []
        self._errors = list(errors)
        self._status = status

    def post(self, body: bytes):
        self.bodies.append(body)
        if self._errors:
            raise self._errors.pop(0)
        response = mock.Mock()
        response.status_code = self._status
        response.ok = self._status < 400
        return response


def _dispatcher(client, filters=None, presentation=None):
    return Dispatcher(filters or FilterSet.compile(), presentation or Presentation(), client)


def _entry(*lines):
    return LogEntry("/var/log/app.log", tuple(lines))


class TestSkips:
    def test_excluded_entry_never_posted(self):
        client = FakeClient()
        d = _dispatcher(client, FilterSet.compile(exclude=["healthcheck"]))
        assert d.dispatch(_entry("ERROR a", "GET /healthcheck")) is Outcome.EXCLUDED
        assert client.bodies == []

    def test_first_line_must_match_begin(self):
        client = FakeClient()
        d = _dispatcher(client, FilterSet.compile(begin="^ERROR"))
        assert d.dispatch(_entry("  at x", "ERROR late")) is Outcome.NO_BEGIN
        assert client.bodies == []
        assert d.dispatch(_entry("ERROR a", "  at x")) is Outcome.DELIVERED
        assert len(client.bodies) == 1

    def test_end_pattern_not_rechecked(self):
        client = FakeClient()
        d = _dispatcher(client, FilterSet.compile(end="^END"))
        assert d.dispatch(_entry("no end here")) is Outcome.DELIVERED

    def test_blank_entry_never_posted(self):
        client = FakeClient()
        d = _dispatcher(client)
        assert d.dispatch(_entry("", "   ", "\t")) is Outcome.BLANK
        assert client.bodies == []

    def test_exclude_checked_before_begin(self):
        client = FakeClient()
        d = _dispatcher(client, FilterSet.compile(begin="^ERROR", exclude=["noise"]))
        assert d.dispatch(_entry("noise")) is Outcome.EXCLUDED


class TestDelivery:
    def test_posts_attachment_payload(self):
        client = FakeClient()
        d = _dispatcher(client, presentation=Presentation(username="bot"))
        assert d.dispatch(_entry("ERROR boom")) is Outcome.DELIVERED
        payload = json.loads(client.bodies[0])
        assert payload["username"] == "bot"
        assert payload["attachments"][0]["text"] == "  ERROR boom"

    def test_posts_plain_payload(self):
        client = FakeClient()
        d = _dispatcher(client, presentation=Presentation(attach=False, prefix="!"))
        d.dispatch(_entry("x"))
        payload = json.loads(client.bodies[0])
        assert payload["text"] == "! New log entry in /var/log/app.log\n```\nx\n```"

    def test_http_error_status_still_delivered(self):
        client = FakeClient(status=500)
        d = _dispatcher(client)
        assert d.dispatch(_entry("x")) is Outcome.DELIVERED
        assert len(client.bodies) == 1

    def test_unserializable_payload_dropped(self):
        client = FakeClient()
        d = _dispatcher(client)
        with mock.patch.object(dispatcher_module, "build_payload",
                               return_value={"username": object()}):
            assert d.dispatch(_entry("x")) is Outcome.UNSERIALIZABLE
        assert client.bodies == []


class TestRetry:
    def test_refused_stream_retried_once(self):
        err = requests.ConnectionError("stream error: stream ID 3; REFUSED_STREAM")
        client = FakeClient(errors=[err])
        d = _dispatcher(client)
        with mock.patch.object(dispatcher_module.time, "sleep") as sleep:
            assert d.dispatch(_entry("x")) is Outcome.DELIVERED
        sleep.assert_called_once_with(dispatcher_module.RETRY_BACKOFF)
        assert len(client.bodies) == 2
        assert client.bodies[0] == client.bodies[1]
        assert d.metrics.retries == 1

    def test_second_failure_dropped(self):
        errors = [
            requests.ConnectionError("REFUSED_STREAM"),
            requests.ConnectionError("REFUSED_STREAM"),
            requests.ConnectionError("REFUSED_STREAM"),
        ]
        client = FakeClient(errors=errors)
        d = _dispatcher(client)
        assert d.dispatch(_entry("x")) is Outcome.FAILED
        assert len(client.bodies) == 2

    def test_other_errors_not_retried(self):
        client = FakeClient(errors=[requests.ConnectionError("Connection refused")])
        d = _dispatcher(client)
        assert d.dispatch(_entry("x")) is Outcome.FAILED
        assert len(client.bodies) == 1
        assert d.metrics.retries == 0

    def test_timeout_not_retried(self):
        client = FakeClient(errors=[requests.Timeout("read timed out")])
        d = _dispatcher(client)
        assert d.dispatch(_entry("x")) is Outcome.FAILED
        assert len(client.bodies) == 1

    def test_signature_detection(self):
        assert is_refused_stream(Exception("http2: REFUSED_STREAM"))
        assert not is_refused_stream(Exception("refused"))


class TestSubmitAndMetrics:
    def test_submit_runs_in_background(self):
        client = FakeClient()
        d = _dispatcher(client)
        t = d.submit(_entry("x"))
        t.join(timeout=2)
        assert not t.is_alive()
        assert len(client.bodies) == 1

    def test_metrics_count_outcomes(self):
        client = FakeClient()
        d = _dispatcher(client, FilterSet.compile(exclude=["skip"]))
        d.dispatch(_entry("send"))
        d.dispatch(_entry("skip me"))
        d.dispatch(_entry(" "))
        snap = d.metrics.snapshot()
        assert snap["delivered"] == 1
        assert snap["excluded"] == 1
        assert snap["blank"] == 1
        assert snap["total"] == 3
