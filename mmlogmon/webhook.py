"""Webhook client — POSTs JSON bodies to the configured endpoint."""

import logging

import requests

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class WebhookClient:
    """Thin wrapper around a requests Session bound to one webhook URL.

    Transport errors propagate as ``requests.RequestException`` so the
    caller decides whether to retry.
    """

    def __init__(self, url: str, timeout: float = 10.0, session: requests.Session | None = None):
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self._url

    def post(self, body: bytes) -> requests.Response:
        response = self._session.post(
            self._url, data=body, headers=JSON_HEADERS, timeout=self._timeout,
        )
        logger.debug("Webhook responded %d (%d bytes sent)", response.status_code, len(body))
        return response

    def close(self):
        self._session.close()
