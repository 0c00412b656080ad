# watch_node/http_alert.py
"""
HTTP alert sink: POSTs each alert as JSON to a fixed endpoint.

Requests run on a single background thread so the detection loop never
waits on the network. Failures are logged from the worker; the endpoint's
response body is ignored.
"""

from __future__ import annotations
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

import requests

from .config import ALERT_HTTP_TIMEOUT, ALERT_HTTP_URL

logger = logging.getLogger(__name__)


class HttpAlertSink:
    def __init__(
        self,
        url: str = ALERT_HTTP_URL,
        timeout: float = ALERT_HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = float(timeout)
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alert-http")

    def _post(self, payload: Dict) -> int:
        resp = self._session.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.status_code

    @staticmethod
    def _report(future: Future) -> None:
        e = future.exception()
        if e is not None:
            logger.warning("Alert POST failed: %s", e)

    def send(self, payload: Dict) -> Future:
        future = self._executor.submit(self._post, payload)
        future.add_done_callback(self._report)
        return future

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._session.close()
