"""Time sources used to stamp store writes.

Every write records a ``lastModified`` value that other devices compare
against, so all devices should agree on where time comes from. Exactly one
source is configured per process; a failing source is reported, never
silently replaced by another one.
"""

import logging
import time
from email.utils import parsedate_to_datetime

import httpx

from patient_vault.config import Config
from patient_vault.errors import ClockUnavailable

logger = logging.getLogger(__name__)


class SystemClock:
    """Local wall clock, whole seconds since the epoch."""

    name = "local"

    def now(self) -> int:
        return int(time.time())


class ServerClock:
    """Reads the ``Date`` header returned by a well-known HTTP server."""

    name = "server"

    def __init__(self, url: str | None = None, timeout: float | None = None,
                 client: httpx.Client | None = None):
        self.url = url or Config.TIME_SERVER_URL
        self.timeout = timeout if timeout is not None else Config.TIME_SERVER_TIMEOUT
        self._client = client

    def now(self) -> int:
        try:
            if self._client is not None:
                response = self._client.head(self.url, timeout=self.timeout)
            else:
                response = httpx.head(self.url, timeout=self.timeout,
                                      follow_redirects=False)
        except httpx.HTTPError as e:
            raise ClockUnavailable(f"Time server unreachable: {e}") from e

        header = response.headers.get("Date")
        if not header:
            raise ClockUnavailable(f"{self.url} returned no Date header")
        try:
            server_time = parsedate_to_datetime(header)
        except (TypeError, ValueError) as e:
            raise ClockUnavailable(f"Unparsable Date header: {header!r}") from e

        logger.debug("Server time from %s: %s", self.url, server_time.isoformat())
        return int(server_time.timestamp())


def clock_from_config():
    """Build the clock selected by ``Config.CLOCK_SOURCE``."""
    if Config.CLOCK_SOURCE == "server":
        return ServerClock()
    return SystemClock()
