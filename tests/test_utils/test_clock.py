"""Tests for the write-timestamp clock sources."""

from unittest.mock import patch

import httpx
import pytest

from patient_vault.config import Config
from patient_vault.errors import ClockUnavailable
from patient_vault.utils.clock import ServerClock, SystemClock, clock_from_config


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestSystemClock:
    def test_returns_whole_seconds(self):
        with patch("patient_vault.utils.clock.time.time",
                   return_value=1_700_000_000.9):
            assert SystemClock().now() == 1_700_000_000


class TestServerClock:
    def test_reads_date_header(self):
        client = _client(lambda request: httpx.Response(
            200, headers={"Date": "Tue, 14 Nov 2023 22:13:20 GMT"}
        ))
        clock = ServerClock("https://time.example", client=client)
        assert clock.now() == 1_700_000_000

    def test_uses_head_request(self):
        seen = []

        def handler(request):
            seen.append(request.method)
            return httpx.Response(
                200, headers={"Date": "Tue, 14 Nov 2023 22:13:20 GMT"}
            )

        ServerClock("https://time.example", client=_client(handler)).now()
        assert seen == ["HEAD"]

    def test_missing_header(self):
        client = _client(lambda request: httpx.Response(200))
        with pytest.raises(ClockUnavailable):
            ServerClock("https://time.example", client=client).now()

    def test_unparsable_header(self):
        client = _client(lambda request: httpx.Response(
            200, headers={"Date": "sometime soon"}
        ))
        with pytest.raises(ClockUnavailable):
            ServerClock("https://time.example", client=client).now()

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(ClockUnavailable):
            ServerClock("https://time.example", client=_client(handler)).now()

    def test_defaults_from_config(self):
        clock = ServerClock()
        assert clock.url == Config.TIME_SERVER_URL
        assert clock.timeout == Config.TIME_SERVER_TIMEOUT


class TestClockFromConfig:
    def test_local_default(self):
        assert isinstance(clock_from_config(), SystemClock)

    def test_server(self, monkeypatch):
        monkeypatch.setattr(Config, "CLOCK_SOURCE", "server")
        assert isinstance(clock_from_config(), ServerClock)
