"""
Shared fixtures: a controllable clock, a recording sleep, and a fake
requests session so no test touches the network.
"""
import pytest
import requests

from config.settings import Settings
from cryptodash.resilience import ResilienceLayer


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that records delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


_INVALID_JSON = object()


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is _INVALID_JSON or self._payload is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """
    Stand-in for requests.Session.

    Queued items are returned (or raised, for exceptions) in order; the last
    one repeats once the queue is down to a single item.
    """

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    def queue(self, *responses) -> None:
        self._responses.extend(responses)

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        if not self._responses:
            raise requests.ConnectionError("no response queued")
        item = self._responses[0] if len(self._responses) == 1 else self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        pass


INVALID_JSON = _INVALID_JSON


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def test_settings():
    return Settings(coingecko_api_key=None, strict_fetch=False, _env_file=None)


@pytest.fixture
def layer(test_settings, clock, sleep):
    return ResilienceLayer(config=test_settings, clock=clock, sleep=sleep)
