from datetime import datetime, timedelta, timezone

import pytest

from database import MemoryStateStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Replays canned responses (or raises canned exceptions) in order."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, url, kwargs):
        self.calls.append((url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next(url, kwargs)

    def post(self, url, **kwargs):
        return self._next(url, kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def state_store():
    return MemoryStateStore()
