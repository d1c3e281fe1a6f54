import json
import time

import pytest


class FakeResponse:
    def __init__(
        self,
        json_data=None,
        text=None,
        status_code=200,
        json_raises=False,
        headers=None,
    ):
        self._json_data = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.status_code = status_code
        self._json_raises = json_raises
        self.headers = headers or {}

    def json(self):
        if self._json_raises:
            raise ValueError("Invalid JSON")
        if self._json_data is None:
            raise ValueError("No JSON")
        return self._json_data


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(time, "monotonic", fake.monotonic)
    monkeypatch.setattr(time, "sleep", fake.sleep)
    return fake
