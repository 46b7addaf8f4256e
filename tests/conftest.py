"""Shared fixtures for Courier tests."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from courier.models.schemas import DeliveryOutcome, HttpMethod, WatchConfig


class FakeObserver:
    """Stands in for a watchdog observer; records scheduled paths."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.handler = None
        self.scheduled: list[str] = []
        self.recursive: dict[str, bool] = {}
        self.started = False
        self.stopped = False
        self.crashed = False

    def schedule(self, handler, path, recursive=False):
        if path in self.fail_on:
            raise OSError(24, "inotify instance limit reached", path)
        self.handler = handler
        self.scheduled.append(path)
        self.recursive[path] = recursive
        return path

    def unschedule(self, watch):
        self.scheduled.remove(watch)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def is_alive(self):
        return self.started and not self.stopped and not self.crashed

    def join(self, timeout=None):
        pass


class RecordingPolicy:
    """Delivery policy double that records calls and succeeds."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    async def send_file(self, path: str) -> DeliveryOutcome:
        self.calls.append(("POST", path))
        return DeliveryOutcome(path=path, method=HttpMethod.POST, success=True, status_code=200)

    async def send_removal(self, path: str) -> DeliveryOutcome:
        self.calls.append(("DELETE", path))
        return DeliveryOutcome(path=path, method=HttpMethod.DELETE, success=True, status_code=200)


@pytest.fixture
def watch_config(tmp_path) -> WatchConfig:
    return WatchConfig(url="http://receiver.test/", paths=(str(tmp_path),), key="s3cret-key")


@pytest.fixture
def fake_observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
def recording_policy() -> RecordingPolicy:
    return RecordingPolicy()


@pytest.fixture
def wait_until() -> Callable:
    """Poll a condition on the running loop until it holds."""

    async def _wait_until(condition: Callable[[], bool], timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait_until
