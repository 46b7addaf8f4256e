"""
Service-level tests for the transmitter agent.

The whole pipeline runs for real (notifier bridge, registrar, dispatcher,
delivery policy, HTTP client); only the OS watcher and the network are
replaced, by a fake observer and an httpx mock transport.
"""

import asyncio
import gzip
import json

import httpx
import pytest
from watchdog.events import DirCreatedEvent, FileDeletedEvent, FileModifiedEvent

import scripts.transmitter as transmitter_cli
from courier.errors import NotifierFailedError, WatchSetupError
from courier.models.schemas import WatchConfig
from courier.utils.config import Settings
from courier.utils.http_client import ReceiverClient
from domains.transmission.agent import TransmitterAgent
from scripts.transmitter import EXIT_CONFIG, EXIT_FATAL, main


class Receiver:
    """Records what the mock receiver was sent."""

    def __init__(self):
        self.received: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(gzip.decompress(request.content))
        self.received.append((request.method, body))
        return httpx.Response(200, text="ok")


def _settings(**overrides) -> Settings:
    values = {"settle_delay": 0, "read_backoff": 0.01, "event_timeout": 5}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def receiver():
    return Receiver()


@pytest.fixture
async def client(watch_config, receiver):
    client = ReceiverClient(watch_config, transport=httpx.MockTransport(receiver))
    yield client
    await client.aclose()


async def _start(agent: TransmitterAgent, observer, wait_until):
    stop = asyncio.Event()
    task = asyncio.create_task(agent.run(stop))
    await wait_until(lambda: observer.started and observer.scheduled)
    return stop, task


async def test_write_and_delete_reach_the_receiver(tmp_path, fake_observer, watch_config, client, receiver, wait_until):
    observer = fake_observer
    agent = TransmitterAgent(watch_config, _settings(), client=client, observer=observer)
    stop, task = await _start(agent, observer, wait_until)

    target = tmp_path / "a.txt"
    target.write_text("hello")
    observer.handler.on_any_event(FileModifiedEvent(str(target)))
    await wait_until(lambda: len(receiver.received) == 1)

    target.unlink()
    observer.handler.on_any_event(FileDeletedEvent(str(target)))
    await wait_until(lambda: len(receiver.received) == 2)

    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert receiver.received == [
        ("POST", {"path": str(target), "content": "hello"}),
        ("DELETE", {"path": str(target), "content": ""}),
    ]
    assert observer.stopped
    assert agent.dispatcher.stats.delivered == 2


async def test_repeated_writes_within_window_send_once(tmp_path, fake_observer, watch_config, client, receiver, wait_until):
    observer = fake_observer
    agent = TransmitterAgent(watch_config, _settings(), client=client, observer=observer)
    stop, task = await _start(agent, observer, wait_until)

    target = tmp_path / "a.txt"
    target.write_text("v1")
    for _ in range(3):
        observer.handler.on_any_event(FileModifiedEvent(str(target)))
    await wait_until(lambda: agent.dispatcher.stats.received == 3)

    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert [method for method, _ in receiver.received] == ["POST"]
    assert agent.dispatcher.stats.debounced == 2


async def test_plain_file_root_is_watched_through_parent(tmp_path, fake_observer, client, receiver, wait_until):
    target = tmp_path / "only.txt"
    target.write_text("x")
    config = WatchConfig(url="http://receiver.test/", paths=(str(target),), key="s3cret-key")
    observer = fake_observer
    agent = TransmitterAgent(config, _settings(), client=client, observer=observer)
    stop, task = await _start(agent, observer, wait_until)

    observer.handler.on_any_event(FileModifiedEvent(str(tmp_path / "sibling.txt")))
    observer.handler.on_any_event(FileModifiedEvent(str(target)))
    await wait_until(lambda: receiver.received)

    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert observer.scheduled == [str(tmp_path)]
    assert receiver.received == [("POST", {"path": str(target), "content": "x"})]


async def test_initial_sync_sends_existing_files(tmp_path, fake_observer, watch_config, client, receiver, wait_until):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.txt").write_text("b")
    (tmp_path / "a.txt").write_text("a")
    observer = fake_observer
    agent = TransmitterAgent(watch_config, _settings(initial_sync=True), client=client, observer=observer)
    stop, task = await _start(agent, observer, wait_until)

    await wait_until(lambda: len(receiver.received) == 2)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert sorted(body["path"] for _, body in receiver.received) == [
        str(tmp_path / "a.txt"), str(tmp_path / "sub" / "b.txt"),
    ]
    assert observer.scheduled == [str(tmp_path)]
    assert observer.recursive[str(tmp_path)] is True


async def test_registration_failure_aborts_startup(tmp_path, fake_observer, watch_config, client):
    observer = fake_observer
    observer.fail_on = {str(tmp_path)}
    agent = TransmitterAgent(watch_config, _settings(), client=client, observer=observer)

    with pytest.raises(WatchSetupError):
        await asyncio.wait_for(agent.run(asyncio.Event()), timeout=5)

    assert observer.stopped


def test_cli_missing_config_exits_with_config_error(tmp_path):
    assert main(["-C", str(tmp_path / "absent.json")]) == EXIT_CONFIG


async def test_new_nested_directory_is_covered_without_a_new_watch(
    tmp_path, fake_observer, watch_config, client, receiver, wait_until
):
    observer = fake_observer
    agent = TransmitterAgent(watch_config, _settings(), client=client, observer=observer)
    stop, task = await _start(agent, observer, wait_until)

    fresh = tmp_path / "one" / "two"
    fresh.mkdir(parents=True)
    (fresh / "c.txt").write_text("c")
    observer.handler.on_any_event(DirCreatedEvent(str(tmp_path / "one")))
    await wait_until(lambda: receiver.received)

    nested = fresh / "d.txt"
    nested.write_text("d")
    observer.handler.on_any_event(FileModifiedEvent(str(nested)))
    await wait_until(lambda: len(receiver.received) == 2)

    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert receiver.received == [
        ("POST", {"path": str(fresh / "c.txt"), "content": "c"}),
        ("POST", {"path": str(nested), "content": "d"}),
    ]
    assert str(fresh) in agent.registrar.registered
    assert observer.scheduled == [str(tmp_path)]


async def test_observer_crash_is_fatal(fake_observer, watch_config, client, wait_until):
    observer = fake_observer
    agent = TransmitterAgent(
        watch_config, _settings(notifier_check_interval=0.01), client=client, observer=observer
    )
    _, task = await _start(agent, observer, wait_until)

    observer.crashed = True

    with pytest.raises(NotifierFailedError):
        await asyncio.wait_for(task, timeout=5)
    assert observer.stopped


def test_cli_notifier_failure_exits_fatal(tmp_path, monkeypatch):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"Url": "http://receiver.test/", "Paths": [str(tmp_path)], "Key": "k"}))

    async def serve(config, settings):
        raise NotifierFailedError("Filesystem observer stopped unexpectedly")

    monkeypatch.setattr(transmitter_cli, "serve", serve)

    assert main(["-C", str(config)]) == EXIT_FATAL
