from pathlib import Path

import pytest

from courier.errors import ReadExhaustedError, TransportError
from courier.models.schemas import DeliveryOutcome, DeliveryRequest, HttpMethod
from domains.transmission.delivery.policy import DeliveryPolicy


class FakeClient:
    def __init__(self, statuses=None, error=None):
        self.requests: list[DeliveryRequest] = []
        self.statuses = list(statuses or [])
        self.error = error

    async def deliver(self, request: DeliveryRequest) -> DeliveryOutcome:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if self.statuses else 200
        return DeliveryOutcome(path=request.path, method=request.method, success=True,
                               status_code=status)


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep:
            self.on_sleep(len(self.delays))


async def test_send_file_posts_content(tmp_path):
    target = tmp_path / "a.txt"
    target.write_text("hello")
    client = FakeClient()
    sleep = RecordingSleep()

    outcome = await DeliveryPolicy(client, sleep=sleep).send_file(str(target))

    assert outcome.success
    assert outcome.attempts == 1
    assert sleep.delays == []
    assert client.requests == [DeliveryRequest(str(target), HttpMethod.POST, b"hello")]


async def test_missing_file_exhausts_reads_with_linear_backoff(tmp_path):
    client = FakeClient()
    sleep = RecordingSleep()
    missing = str(tmp_path / "missing.txt")

    outcome = await DeliveryPolicy(client, sleep=sleep).send_file(missing)

    assert not outcome.success
    assert isinstance(outcome.error, ReadExhaustedError)
    assert outcome.error.attempts == 5
    assert isinstance(outcome.error.last_error, FileNotFoundError)
    assert outcome.attempts == 5
    assert sleep.delays == [0.5, 1.0, 1.5, 2.0]
    assert client.requests == []


async def test_empty_file_is_treated_as_incomplete(tmp_path):
    target = tmp_path / "empty.txt"
    target.write_bytes(b"")
    client = FakeClient()
    sleep = RecordingSleep()

    outcome = await DeliveryPolicy(client, sleep=sleep).send_file(str(target))

    assert isinstance(outcome.error, ReadExhaustedError)
    assert "empty" in str(outcome.error)
    assert client.requests == []


async def test_read_succeeding_on_third_attempt_sends_once(tmp_path):
    target = tmp_path / "late.txt"
    target.write_bytes(b"")

    def fill(sleeps: int) -> None:
        if sleeps == 2:
            target.write_text("done")

    client = FakeClient()
    sleep = RecordingSleep(on_sleep=fill)

    outcome = await DeliveryPolicy(client, sleep=sleep).send_file(str(target))

    assert outcome.success
    assert outcome.attempts == 3
    assert sleep.delays == [0.5, 1.0]
    assert len(client.requests) == 1
    assert client.requests[0].content == b"done"


async def test_read_content_raises_when_exhausted(tmp_path):
    policy = DeliveryPolicy(FakeClient(), read_attempts=2, sleep=RecordingSleep())

    with pytest.raises(ReadExhaustedError):
        await policy.read_content(str(tmp_path / "nope"))


async def test_transport_error_is_reported_without_retry(tmp_path):
    target = tmp_path / "a.txt"
    target.write_text("hello")
    error = TransportError(str(target), "POST", "connection refused")
    client = FakeClient(error=error)
    sleep = RecordingSleep()

    outcome = await DeliveryPolicy(client, sleep=sleep, status_retries=3).send_file(str(target))

    assert not outcome.success
    assert outcome.error is error
    assert len(client.requests) == 1
    assert sleep.delays == []


async def test_send_removal_deletes_without_reading(tmp_path):
    client = FakeClient()
    path = str(tmp_path / "gone.txt")

    outcome = await DeliveryPolicy(client, sleep=RecordingSleep()).send_removal(path)

    assert outcome.success
    assert client.requests == [DeliveryRequest(path, HttpMethod.DELETE, b"")]


async def test_non_2xx_is_accepted_by_default(tmp_path):
    target = tmp_path / "a.txt"
    target.write_text("hello")
    client = FakeClient(statuses=[500])

    outcome = await DeliveryPolicy(client, sleep=RecordingSleep()).send_file(str(target))

    assert outcome.success
    assert outcome.status_code == 500
    assert len(client.requests) == 1


async def test_status_retries_repeat_non_2xx_and_reread(tmp_path):
    target = tmp_path / "a.txt"
    target.write_text("v1")
    client = FakeClient(statuses=[503, 503, 200])

    def rewrite(sleeps: int) -> None:
        target.write_text(f"v{sleeps + 1}")

    sleep = RecordingSleep(on_sleep=rewrite)
    outcome = await DeliveryPolicy(client, sleep=sleep, status_retries=3).send_file(str(target))

    assert outcome.accepted
    assert [r.content for r in client.requests] == [b"v1", b"v2", b"v3"]
    assert sleep.delays == [0.5, 1.0]


async def test_status_retries_are_bounded():
    client = FakeClient(statuses=[500, 500, 500])

    outcome = await DeliveryPolicy(client, sleep=RecordingSleep(), status_retries=1).send_removal("/x")

    assert outcome.status_code == 500
    assert len(client.requests) == 2


def test_read_attempts_must_be_positive():
    with pytest.raises(ValueError):
        DeliveryPolicy(FakeClient(), read_attempts=0)
