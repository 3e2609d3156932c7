"""
Shared fixtures: in-memory stand-ins for the broker and the engine.

FakeProducer and FakeSubscription share a FakeTopic, so a message published
by a job handler can be consumed by the consumer loop in the same test.
"""

import threading
from concurrent.futures import Future
from typing import Dict, List, Optional

import pytest

from jobbridge.bridge.context import BridgeContext
from jobbridge.broker.envelope import encode_record
from jobbridge.broker.models import DeliveryReport, InboundRecord, OutboundMessage
from jobbridge.config import BridgeConfig
from jobbridge.engine.models import Job
from jobbridge.errors import EngineError, JobNotFoundError


class FakeTopic:
    """Ordered log of records on one topic."""

    def __init__(self, name: str = "vacation"):
        self.name = name
        self.records: List[InboundRecord] = []

    def append(self, key: str, body: bytes) -> InboundRecord:
        record = InboundRecord(
            topic=self.name,
            key=key,
            body=body,
            position=len(self.records) + 1,
        )
        self.records.append(record)
        return record

    def append_message(self, message: OutboundMessage) -> InboundRecord:
        body, _ = encode_record(message, source="jobbridge/test")
        return self.append(message.key, body)


class FakeProducer:
    """Resolves every publish immediately, successfully unless told otherwise."""

    def __init__(self, topic: Optional[FakeTopic] = None):
        self.topic = topic
        self.messages: List[OutboundMessage] = []
        self.fail_with: Optional[str] = None
        self.never_confirm = False

    def produce(self, topic: str, message: OutboundMessage, on_delivery=None) -> Future:
        self.messages.append(message)
        future: Future = Future()
        if self.never_confirm:
            return future

        if self.fail_with:
            report = DeliveryReport.failure(topic, message, self.fail_with, "simulated failure")
        else:
            report = DeliveryReport.success(topic, message)
            if self.topic is not None:
                self.topic.append_message(message)
        future.set_result(report)
        if on_delivery is not None:
            on_delivery(report)
        return future

    def flush(self, timeout: float) -> int:
        return 0


class FakeSubscription:
    """Hands out a topic's records in order; can raise the stop flag when drained."""

    def __init__(self, topic: FakeTopic, stop: Optional[threading.Event] = None):
        self._topic = topic
        self._stop = stop
        self._next = 0
        self.committed: List[int] = []
        self.close_calls = 0

    @property
    def topic(self) -> str:
        return self._topic.name

    def poll(self, timeout: float) -> Optional[InboundRecord]:
        if self._next < len(self._topic.records):
            record = self._topic.records[self._next]
            self._next += 1
            return record
        if self._stop is not None:
            self._stop.set()
        return None

    def commit(self, record: InboundRecord) -> None:
        self.committed.append(record.position)

    def close(self) -> bool:
        self.close_calls += 1
        return self.close_calls == 1


class FakeCompleter:
    """Engine stand-in: knows which jobs are active, rejects the rest."""

    def __init__(self, active_jobs=None):
        self.active: Optional[set] = set(active_jobs) if active_jobs is not None else None
        self.completed: List[int] = []
        self.calls: List[int] = []
        self.errors: Dict[int, List[Exception]] = {}

    def complete_job(self, job_key: int, variables=None) -> None:
        self.calls.append(job_key)
        queued = self.errors.get(job_key)
        if queued:
            raise queued.pop(0)
        if job_key in self.completed:
            raise JobNotFoundError(f"NOT_FOUND: job {job_key} already completed", job_key=job_key)
        if self.active is not None and job_key not in self.active:
            raise JobNotFoundError(f"NOT_FOUND: job {job_key} not found", job_key=job_key)
        self.completed.append(job_key)


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig.from_dict({"worker": {"name": "test-worker"}}, environ={})


@pytest.fixture
def topic() -> FakeTopic:
    return FakeTopic("vacation")


@pytest.fixture
def producer(topic) -> FakeProducer:
    return FakeProducer(topic)


@pytest.fixture
def completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def context(config, producer, completer) -> BridgeContext:
    return BridgeContext(config=config, producer=producer, completer=completer)


def make_job(
    key: int = 42,
    variables: str = '{"key": "k1", "value": "v1"}',
    custom_headers: str = '{"messageType": "alert"}',
) -> Job:
    return Job(key=key, type="put", variables=variables, custom_headers=custom_headers, retries=3)


@pytest.fixture
def job() -> Job:
    return make_job()


@pytest.fixture
def job_factory():
    return make_job


@pytest.fixture
def subscription(topic, context) -> FakeSubscription:
    """Stops the consumer loop once every record has been handed out."""
    return FakeSubscription(topic, stop=context.stop)
