"""
End-to-end through the bridge with in-memory broker and engine.

Job 42 with messageType "alert" and variables {"key": "k1", "value": "v1"}
goes out as ("alert", "42"), comes back, and job 42 is completed with no
error logged.
"""

import logging

from jobbridge.bridge.consumer_loop import ConsumerLoop
from jobbridge.bridge.handler import JobHandler
from jobbridge.broker.envelope import decode_record


def test_job_to_completion(context, topic, subscription, completer, job_factory, caplog):
    job = job_factory(
        key=42,
        variables='{"key": "k1", "value": "v1"}',
        custom_headers='{"messageType": "alert"}',
    )

    with caplog.at_level(logging.INFO):
        JobHandler(context).handle(job)

        # Worker side published exactly one record
        assert len(topic.records) == 1
        record = topic.records[0]
        data = decode_record(record)
        assert (record.key, data.value) == ("alert", "42")
        assert data.key == "alert"

        # The job is still leased: nothing completed it yet
        assert completer.calls == []

        stats = ConsumerLoop(context, subscription).run()

    assert completer.completed == [42]
    assert stats.completed == 1
    assert subscription.committed == [1]
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_redelivered_message_after_completion(context, topic, subscription, completer, job_factory):
    """The same message delivered twice completes once, the second is handled."""
    JobHandler(context).handle(job_factory(key=42))
    topic.records.append(topic.records[0].model_copy(update={"position": 2, "redelivered": True}))

    stats = ConsumerLoop(context, subscription).run()

    assert completer.completed == [42]
    assert stats.completed == 1
    assert stats.stale == 1
