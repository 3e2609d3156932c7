"""
Tests for ConsumerLoop.

These tests verify:
1. Records are completed in consumption order and acknowledged
2. Duplicate correlation keys are handled, not fatal
3. Malformed records are logged, acknowledged and skipped
4. An interrupt during a blocked pull stops the loop promptly and the
   subscription is closed exactly once
5. An interrupt during a completion lets it finish and acknowledges the record
"""

import logging
import threading
import time

import pytest

from jobbridge.bridge.consumer_loop import ConsumerLoop
from jobbridge.broker.models import OutboundMessage


def publish(topic, key, value):
    return topic.append_message(OutboundMessage(key=key, value=value))


class TestOrdering:

    def test_completes_in_order(self, context, topic, subscription, completer):
        for value in ("3", "1", "2"):
            publish(topic, "alert", value)

        stats = ConsumerLoop(context, subscription).run()

        assert completer.calls == [3, 1, 2]
        assert subscription.committed == [1, 2, 3]
        assert stats.completed == 3

    def test_closes_subscription(self, context, topic, subscription):
        ConsumerLoop(context, subscription).run()
        assert subscription.close_calls == 1


class TestDuplicates:

    def test_duplicates_do_not_stop_the_loop(self, context, topic, subscription, completer, caplog):
        for value in ("42", "42", "42", "43"):
            publish(topic, "alert", value)

        with caplog.at_level(logging.WARNING):
            stats = ConsumerLoop(context, subscription).run()

        assert completer.completed == [42, 43]
        assert stats.completed == 2
        assert stats.stale == 2
        assert subscription.committed == [1, 2, 3, 4]
        assert sum("stale or duplicate" in r.message for r in caplog.records) == 2

    def test_expired_job(self, context, topic, subscription, completer):
        completer.active = {1}
        publish(topic, "alert", "2")
        publish(topic, "alert", "1")

        stats = ConsumerLoop(context, subscription).run()

        assert completer.completed == [1]
        assert stats.stale == 1


class TestMalformedRecords:

    @pytest.mark.parametrize("value", ["abc", "-5", "042", "4.2", "99999999999999999999"])
    def test_bad_correlation_key_skipped(self, context, topic, subscription, completer, caplog, value):
        publish(topic, "alert", value)
        publish(topic, "alert", "7")

        with caplog.at_level(logging.ERROR):
            stats = ConsumerLoop(context, subscription).run()

        assert completer.calls == [7]
        assert stats.skipped == 1
        assert subscription.committed == [1, 2]
        assert "Skipping record at position 1" in caplog.text

    def test_bad_envelope_skipped(self, context, topic, subscription, completer, caplog):
        topic.append("alert", b"not json")
        topic.append("alert", b'{"specversion": "1.0"}')
        publish(topic, "alert", "8")

        with caplog.at_level(logging.ERROR):
            stats = ConsumerLoop(context, subscription).run()

        assert completer.calls == [8]
        assert stats.skipped == 2
        assert subscription.committed == [1, 2, 3]

    def test_process_reports_outcome(self, context, topic, subscription):
        record = publish(topic, "alert", "x")
        assert ConsumerLoop(context, subscription).process(record) == "skipped"


class BlockingSubscription:
    """Pull that blocks for the full timeout and never yields a record."""

    topic = "vacation"

    def __init__(self):
        self.polls = 0
        self.close_calls = 0
        self._never = threading.Event()

    def poll(self, timeout):
        self.polls += 1
        self._never.wait(timeout)
        return None

    def commit(self, record):
        raise AssertionError("nothing to commit")

    def close(self):
        self.close_calls += 1
        return self.close_calls == 1


class TestCancellation:

    def test_interrupt_during_pull(self, context):
        subscription = BlockingSubscription()
        loop = ConsumerLoop(context, subscription)
        thread = threading.Thread(target=loop.run, daemon=True)

        thread.start()
        time.sleep(0.1)
        context.stop.set()
        thread.join(timeout=context.config.consumer.poll_timeout_seconds + 2)

        assert not thread.is_alive()
        assert subscription.close_calls == 1

    def test_stopped_before_start(self, context):
        subscription = BlockingSubscription()
        context.stop.set()

        ConsumerLoop(context, subscription).run()

        assert subscription.polls == 0
        assert subscription.close_calls == 1

    def test_closes_on_error(self, context):
        class Broken(BlockingSubscription):
            def poll(self, timeout):
                raise ConnectionError("broker gone")

        subscription = Broken()
        with pytest.raises(ConnectionError):
            ConsumerLoop(context, subscription).run()
        assert subscription.close_calls == 1

    def test_requires_completer(self, config):
        from jobbridge.bridge.context import BridgeContext

        with pytest.raises(ValueError):
            ConsumerLoop(BridgeContext(config=config), BlockingSubscription())


class TestInterruptDuringCompletion:

    def test_in_flight_completion_finishes(self, context, topic, subscription, completer):
        complete_job = completer.complete_job

        def interrupted_mid_completion(job_key, variables=None):
            context.stop.set()
            time.sleep(0.05)
            complete_job(job_key, variables)

        completer.complete_job = interrupted_mid_completion
        publish(topic, "alert", "42")
        publish(topic, "alert", "43")

        stats = ConsumerLoop(context, subscription).run()

        assert completer.completed == [42]
        assert subscription.committed == [1]
        assert stats.consumed == 1
        assert stats.completed == 1
        assert subscription.close_calls == 1
