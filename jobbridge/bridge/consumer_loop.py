"""
Consumer loop: maps consumed records back to jobs and completes them.

One record at a time, in consumption order: pull, decode the correlation key,
complete the job, acknowledge the record, pull the next one. Nothing a single
record does stops the loop. Malformed records are logged with their position
and acknowledged; failed completions are resolved by the
CompletionErrorHandler.

The loop checks the context's stop event before every pull and pulls with a
bounded wait, so an interrupt takes effect within one poll timeout once the
in-flight completion has returned. The subscription is closed on every exit
path, exactly once.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..broker.envelope import decode_record
from ..broker.models import InboundRecord
from ..errors import CorrelationKeyError, RecordDecodeError
from . import correlation
from .completion import CompletionErrorHandler, CompletionOutcome
from .context import BridgeContext, RecordSource

logger = logging.getLogger(__name__)

SKIPPED = "skipped"


@dataclass
class ConsumerStats:
    consumed: int = 0
    completed: int = 0
    stale: int = 0
    failed: int = 0
    skipped: int = 0


class ConsumerLoop:
    """
    Usage:
        loop = ConsumerLoop(context, Subscription(config.broker).open())
        loop.run()  # until context.stop is set
    """

    def __init__(
        self,
        context: BridgeContext,
        source: RecordSource,
        completion: Optional[CompletionErrorHandler] = None,
    ):
        if completion is None:
            if context.completer is None:
                raise ValueError("ConsumerLoop needs a completer in the bridge context")
            completion = CompletionErrorHandler.from_config(
                context.completer, context.config.consumer, stop=context.stop
            )
        self.context = context
        self.source = source
        self.completion = completion
        self.poll_timeout = context.config.consumer.poll_timeout_seconds
        self.stats = ConsumerStats()

    def run(self) -> ConsumerStats:
        """Consume until the stop event is set."""
        stop = self.context.stop
        logger.info(f"Consuming from {self.source.topic}...")
        try:
            while not stop.is_set():
                record = self.source.poll(self.poll_timeout)
                if record is None:
                    continue
                self.process(record)
        finally:
            self.source.close()
            logger.info(
                f"Consumer stopped: consumed={self.stats.consumed} completed={self.stats.completed} "
                f"stale={self.stats.stale} failed={self.stats.failed} skipped={self.stats.skipped}"
            )
        return self.stats

    def process(self, record: InboundRecord) -> str:
        """Handle one record and acknowledge it.

        Returns:
            The CompletionOutcome value, or "skipped" for a malformed record
        """
        self.stats.consumed += 1
        try:
            data = decode_record(record)
            logger.info(
                f"Consumed event from topic {record.topic}: key = {record.key:<10} value = {data.value} "
                f"(position={record.position}, redelivered={record.redelivered})"
            )
            job_key = correlation.decode(data.value)
        except (RecordDecodeError, CorrelationKeyError) as e:
            logger.error(
                f"Skipping record at position {record.position} on {record.topic} (key={record.key}): {e}"
            )
            self.source.commit(record)
            self.stats.skipped += 1
            return SKIPPED

        outcome = self.completion.complete(job_key)
        self.source.commit(record)

        if outcome == CompletionOutcome.COMPLETED:
            self.stats.completed += 1
        elif outcome == CompletionOutcome.STALE:
            self.stats.stale += 1
        else:
            self.stats.failed += 1
        return outcome.value
