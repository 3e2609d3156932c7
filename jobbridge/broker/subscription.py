"""
Subscription: exclusive, sequential consumption of a topic.

Records are pulled one at a time (prefetch 1) from the consumer group's
durable queue. A record stays unacknowledged until commit() is called, so a
restart redelivers everything that was not handled: at-least-once.
"""

import logging
import threading
from typing import Iterator, Optional, Tuple

import pika
from pika.exceptions import AMQPError

from ..config import BrokerConfig
from .connection import connection_parameters, declare_topic
from .models import InboundRecord

logger = logging.getLogger(__name__)


class Subscription:
    """
    Pull-style consumer over a pika blocking channel.

    Usage:
        subscription = Subscription(config.broker).open()
        try:
            record = subscription.poll(timeout=1.0)
            if record is not None:
                ...
                subscription.commit(record)
        finally:
            subscription.close()
    """

    def __init__(self, config: BrokerConfig):
        self.config = config
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None
        self._queue: Optional[str] = None
        self._stream: Optional[Iterator[Tuple]] = None
        self._stream_timeout: Optional[float] = None
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def topic(self) -> str:
        return self.config.topic

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> "Subscription":
        """Connect and subscribe."""
        self._connection = pika.BlockingConnection(connection_parameters(self.config))
        self._channel = self._connection.channel()
        self._channel.basic_qos(prefetch_count=1)
        self._queue = declare_topic(self._channel, self.config)
        logger.info(f"Subscribed to {self.config.topic} via queue {self._queue}")
        return self

    def poll(self, timeout: float) -> Optional[InboundRecord]:
        """Wait up to `timeout` seconds for the next record.

        Returns:
            The record, or None if nothing arrived in time
        """
        if self._closed:
            raise RuntimeError("Subscription is closed")
        if self._stream is None or self._stream_timeout != timeout:
            if self._stream is not None:
                self._channel.cancel()
            self._stream = self._channel.consume(
                self._queue,
                auto_ack=False,
                inactivity_timeout=timeout,
            )
            self._stream_timeout = timeout

        method, properties, body = next(self._stream)
        if method is None:
            return None
        return InboundRecord(
            topic=self.config.topic,
            key=method.routing_key,
            body=body,
            position=method.delivery_tag,
            redelivered=bool(method.redelivered),
            message_id=properties.message_id if properties else None,
        )

    def commit(self, record: InboundRecord) -> None:
        """Acknowledge a record so it is not delivered again."""
        self._channel.basic_ack(delivery_tag=record.position)

    def close(self) -> bool:
        """Release the subscription.

        Returns:
            True if this call closed it, False if it was already closed
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        try:
            if self._channel is not None and self._channel.is_open and self._stream is not None:
                # Unacked, undelivered prefetch goes back to the queue
                requeued = self._channel.cancel()
                logger.debug(f"Subscription cancelled, {requeued} records requeued")
            if self._connection is not None and self._connection.is_open:
                self._connection.close()
        except AMQPError as e:
            logger.warning(f"Error while closing subscription: {e}")
        finally:
            self._stream = None
            self._channel = None
            self._connection = None

        logger.info(f"Subscription to {self.config.topic} closed")
        return True
