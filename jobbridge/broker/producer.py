"""
Producer: publishes records to a topic with broker confirmation.

pika connections are not thread-safe, while job handlers run concurrently on
the worker's thread pool. All broker I/O therefore happens on one dedicated
thread owned by the producer; produce() only enqueues work and hands back a
future. The channel runs in confirm mode, so basic_publish returns once the
broker has persisted the message, or raises if it was refused.

Every produce() call resolves exactly one DeliveryReport, delivered to the
optional on_delivery callback exactly once, whatever happens on the I/O
thread.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Set

import pika
from pika.exceptions import AMQPConnectionError, AMQPError, NackError, UnroutableError

from ..config import BrokerConfig
from .connection import connection_parameters, declare_topic
from .envelope import encode_record
from .models import DeliveryReport, OutboundMessage

logger = logging.getLogger(__name__)

DeliveryCallback = Callable[[DeliveryReport], None]


class Producer:
    """
    Confirmed publisher shared by all job handlers of a worker.

    Usage:
        producer = Producer(config.broker, source="jobbridge/worker-1")
        producer.connect()

        future = producer.produce("vacation", message, on_delivery=callback)
        report = future.result(timeout=10)

        producer.flush(10)
        producer.close()
    """

    def __init__(self, config: BrokerConfig, source: str):
        self.config = config
        self.source = source
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="producer-io")
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def connect(self) -> "Producer":
        """Open the connection on the I/O thread. Raises on failure."""
        self._executor.submit(self._open).result()
        logger.info(f"Producer connected to {self.config.bootstrap_server}")
        return self

    def close(self) -> None:
        """Close the connection and stop the I/O thread. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.submit(self._close_connection).result()
        self._executor.shutdown(wait=True)
        logger.info("Producer closed")

    def _open(self) -> None:
        self._connection = pika.BlockingConnection(connection_parameters(self.config))
        self._channel = self._connection.channel()
        self._channel.confirm_delivery()
        declare_topic(self._channel, self.config)

    def _close_connection(self) -> None:
        if self._connection is not None and self._connection.is_open:
            self._connection.close()
        self._connection = None
        self._channel = None

    def _ensure_channel(self) -> None:
        if self._connection is None or not self._connection.is_open or not self._channel.is_open:
            logger.warning("Producer connection lost, reconnecting")
            self._close_connection()
            self._open()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def produce(
        self,
        topic: str,
        message: OutboundMessage,
        on_delivery: Optional[DeliveryCallback] = None,
    ) -> "Future[DeliveryReport]":
        """Queue a message for publishing.

        Args:
            topic: Target topic (exchange name)
            message: Record to publish
            on_delivery: Called once with the DeliveryReport

        Returns:
            Future resolving to the DeliveryReport (never to an exception)
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Producer is closed")
            future = self._executor.submit(self._publish, topic, message)
            self._pending.add(future)

        def done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            if on_delivery is not None:
                on_delivery(_report_of(f, topic, message))

        future.add_done_callback(done)
        return future

    def _publish(self, topic: str, message: OutboundMessage) -> DeliveryReport:
        try:
            self._ensure_channel()
            body, event_id = encode_record(message, self.source)
            properties = pika.BasicProperties(
                content_type="application/cloudevents+json",
                delivery_mode=2,  # Persistent
                correlation_id=message.value,
                message_id=event_id,
            )
            self._channel.basic_publish(
                exchange=topic,
                routing_key=message.key,
                body=body,
                properties=properties,
                mandatory=True,
            )
        except UnroutableError as e:
            return DeliveryReport.failure(topic, message, "UNROUTABLE", str(e) or "no queue bound")
        except NackError as e:
            return DeliveryReport.failure(topic, message, "NACKED", str(e) or "broker nack")
        except AMQPConnectionError as e:
            self._close_connection()
            return DeliveryReport.failure(topic, message, "CONNECTION_LOST", str(e) or type(e).__name__)
        except AMQPError as e:
            self._close_connection()
            return DeliveryReport.failure(topic, message, "BROKER_ERROR", str(e) or type(e).__name__)
        return DeliveryReport.success(topic, message)

    def flush(self, timeout: float) -> int:
        """Wait for queued publishes to resolve.

        Returns:
            Number of publishes still unresolved when the wait ended
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return 0
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"Flush timed out with {len(not_done)} publishes outstanding")
        return len(not_done)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)


def _report_of(future: Future, topic: str, message: OutboundMessage) -> DeliveryReport:
    error = future.exception()
    if error is not None:
        return DeliveryReport.failure(topic, message, "INTERNAL", f"{type(error).__name__}: {error}")
    return future.result()
