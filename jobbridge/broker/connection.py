"""RabbitMQ connection helpers shared by the producer and the subscription."""

import logging

import pika
from pika.adapters.blocking_connection import BlockingChannel

from ..config import BrokerConfig

logger = logging.getLogger(__name__)


def connection_parameters(config: BrokerConfig) -> pika.ConnectionParameters:
    """Build pika connection parameters from broker config."""
    credentials = pika.PlainCredentials(config.username, config.password)
    return pika.ConnectionParameters(
        host=config.host,
        port=config.port,
        virtual_host=config.virtual_host,
        credentials=credentials,
        heartbeat=config.heartbeat_seconds,
        blocked_connection_timeout=config.blocked_connection_timeout_seconds,
    )


def declare_topic(channel: BlockingChannel, config: BrokerConfig) -> str:
    """Declare the topic exchange and the consumer group's durable queue.

    Both sides declare the same objects so that records published before the
    first consumer run are retained, and a new consumer starts from the
    earliest unacknowledged record.

    Returns:
        Queue name
    """
    channel.exchange_declare(
        exchange=config.topic,
        exchange_type="topic",
        durable=True,
    )
    queue = config.group_queue
    channel.queue_declare(queue=queue, durable=True)
    channel.queue_bind(exchange=config.topic, queue=queue, routing_key="#")
    logger.debug(f"Declared topic {config.topic} with queue {queue}")
    return queue
