"""
Broker layer: RabbitMQ via pika, CloudEvents envelopes, pydantic records.
"""

from .models import DeliveryReport, InboundRecord, OutboundMessage, RecordData
from .envelope import decode_record, encode_record
from .producer import Producer
from .subscription import Subscription

__all__ = [
    "DeliveryReport",
    "InboundRecord",
    "OutboundMessage",
    "RecordData",
    "decode_record",
    "encode_record",
    "Producer",
    "Subscription",
]
