"""
CloudEvents envelope for bridge records.

Publishers wrap an OutboundMessage in a structured-mode CloudEvent; consumers
unwrap and validate it against RecordData.
"""

from datetime import datetime, timezone
from typing import Tuple

from cloudevents.exceptions import GenericException
from cloudevents.http import CloudEvent, from_json, to_json
from pydantic import ValidationError

from ..errors import RecordDecodeError
from .models import JOB_ACTIVATED_EVENT, InboundRecord, OutboundMessage, RecordData


def encode_record(message: OutboundMessage, source: str) -> Tuple[bytes, str]:
    """Wrap a message in a CloudEvent.

    Returns:
        (serialized body, event id)
    """
    attributes = {
        "type": JOB_ACTIVATED_EVENT,
        "source": source,
        "subject": message.value,
        "time": datetime.now(timezone.utc).isoformat(),
    }
    data = RecordData(key=message.key, value=message.value, payload=message.payload)
    event = CloudEvent(attributes, data.model_dump())
    return to_json(event), event["id"]


def decode_record(record: InboundRecord) -> RecordData:
    """Unwrap and validate the CloudEvent carried by a record."""
    try:
        event = from_json(record.body)
    except (GenericException, ValueError, TypeError, AttributeError) as e:
        raise RecordDecodeError(record.position, f"not a CloudEvent: {e}")

    if event["type"] != JOB_ACTIVATED_EVENT:
        raise RecordDecodeError(record.position, f"unexpected event type '{event['type']}'")

    try:
        return RecordData.model_validate(event.data)
    except ValidationError as e:
        raise RecordDecodeError(record.position, f"invalid record data: {e}")
