"""
Broker record models.

The record body on the wire is a CloudEvents JSON envelope. These pydantic
models describe what goes into it (OutboundMessage, RecordData), what comes
back from a publish (DeliveryReport) and what a subscription hands out
(InboundRecord).
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# CloudEvents type of a job activation record
JOB_ACTIVATED_EVENT = "jobbridge.job.activated"

DeliveryErrorCode = Literal[
    "NACKED",  # broker refused the message
    "UNROUTABLE",  # no queue bound for the routing key
    "CONNECTION_LOST",
    "BROKER_ERROR",
    "INTERNAL",
]


class OutboundMessage(BaseModel):
    """A key/value record to publish.

    key carries classification metadata (the routing key on the exchange),
    value carries the correlation key.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1, max_length=255, description="Routing / classification key")
    value: str = Field(min_length=1, description="Correlation key")
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Pass-through business data, never used for routing",
    )


class RecordData(BaseModel):
    """Data field of the CloudEvents envelope."""

    key: str
    value: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class DeliveryReport(BaseModel):
    """Outcome of one publish attempt."""

    model_config = ConfigDict(frozen=True)

    topic: str
    key: str
    value: str
    error_code: Optional[DeliveryErrorCode] = None
    reason: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.error_code is None

    @classmethod
    def success(cls, topic: str, message: OutboundMessage) -> "DeliveryReport":
        return cls(topic=topic, key=message.key, value=message.value)

    @classmethod
    def failure(
        cls,
        topic: str,
        message: OutboundMessage,
        error_code: DeliveryErrorCode,
        reason: str,
    ) -> "DeliveryReport":
        return cls(
            topic=topic,
            key=message.key,
            value=message.value,
            error_code=error_code,
            reason=reason,
        )


class InboundRecord(BaseModel):
    """A consumed record and its position in the subscription."""

    model_config = ConfigDict(frozen=True)

    topic: str
    key: str
    body: bytes
    position: int = Field(ge=0, description="Broker delivery tag")
    redelivered: bool = False
    message_id: Optional[str] = None
