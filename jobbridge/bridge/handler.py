"""
Job handler: turns an activated job into a confirmed broker message.

The handler publishes and waits for the broker's confirmation, then returns
WITHOUT completing the job. Completion is the consumer's business, once the
message has been seen on the other side. Until then the engine holds the
lease, and if this process dies the lease times out and the job is offered
again.

Failure policy:
- malformed variables/headers: JobPayloadError, nothing is published
- no confirmation (broker refused, or wait timed out): PublishError when
  worker.fail_job_on_publish_error is set, so the engine retries the job;
  otherwise logged only and the lease is left to expire
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..broker.models import DeliveryReport, OutboundMessage
from ..engine.models import Job
from ..errors import JobPayloadError, PublishError
from . import correlation
from .confirmation import DeliveryConfirmation
from .context import BridgeContext

logger = logging.getLogger(__name__)

MAX_ROUTING_KEY_BYTES = 255


class JobVariables(BaseModel):
    """Variables the handler expects on a job. Others pass through untouched."""

    model_config = ConfigDict(extra="allow")

    key: Any
    value: Any


class JobHeaders(BaseModel):
    """Custom headers the handler expects on a job."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_type: str = Field(alias="messageType", min_length=1)

    @field_validator("message_type")
    @classmethod
    def _fits_routing_key(cls, value: str) -> str:
        # AMQP short string
        size = len(value.encode("utf-8"))
        if size > MAX_ROUTING_KEY_BYTES:
            raise ValueError(f"messageType is {size} bytes, routing keys hold at most {MAX_ROUTING_KEY_BYTES}")
        return value


class JobHandler:
    """
    Publishes one message per activated job.

    Usage:
        handler = JobHandler(context)
        worker = JobWorker(client, "put", handler, name="host-1")
    """

    def __init__(self, context: BridgeContext):
        if context.producer is None:
            raise ValueError("JobHandler needs a producer in the bridge context")
        self.context = context
        self.producer = context.producer
        self.topic = context.config.broker.topic
        self.flush_timeout = context.config.worker.flush_timeout_seconds
        self.fail_on_publish_error = context.config.worker.fail_job_on_publish_error

    def __call__(self, job: Job) -> Optional[DeliveryReport]:
        return self.handle(job)

    def parse(self, job: Job):
        """Parse variables and custom headers.

        Raises:
            JobPayloadError: either one is not a JSON object with the expected fields
        """
        try:
            variables = JobVariables.model_validate_json(job.variables)
        except ValidationError as e:
            raise JobPayloadError(job.key, f"invalid variables: {e}")
        try:
            headers = JobHeaders.model_validate_json(job.custom_headers)
        except ValidationError as e:
            raise JobPayloadError(job.key, f"invalid custom headers: {e}")
        return variables, headers

    def build_message(self, job: Job, variables: JobVariables, headers: JobHeaders) -> OutboundMessage:
        return OutboundMessage(
            key=headers.message_type,
            value=correlation.encode(job.key),
            payload=variables.model_dump(),
        )

    def handle(self, job: Job) -> Optional[DeliveryReport]:
        """Publish the job's message and wait for the broker.

        Returns:
            The delivery report, or None if the wait timed out in fidelity mode

        Raises:
            JobPayloadError: variables or headers malformed
            PublishError: not confirmed and fail_job_on_publish_error is set
        """
        variables, headers = self.parse(job)
        logger.info(f"Job {job.key}: messageType={headers.message_type} key={variables.key} value={variables.value}")

        try:
            message = self.build_message(job, variables, headers)
        except ValidationError as e:
            raise JobPayloadError(job.key, f"cannot build message: {e}")
        confirmation = DeliveryConfirmation(self.topic)
        self.producer.produce(self.topic, message, on_delivery=confirmation.on_delivery)
        report = confirmation.wait(self.flush_timeout)

        if report is not None and report.delivered:
            logger.info(f"Job {job.key}: message was produced to topic {self.topic}, awaiting completion")
            return report

        if report is None:
            error = PublishError(
                self.topic, message.key, message.value,
                "TIMEOUT", f"no confirmation within {self.flush_timeout}s",
            )
        else:
            error = PublishError(
                self.topic, message.key, message.value,
                report.error_code or "INTERNAL", report.reason or "",
            )

        if self.fail_on_publish_error:
            raise error
        logger.warning(f"Job {job.key}: {error}; leaving the lease to expire")
        return report
