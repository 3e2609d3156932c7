"""
Exception hierarchy for jobbridge.

Broker and engine adapters translate library exceptions (pika, temporalio)
into these types so the bridge logic can decide what is fatal to a job,
what is skipped, and what is reported and left behind.
"""

from typing import Optional


class JobBridgeError(Exception):
    """Base class for all jobbridge errors."""


class ConfigError(JobBridgeError):
    """Configuration is missing or invalid. Fatal at startup."""


# =============================================================================
# Job side
# =============================================================================

class JobPayloadError(JobBridgeError):
    """Job variables or custom headers could not be parsed."""

    def __init__(self, job_key: int, message: str):
        self.job_key = job_key
        super().__init__(f"Job {job_key}: {message}")


class PublishError(JobBridgeError):
    """The broker did not confirm a publish."""

    def __init__(self, topic: str, key: str, value: str, code: str, reason: str):
        self.topic = topic
        self.key = key
        self.value = value
        self.code = code
        self.reason = reason
        super().__init__(
            f"Publish to {topic} not confirmed (key={key}, value={value}): {code} {reason}"
        )


# =============================================================================
# Consumer side
# =============================================================================

class CorrelationKeyError(JobBridgeError, ValueError):
    """A correlation key is not the canonical form of a job key."""


class RecordDecodeError(JobBridgeError):
    """A consumed record body is not a valid envelope."""

    def __init__(self, position: Optional[int], message: str):
        self.position = position
        super().__init__(f"Record at position {position}: {message}")


# =============================================================================
# Engine side
# =============================================================================

class EngineError(JobBridgeError):
    """A workflow engine request failed."""

    def __init__(self, message: str, job_key: Optional[int] = None):
        self.job_key = job_key
        super().__init__(message)


class JobNotFoundError(EngineError):
    """The job is already completed, its lease expired, or it never existed."""


class EngineUnavailableError(EngineError):
    """The engine could not be reached or did not answer in time."""
