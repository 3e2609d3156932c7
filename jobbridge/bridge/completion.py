"""
Completion error handler.

Under at-least-once delivery the same correlation key can arrive twice, and a
job's lease can expire before its message is consumed. A failed completion is
therefore an expected event: it is logged and the consumer moves on. Only
engine unavailability may be retried, and only under
CompletionPolicy.RETRY_TRANSIENT.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from ..config import CompletionPolicy, ConsumerConfig
from ..errors import EngineError, EngineUnavailableError, JobNotFoundError
from .context import JobCompleter

logger = logging.getLogger(__name__)


class CompletionOutcome(str, Enum):
    COMPLETED = "completed"
    STALE = "stale"  # already completed, expired or unknown
    FAILED = "failed"


class CompletionErrorHandler:
    """Issues a completion and resolves its failure per policy."""

    def __init__(
        self,
        completer: JobCompleter,
        policy: CompletionPolicy = CompletionPolicy.REPORT,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        stop: Optional[threading.Event] = None,
    ):
        self.completer = completer
        self.policy = policy
        self.max_attempts = max_attempts if policy == CompletionPolicy.RETRY_TRANSIENT else 1
        self.backoff_seconds = backoff_seconds
        # Backoff waits end early when the consumer is interrupted
        self._stop = stop if stop is not None else threading.Event()

    @classmethod
    def from_config(
        cls,
        completer: JobCompleter,
        config: ConsumerConfig,
        stop: Optional[threading.Event] = None,
    ) -> "CompletionErrorHandler":
        return cls(
            completer,
            policy=config.completion_policy,
            max_attempts=config.completion_max_attempts,
            backoff_seconds=config.completion_backoff_seconds,
            stop=stop,
        )

    def complete(self, job_key: int) -> CompletionOutcome:
        """Complete a job. Never raises for an engine-side failure."""
        attempt = 0
        while True:
            attempt += 1
            try:
                self.completer.complete_job(job_key)
            except JobNotFoundError as e:
                logger.warning(f"Job {job_key} not completed, stale or duplicate correlation key: {e}")
                return CompletionOutcome.STALE
            except EngineUnavailableError as e:
                if attempt < self.max_attempts:
                    delay = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"Engine unavailable completing job {job_key} "
                        f"(attempt {attempt}/{self.max_attempts}), retrying in {delay:.1f}s: {e}"
                    )
                    if self._stop.wait(delay):
                        logger.error(f"Job {job_key} not completed, interrupted while waiting to retry")
                        return CompletionOutcome.FAILED
                    continue
                logger.error(f"Job {job_key} not completed, engine unavailable after {attempt} attempts: {e}")
                return CompletionOutcome.FAILED
            except EngineError as e:
                logger.error(f"Job {job_key} not completed: {e}")
                return CompletionOutcome.FAILED
            except Exception:
                logger.exception(f"Job {job_key} not completed, unexpected error")
                return CompletionOutcome.FAILED

            logger.info(f"Completed job {job_key}")
            return CompletionOutcome.COMPLETED
