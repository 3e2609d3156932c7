"""
Job workers for jobbridge.

Two kinds of worker run against the engine:

- the process host, which runs ProcessInstanceWorkflow and so decides which
  jobs exist and when they are (re-)offered;
- a JobWorker per job type, which leases activated jobs and hands each one
  to a handler.

The JobWorker enforces the lease rules:
- only jobs of its type are activated (task queue = job type);
- at most max_jobs_active handlers run at once;
- activations are paced at max_jobs_active per poll interval;
- a handler that returns leaves the job leased (asynchronous completion),
  a handler that raises fails the attempt so the engine re-offers the job.
A job is never reported complete by the worker itself.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from temporalio import activity
from temporalio.client import Client
from temporalio.exceptions import ApplicationError
from temporalio.worker import UnsandboxedWorkflowRunner, Worker

from ..config import EngineConfig
from ..errors import JobBridgeError
from .models import Job
from .workflows import ProcessInstanceWorkflow

logger = logging.getLogger(__name__)

JobHandlerFn = Callable[[Job], Any]


# =============================================================================
# Pure implementation (testable without the engine)
# =============================================================================

def activation_to_job(
    activation: Dict[str, Any],
    worker: str,
    attempt: int = 1,
    started: Optional[datetime] = None,
    timeout: Optional[timedelta] = None,
) -> Job:
    """Build the Job a handler sees from an activity activation."""
    retries = int(activation.get("retries", 1))
    deadline = None
    if timeout is not None:
        deadline = (started or datetime.now(timezone.utc)) + timeout
    return Job(
        key=activation["key"],
        type=activation["type"],
        variables=activation.get("variables", "{}"),
        custom_headers=activation.get("custom_headers", "{}"),
        process_instance_key=activation.get("process_instance_key", 0),
        bpmn_process_id=activation.get("bpmn_process_id", ""),
        element_id=activation.get("element_id", ""),
        retries=max(retries - attempt + 1, 0),
        worker=worker,
        deadline=deadline,
    )


def handle_activation(handler: JobHandlerFn, job: Job) -> None:
    """Run the handler for one activated job.

    Returns normally when the job should stay leased until completed by key.

    Raises:
        ApplicationError: the attempt failed, the engine re-offers the job
    """
    try:
        handler(job)
    except JobBridgeError as e:
        logger.error(f"Job {job.key} failed ({job.retries - 1} retries left): {e}")
        raise ApplicationError(str(e), type=type(e).__name__) from e
    except Exception as e:
        logger.exception(f"Job {job.key} failed with unexpected error")
        raise ApplicationError(f"{type(e).__name__}: {e}", type="UnexpectedError") from e

    if job.deadline is not None and datetime.now(timezone.utc) > job.deadline:
        logger.warning(f"Job {job.key} handler finished after its lease expired at {job.deadline.isoformat()}")


# =============================================================================
# Engine workers
# =============================================================================

class JobWorker:
    """
    Leases jobs of one type and runs a handler for each.

    Usage:
        worker = JobWorker(client, "put", handler, name="host-1")
        await worker.run(stop_event)
    """

    def __init__(
        self,
        client: Client,
        job_type: str,
        handler: JobHandlerFn,
        *,
        name: str,
        max_jobs_active: int = 5,
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
    ):
        self.client = client
        self.job_type = job_type
        self.handler = handler
        self.name = name
        self.max_jobs_active = max_jobs_active
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_jobs_active,
            thread_name_prefix=f"job-{job_type}",
        )

    @property
    def activation_rate(self) -> float:
        """Maximum activations per second."""
        return self.max_jobs_active / self.poll_interval_seconds

    def create_activity(self) -> Callable[[Dict[str, Any]], Any]:
        """Activity definition serving this worker's job type."""
        handler = self.handler
        worker_name = self.name
        default_timeout = timedelta(seconds=self.timeout_seconds)

        @activity.defn(name=self.job_type)
        def run_job(activation: Dict[str, Any]) -> Any:
            info = activity.info()
            job = activation_to_job(
                activation,
                worker=worker_name,
                attempt=info.attempt,
                started=info.started_time,
                timeout=info.start_to_close_timeout or default_timeout,
            )
            logger.debug(f"Job {job.key} activated (attempt={info.attempt}, type={job.type})")
            handle_activation(handler, job)
            # Completion arrives later, by job key
            activity.raise_complete_async()

        return run_job

    def create_worker(self) -> Worker:
        return Worker(
            self.client,
            task_queue=self.job_type,
            activities=[self.create_activity()],
            activity_executor=self._executor,
            max_concurrent_activities=self.max_jobs_active,
            max_activities_per_second=self.activation_rate,
            identity=self.name,
        )

    async def run(self, stop: asyncio.Event) -> None:
        """Serve jobs until `stop` is set."""
        logger.info(
            f"Job worker '{self.name}' open for type '{self.job_type}' "
            f"(max_jobs_active={self.max_jobs_active}, poll_interval={self.poll_interval_seconds}s, "
            f"timeout={self.timeout_seconds}s)"
        )
        try:
            async with self.create_worker():
                await stop.wait()
        finally:
            self._executor.shutdown(wait=False)
            logger.info(f"Job worker '{self.name}' stopped")


def create_process_worker(client: Client, config: EngineConfig) -> Worker:
    """Worker hosting process instances."""
    # Package modules are not sandbox-safe; workflow code stays deterministic
    return Worker(
        client,
        task_queue=config.task_queue,
        workflows=[ProcessInstanceWorkflow],
        workflow_runner=UnsandboxedWorkflowRunner(),
    )
