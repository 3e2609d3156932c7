"""
Workflow engine client (Temporal).

Covers what the bridge needs from the engine: topology for diagnostics,
deploying a process definition, creating an instance of its latest version,
and completing a job by its key. Temporal RPC failures are translated into
the jobbridge error types so the bridge never sees temporalio exceptions.

Temporal has no deployment step of its own: deploy_process validates a
resource and registers it with this client under the next version number.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from temporalio.api.workflowservice.v1 import GetClusterInfoRequest
from temporalio.client import Client
from temporalio.service import RPCError, RPCStatusCode

from ..config import EngineConfig
from ..errors import EngineError, EngineUnavailableError, JobNotFoundError
from . import keys
from .models import Deployment, ProcessDefinition, ProcessInstance, ProcessMetadata, Topology
from .workflows import ProcessInstanceWorkflow

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = {
    RPCStatusCode.UNAVAILABLE,
    RPCStatusCode.DEADLINE_EXCEEDED,
    RPCStatusCode.RESOURCE_EXHAUSTED,
}


def translate_rpc_error(error: RPCError, job_key: Optional[int] = None) -> EngineError:
    """Map a Temporal RPC error onto the engine error types."""
    message = f"{error.status.name}: {error.message}"
    if error.status == RPCStatusCode.NOT_FOUND:
        return JobNotFoundError(message, job_key=job_key)
    if error.status in _TRANSIENT_CODES:
        return EngineUnavailableError(message, job_key=job_key)
    return EngineError(message, job_key=job_key)


class EngineClient:
    """
    Temporal client wrapper for jobbridge.

    Usage:
        async with EngineClient(config.engine) as engine:
            deployment = engine.deploy_process("resources/vacation.yaml")
            instance = await engine.create_process_instance("vacation")
            ...
            await engine.complete_job(job_key)
    """

    def __init__(
        self,
        config: EngineConfig,
        key_generator: Optional[keys.InstanceKeyGenerator] = None,
    ):
        self.config = config
        self._client: Optional[Client] = None
        self._keys = key_generator or keys.InstanceKeyGenerator()
        # bpmn process id -> definitions, index + 1 is the version
        self._deployments: Dict[str, List[ProcessDefinition]] = {}

    async def connect(self) -> "EngineClient":
        """Connect to the engine. Raises on failure."""
        self._client = await Client.connect(
            self.config.contact_point,
            namespace=self.config.namespace,
            identity=self.config.client_id,
            api_key=self.config.client_secret,
            tls=self.config.use_tls,
        )
        logger.info(f"Connected to engine at {self.config.contact_point} (namespace={self.config.namespace})")
        return self

    async def close(self) -> None:
        """Drop the client; the SDK releases the connection with it."""
        self._client = None

    async def __aenter__(self) -> "EngineClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> Client:
        """Underlying Temporal client."""
        if self._client is None:
            raise RuntimeError("Engine client not connected. Use 'async with EngineClient()' or call connect()")
        return self._client

    @property
    def _rpc_timeout(self) -> timedelta:
        return timedelta(seconds=self.config.request_timeout_seconds)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def topology(self) -> Topology:
        """Ask the cluster to describe itself."""
        try:
            info = await self.client.workflow_service.get_cluster_info(
                GetClusterInfoRequest(),
                timeout=self._rpc_timeout,
            )
        except RPCError as e:
            raise translate_rpc_error(e)
        return Topology(
            contact_point=self.config.contact_point,
            namespace=self.config.namespace,
            cluster_id=info.cluster_id,
            cluster_name=info.cluster_name,
            server_version=info.server_version,
        )

    # -------------------------------------------------------------------------
    # Process deployment and instances
    # -------------------------------------------------------------------------

    def deploy_process(self, resource: Union[str, Path]) -> Deployment:
        """Deploy a process definition from a resource file.

        Raises:
            EngineError: resource missing or invalid
        """
        path = Path(resource)
        try:
            definition = ProcessDefinition.from_file(path)
        except (OSError, ValueError) as e:
            raise EngineError(f"Cannot deploy {path}: {e}")

        versions = self._deployments.setdefault(definition.id, [])
        versions.append(definition)
        metadata = ProcessMetadata(
            bpmn_process_id=definition.id,
            version=len(versions),
            resource_name=path.name,
        )
        logger.info(f"Process definition {definition.id} deployed (version={metadata.version})")
        return Deployment(key=self._keys.next_key(), processes=[metadata])

    def latest_definition(self, bpmn_process_id: str) -> Tuple[ProcessDefinition, int]:
        """Latest deployed version of a process: (definition, version)."""
        versions = self._deployments.get(bpmn_process_id)
        if not versions:
            raise EngineError(f"Process '{bpmn_process_id}' is not deployed")
        return versions[-1], len(versions)

    async def create_process_instance(
        self,
        bpmn_process_id: str,
        variables: Optional[Dict[str, Any]] = None,
        job_timeout_seconds: float = 10.0,
    ) -> ProcessInstance:
        """Start an instance of the latest version of a process.

        Args:
            bpmn_process_id: Deployed process id
            variables: Instance variables, merged over the definition's defaults
            job_timeout_seconds: Activation timeout for tasks that set none
        """
        definition, version = self.latest_definition(bpmn_process_id)
        instance_key = self._keys.next_key()
        payload = {
            "instance_key": instance_key,
            "bpmn_process_id": bpmn_process_id,
            "version": version,
            "definition": definition.model_dump(),
            "variables": variables or {},
            "job_timeout_seconds": job_timeout_seconds,
        }

        try:
            handle = await self.client.start_workflow(
                ProcessInstanceWorkflow.run,
                payload,
                id=keys.workflow_id(instance_key),
                task_queue=self.config.task_queue,
                rpc_timeout=self._rpc_timeout,
            )
        except RPCError as e:
            raise translate_rpc_error(e)

        logger.info(f"Process instance {instance_key} of {bpmn_process_id} started (version={version})")
        return ProcessInstance(
            key=instance_key,
            bpmn_process_id=bpmn_process_id,
            version=version,
            workflow_id=handle.id,
            run_id=handle.first_execution_run_id,
        )

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def complete_job(self, job_key: int, variables: Optional[Dict[str, Any]] = None) -> None:
        """Complete an activated job by its key.

        Raises:
            JobNotFoundError: job already completed, lease expired, or unknown
            EngineUnavailableError: engine unreachable or timed out
            EngineError: any other rejection
        """
        try:
            instance_key, _ = keys.split_job_key(job_key)
        except ValueError as e:
            raise JobNotFoundError(str(e), job_key=job_key)

        handle = self.client.get_async_activity_handle(
            workflow_id=keys.workflow_id(instance_key),
            run_id=None,
            activity_id=keys.activity_id(job_key),
        )
        try:
            await handle.complete(variables, rpc_timeout=self._rpc_timeout)
        except RPCError as e:
            raise translate_rpc_error(e, job_key=job_key)


class BlockingEngineClient:
    """
    Synchronous facade over EngineClient for the consumer thread.

    Owns a private event loop; every call runs to completion on it, so the
    instance must be used from one thread at a time.
    """

    def __init__(self, config: EngineConfig, completion_timeout: Optional[float] = None):
        self._loop = asyncio.new_event_loop()
        self._engine = EngineClient(config)
        self._timeout = completion_timeout or config.request_timeout_seconds

    def connect(self) -> "BlockingEngineClient":
        self._run(self._engine.connect())
        return self

    def topology(self) -> Topology:
        return self._run(self._engine.topology())

    def complete_job(self, job_key: int, variables: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._run(asyncio.wait_for(self._engine.complete_job(job_key, variables), timeout=self._timeout))
        except asyncio.TimeoutError:
            raise EngineUnavailableError(f"Completion of job {job_key} timed out", job_key=job_key)

    def close(self) -> None:
        try:
            self._run(self._engine.close())
        finally:
            self._loop.close()

    def _run(self, coro):
        return self._loop.run_until_complete(coro)
