"""
Engine layer: Temporal as the workflow engine.

- Jobs are activities scheduled by ProcessInstanceWorkflow
- JobWorker leases jobs of one type and runs a handler per job
- EngineClient deploys processes, starts instances and completes jobs by key
"""

from .models import Deployment, Job, ProcessDefinition, ProcessInstance, TaskDefinition, Topology
from .client import BlockingEngineClient, EngineClient
from .worker import JobWorker, create_process_worker
from .workflows import ProcessInstanceWorkflow

__all__ = [
    # Models
    "Deployment",
    "Job",
    "ProcessDefinition",
    "ProcessInstance",
    "TaskDefinition",
    "Topology",
    # Infrastructure
    "BlockingEngineClient",
    "EngineClient",
    "JobWorker",
    "create_process_worker",
    "ProcessInstanceWorkflow",
]
