"""
Engine-side models: jobs, process definitions, deployments, topology.

A process definition is a static YAML resource:

    process:
      id: vacation
      name: Vacation request
      variables:
        key: k1
        value: v1
      tasks:
        - id: put-request
          type: put
          retries: 3
          headers:
            messageType: vacation-request
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .keys import MAX_KEY, MAX_TASKS


# =============================================================================
# Jobs
# =============================================================================

class Job(BaseModel):
    """
    An activated job, as leased to a worker.

    variables and custom_headers are kept as the raw JSON text the engine
    hands out: parsing them is the handler's business, and a parse failure
    is a property of the job, not of the activation.
    """

    model_config = ConfigDict(frozen=True)

    key: int = Field(ge=0, le=MAX_KEY)
    type: str = Field(min_length=1)
    variables: str = "{}"
    custom_headers: str = "{}"
    process_instance_key: int = Field(default=0, ge=0)
    bpmn_process_id: str = ""
    element_id: str = ""
    retries: int = Field(default=1, ge=0, description="Attempts left, this one included")
    worker: str = ""
    deadline: Optional[datetime] = None


# =============================================================================
# Process definitions
# =============================================================================

class TaskDefinition(BaseModel):
    """A service task: becomes one job per process instance."""

    id: str = Field(min_length=1)
    type: str = Field(min_length=1, description="Job type served by a worker")
    headers: Dict[str, str] = Field(default_factory=dict, description="Custom headers")
    retries: int = Field(default=3, ge=1, le=100)
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Activation timeout; worker config applies when unset",
    )


class ProcessDefinition(BaseModel):
    """Workflow shape read from a resource file."""

    id: str = Field(min_length=1, description="BPMN process id")
    name: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    tasks: List[TaskDefinition] = Field(min_length=1, max_length=MAX_TASKS)

    @field_validator("tasks")
    @classmethod
    def _unique_task_ids(cls, tasks: List[TaskDefinition]) -> List[TaskDefinition]:
        ids = [t.id for t in tasks]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate task ids: {duplicates}")
        return tasks

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ProcessDefinition":
        """Load a definition from YAML (or JSON) resource.

        Raises:
            ValueError: if the file cannot be parsed or is not a valid definition
        """
        resource = Path(path)
        with open(resource) as f:
            try:
                content = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Cannot parse {resource}: {e}")
        if not isinstance(content, dict):
            raise ValueError(f"{resource} does not contain a process definition")
        try:
            return cls.model_validate(content.get("process", content))
        except ValidationError as e:
            raise ValueError(f"Invalid process definition in {resource}: {e}")


class ProcessMetadata(BaseModel):
    bpmn_process_id: str
    version: int = Field(ge=1)
    resource_name: str


class Deployment(BaseModel):
    key: int
    processes: List[ProcessMetadata]


class ProcessInstance(BaseModel):
    key: int
    bpmn_process_id: str
    version: int
    workflow_id: str
    run_id: Optional[str] = None


class Topology(BaseModel):
    """What the engine reports about itself. Diagnostic only."""

    contact_point: str
    namespace: str
    cluster_id: str = ""
    cluster_name: str = ""
    server_version: str = ""

    def __str__(self) -> str:
        return json.dumps(self.model_dump(), sort_keys=True)
