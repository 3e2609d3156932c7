"""
Process host workflow.

A process instance runs its definition's tasks in order. Each task becomes a
job: an activity of the task's type, scheduled on the task queue of the same
name, with the job key as activity id. The activity is completed from
outside (by job key) once the downstream work is confirmed; if that does not
happen within the activation timeout the engine re-offers the job, up to the
task's retries.

Variables returned by a job completion are merged into the instance
variables and handed to the next job.
"""

import json
from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from . import keys


@workflow.defn(name="ProcessInstance")
class ProcessInstanceWorkflow:
    """
    Runs one process instance.

    Input (dict):
        instance_key, bpmn_process_id, version, definition, variables,
        job_timeout_seconds

    Queries:
    - status: current state, active job, completed tasks
    """

    def __init__(self) -> None:
        self._status = "created"
        self._active_job: Optional[int] = None
        self._completed_tasks = []

    @workflow.run
    async def run(self, instance: Dict[str, Any]) -> Dict[str, Any]:
        instance_key = instance["instance_key"]
        definition = instance["definition"]
        variables = dict(definition.get("variables") or {})
        variables.update(instance.get("variables") or {})
        default_timeout = instance.get("job_timeout_seconds", 10.0)

        self._status = "active"

        for index, task in enumerate(definition["tasks"]):
            job_key = keys.job_key(instance_key, index)
            activation = {
                "key": job_key,
                "type": task["type"],
                "variables": json.dumps(variables),
                "custom_headers": json.dumps(task.get("headers") or {}),
                "process_instance_key": instance_key,
                "bpmn_process_id": instance["bpmn_process_id"],
                "element_id": task["id"],
                "retries": task.get("retries", 3),
            }

            self._active_job = job_key
            workflow.logger.info(f"Activating job {job_key} ({task['type']}) for task {task['id']}")

            result = await workflow.execute_activity(
                task["type"],
                activation,
                task_queue=task["type"],
                activity_id=keys.activity_id(job_key),
                start_to_close_timeout=timedelta(
                    seconds=task.get("timeout_seconds") or default_timeout
                ),
                retry_policy=RetryPolicy(
                    initial_interval=timedelta(seconds=1),
                    backoff_coefficient=2.0,
                    maximum_interval=timedelta(seconds=30),
                    maximum_attempts=task.get("retries", 3),
                ),
            )

            if isinstance(result, dict):
                variables.update(result)
            self._completed_tasks.append(task["id"])

        self._active_job = None
        self._status = "completed"

        return {
            "instance_key": instance_key,
            "bpmn_process_id": instance["bpmn_process_id"],
            "status": self._status,
            "variables": variables,
        }

    @workflow.query
    def status(self) -> Dict[str, Any]:
        return {
            "status": self._status,
            "active_job": self._active_job,
            "completed_tasks": list(self._completed_tasks),
        }
