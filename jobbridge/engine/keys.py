"""
Engine key layout.

Process instance keys and job keys are positive 63-bit integers, so they fit
the engine's signed 64-bit key space:

    job key = instance key << 8 | task index

The instance key comes from the creation time in milliseconds with a 12-bit
sequence below it, strictly increasing within a process. A job key therefore
names its workflow (the process instance) and its activity (the task) without
any lookup, which is what completion by job key needs.
"""

import random
import threading
import time
from typing import Tuple

MAX_KEY = 2 ** 63 - 1
TASK_INDEX_BITS = 8
MAX_TASKS = 1 << TASK_INDEX_BITS
SEQUENCE_BITS = 12
MAX_INSTANCE_KEY = MAX_KEY >> TASK_INDEX_BITS

WORKFLOW_ID_PREFIX = "process-instance-"


class InstanceKeyGenerator:
    """Strictly increasing instance keys, safe to share between threads."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        # Random start for the sequence keeps two processes created in the
        # same millisecond from colliding in the common case
        self._last = 0
        self._offset = random.getrandbits(SEQUENCE_BITS)

    def next_key(self) -> int:
        with self._lock:
            candidate = (int(self._clock() * 1000) << SEQUENCE_BITS) | self._offset
            key = max(candidate, self._last + 1)
            if key > MAX_INSTANCE_KEY:
                raise OverflowError("Instance key space exhausted")
            self._last = key
            return key


def job_key(instance_key: int, task_index: int) -> int:
    """Key of the job for task `task_index` of an instance."""
    if not 0 < instance_key <= MAX_INSTANCE_KEY:
        raise ValueError(f"Instance key out of range: {instance_key}")
    if not 0 <= task_index < MAX_TASKS:
        raise ValueError(f"Task index out of range: {task_index}")
    return (instance_key << TASK_INDEX_BITS) | task_index


def split_job_key(key: int) -> Tuple[int, int]:
    """Inverse of job_key: (instance key, task index)."""
    if not 0 <= key <= MAX_KEY:
        raise ValueError(f"Job key out of range: {key}")
    return key >> TASK_INDEX_BITS, key & (MAX_TASKS - 1)


def workflow_id(instance_key: int) -> str:
    """Engine workflow id of a process instance."""
    return f"{WORKFLOW_ID_PREFIX}{instance_key}"


def activity_id(key: int) -> str:
    """Engine activity id of a job. Stable across retries of the job."""
    return str(key)
