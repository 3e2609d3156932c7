"""
Correlation keys.

A job travels through the broker as the canonical decimal form of its key.
Nothing from the job's variables goes into it: variables are business data
and are not trusted for routing.
"""

import re

from ..engine.keys import MAX_KEY
from ..errors import CorrelationKeyError

_CANONICAL = re.compile(r"(0|[1-9][0-9]*)")


def encode(job_key: int) -> str:
    """Correlation key of a job."""
    if isinstance(job_key, bool) or not isinstance(job_key, int):
        raise CorrelationKeyError(f"Job key must be an integer, got {type(job_key).__name__}")
    if not 0 <= job_key <= MAX_KEY:
        raise CorrelationKeyError(f"Job key out of range: {job_key}")
    return str(job_key)


def decode(value: str) -> int:
    """Job key named by a correlation key.

    Only the form produced by encode() is accepted: ASCII digits, no sign,
    no whitespace, no leading zeros.
    """
    if not isinstance(value, str) or not _CANONICAL.fullmatch(value):
        raise CorrelationKeyError(f"Not a correlation key: {value!r}")
    job_key = int(value)
    if job_key > MAX_KEY:
        raise CorrelationKeyError(f"Job key out of range: {value}")
    return job_key
