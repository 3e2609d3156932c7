"""
jobbridge: bridges workflow engine jobs to a message broker and back.

- Worker side: an activated job becomes a confirmed broker message
- Consumer side: a consumed message becomes the job's completion
"""

__version__ = "0.1.0"
