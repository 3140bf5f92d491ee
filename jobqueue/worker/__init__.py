"""
Worker module.
Contains the worker loop and the retry policy for failed jobs.
"""

from jobqueue.worker.main import Worker
from jobqueue.worker.retry import RetryPolicy

__all__ = ["Worker", "RetryPolicy"]
