"""
Queue and background workers.
"""

from .queue import QueueStats, RequestQueue, Submission, SubmissionError, WorkItem, WorkStatus
from .worker import DrainWorker, EvictionSweeper, no_handler_message

__all__ = [
    "DrainWorker",
    "EvictionSweeper",
    "QueueStats",
    "RequestQueue",
    "Submission",
    "SubmissionError",
    "WorkItem",
    "WorkStatus",
    "no_handler_message",
]
