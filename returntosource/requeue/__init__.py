"""
Requeue module
Returns messages from an error queue to their source queue
"""

from returntosource.requeue.operator import BatchSummary, RequeueOperator, RequeueOutcome
from returntosource.requeue.output import OperatorOutput, RecordingOutput

__all__ = [
    "BatchSummary",
    "OperatorOutput",
    "RecordingOutput",
    "RequeueOperator",
    "RequeueOutcome",
]
