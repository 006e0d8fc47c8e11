"""Batch phases and their orchestration."""

from .compression import CompressionPass
from .orchestrator import Orchestrator, RunReport
from .retention import RetentionPruner
from .types import CompressionSummary, DeleteResult, ProcessResult, RetentionSummary

__all__ = [
    "CompressionPass",
    "CompressionSummary",
    "DeleteResult",
    "Orchestrator",
    "ProcessResult",
    "RetentionPruner",
    "RetentionSummary",
    "RunReport",
]
