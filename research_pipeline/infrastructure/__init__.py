"""Infrastructure layer exports."""

from .engine import (
    DispatchReceipt,
    HttpWorkflowEngine,
    NoOpWorkflowEngine,
    WorkflowEngine,
    configure_workflow_engine,
    get_workflow_engine,
    resume_target,
)
from .jobs import InMemoryJobRepository, JobRepository

__all__ = [
    "DispatchReceipt",
    "HttpWorkflowEngine",
    "InMemoryJobRepository",
    "JobRepository",
    "NoOpWorkflowEngine",
    "WorkflowEngine",
    "configure_workflow_engine",
    "get_workflow_engine",
    "resume_target",
]
