"""Database models for the workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow, WorkflowStep
from db.models.query_view import QueryView, QueryParameter
from db.models.execution import WorkflowExecution, StepExecutionRecord

__all__ = [
    "Workflow",
    "WorkflowStep",
    "QueryView",
    "QueryParameter",
    "WorkflowExecution",
    "StepExecutionRecord",
]
