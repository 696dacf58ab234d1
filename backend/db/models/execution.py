"""Workflow execution audit models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus
from db.base import BaseModel


class WorkflowExecution(BaseModel):
    """One run of a workflow.

    Attributes:
        run_id: Engine-assigned identifier, also used for cancellation
        workflow_id: Foreign key to Workflow
        status: completed, partial_failure or cancelled
        success: True only if every step succeeded and none were skipped
        total_steps / completed_steps: Step counts for the run
    """

    __tablename__ = "workflow_executions"

    run_id: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    workflow_id: Mapped[int] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    success: Mapped[bool] = mapped_column(default=False, index=True)
    status: Mapped[str] = mapped_column(default=ExecutionStatus.RUNNING.value, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_steps: Mapped[int] = mapped_column(default=0)
    completed_steps: Mapped[int] = mapped_column(default=0)

    # Relationships
    workflow: Mapped["Workflow"] = relationship("Workflow", back_populates="executions")
    step_results: Mapped[list["StepExecutionRecord"]] = relationship(
        "StepExecutionRecord",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="StepExecutionRecord.id",
        lazy="selectin",
    )


class StepExecutionRecord(BaseModel):
    """Final attempt of one executed step, in execution order."""

    __tablename__ = "step_executions"

    execution_id: Mapped[int] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_name: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False)
    success: Mapped[bool] = mapped_column(default=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    records_processed: Mapped[int] = mapped_column(default=0)
    records_failed: Mapped[int] = mapped_column(default=0)
    log_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(default=0)

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="step_results"
    )
