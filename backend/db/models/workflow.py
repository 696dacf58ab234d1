"""Workflow and workflow step models."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Workflow(BaseModel):
    """A named, ordered list of steps.

    Attributes:
        id: Integer primary key
        name: Workflow name
        description: Free text description
        is_active: Inactive workflows are rejected by the engine
        steps: Steps ordered by step_order
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    # Relationships
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by=lambda: [WorkflowStep.step_order, WorkflowStep.id],
        lazy="selectin",
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class WorkflowStep(BaseModel):
    """Stored step definition. ``configuration`` is the opaque per-type payload."""

    __tablename__ = "workflow_steps"

    workflow_id: Mapped[int] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    configuration: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    on_success: Mapped[Optional[str]] = mapped_column(nullable=True)
    on_error: Mapped[Optional[str]] = mapped_column(nullable=True)
    max_retries: Mapped[int] = mapped_column(default=0)
    timeout_seconds: Mapped[Optional[int]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship("Workflow", back_populates="steps")
