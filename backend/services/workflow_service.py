"""Workflow service: definitions, execution records, history and statistics."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, StepStatus, StepType
from core.exceptions import ConfigurationError, NotFoundError
from db.models.execution import StepExecutionRecord, WorkflowExecution
from db.models.workflow import Workflow, WorkflowStep
from services.base import BaseService
from workflow.models import (
    RoutingAction,
    StepResult,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStepDefinition,
)

logger = logging.getLogger(__name__)


def _step_definition(row: WorkflowStep, default_timeout: int) -> WorkflowStepDefinition:
    try:
        step_type = StepType.parse(row.step_type)
    except ValueError as e:
        raise ConfigurationError(f"Step {row.step_order} ({row.name}): {e}")
    return WorkflowStepDefinition(
        order=row.step_order,
        name=row.name,
        step_type=step_type,
        configuration=row.configuration or {},
        on_success=RoutingAction.parse(row.on_success),
        on_error=RoutingAction.parse(row.on_error),
        max_retries=row.max_retries or 0,
        timeout_seconds=row.timeout_seconds or default_timeout,
    )


def _to_result(row: WorkflowExecution) -> WorkflowExecutionResult:
    return WorkflowExecutionResult(
        workflow_id=row.workflow_id,
        run_id=row.run_id,
        id=row.id,
        start_time=row.start_time,
        end_time=row.end_time,
        success=row.success,
        error_message=row.error_message,
        total_steps=row.total_steps,
        completed_steps=row.completed_steps,
        cancelled=row.status == ExecutionStatus.CANCELLED.value,
        step_results=[
            StepResult(
                order=s.step_order,
                name=s.step_name,
                start_time=s.start_time,
                end_time=s.end_time,
                status=StepStatus(s.status),
                error_message=s.error_message,
                records_processed=s.records_processed,
                records_failed=s.records_failed,
                log_details=s.log_details,
                retry_count=s.retry_count,
            )
            for s in row.step_results
        ],
    )


class WorkflowService(BaseService[Workflow]):
    """Service for workflow definitions and their execution history."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    async def create_workflow(
        self,
        name: str,
        steps: list[dict] = None,
        description: str = "",
        is_active: bool = True,
    ) -> Workflow:
        """Create a workflow with its steps.

        Step dicts use the model's column names (``step_order``, ``step_type``,
        ``configuration``, ``on_success``, ``on_error``, ``max_retries``,
        ``timeout_seconds``).
        """
        workflow = await self.create({
            "name": name,
            "description": description,
            "is_active": is_active,
            "steps": [
                WorkflowStep(
                    step_order=s["step_order"],
                    name=s.get("name") or f"Step {s['step_order']}",
                    step_type=StepType.parse(s["step_type"]).value,
                    configuration=s.get("configuration") or {},
                    on_success=s.get("on_success"),
                    on_error=s.get("on_error"),
                    max_retries=s.get("max_retries", 0),
                    timeout_seconds=s.get("timeout_seconds"),
                )
                for s in steps or []
            ],
        })
        logger.info(f"Created workflow {workflow.id} ({name}) with {len(workflow.steps)} steps")
        return workflow

    async def list_workflows(
        self,
        active_only: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Workflow], int]:
        """Workflows by name, with the total count for paging."""
        filters = {"is_active": True} if active_only else None
        return await self.list(
            offset=offset,
            limit=limit,
            order_by="name",
            order_desc=False,
            filters=filters,
        )

    async def get_definition(self, workflow_id: int, default_timeout: int = 300) -> WorkflowDefinition:
        """Load a workflow as an executable definition.

        Raises:
            NotFoundError: no workflow with this id.
            ConfigurationError: a stored step has an unknown type or routing action.
        """
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return WorkflowDefinition(
            id=workflow.id,
            name=workflow.name,
            is_active=workflow.is_active,
            steps=tuple(_step_definition(s, default_timeout) for s in workflow.steps),
        )

    # ─── Execution records ─────────────────────────────────

    async def record_execution(self, result: WorkflowExecutionResult) -> WorkflowExecution:
        """Persist a finished run with its step results (in execution order)."""
        execution = WorkflowExecution(
            run_id=result.run_id,
            workflow_id=result.workflow_id,
            start_time=result.start_time,
            end_time=result.end_time,
            success=result.success,
            status=result.status.value,
            error_message=result.error_message,
            total_steps=result.total_steps,
            completed_steps=result.completed_steps,
            step_results=[
                StepExecutionRecord(
                    step_order=r.order,
                    step_name=r.name,
                    status=r.status.value,
                    success=r.success,
                    start_time=r.start_time,
                    end_time=r.end_time,
                    error_message=r.error_message,
                    records_processed=r.records_processed,
                    records_failed=r.records_failed,
                    log_details=r.log_details,
                    retry_count=r.retry_count,
                )
                for r in result.step_results
            ],
        )
        self.db.add(execution)
        await self.db.flush()
        result.id = execution.id
        return execution

    async def list_executions(self, workflow_id: int, limit: int = 50) -> list[WorkflowExecutionResult]:
        """Most recent runs of a workflow, newest first."""
        result = await self.db.execute(
            select(WorkflowExecution)
            .where(WorkflowExecution.workflow_id == workflow_id)
            .order_by(WorkflowExecution.start_time.desc(), WorkflowExecution.id.desc())
            .limit(limit)
        )
        return [_to_result(row) for row in result.scalars().all()]

    async def get_execution(self, execution_id: int) -> Optional[WorkflowExecutionResult]:
        """A single stored run, or None."""
        result = await self.db.execute(
            select(WorkflowExecution).where(WorkflowExecution.id == execution_id)
        )
        row = result.scalar_one_or_none()
        return _to_result(row) if row else None

    async def get_statistics(self, workflow_id: int) -> dict[str, Any]:
        """Aggregate run counts and timing for a workflow."""
        counts = await self.db.execute(
            select(
                func.count(WorkflowExecution.id),
                func.sum(case((WorkflowExecution.success == True, 1), else_=0)),  # noqa: E712
                func.max(WorkflowExecution.start_time),
            ).where(WorkflowExecution.workflow_id == workflow_id)
        )
        total, successful, last_execution = counts.one()
        total = total or 0
        successful = successful or 0

        spans = await self.db.execute(
            select(WorkflowExecution.start_time, WorkflowExecution.end_time).where(
                WorkflowExecution.workflow_id == workflow_id,
                WorkflowExecution.end_time.is_not(None),
            )
        )
        durations = [(end - start).total_seconds() for start, end in spans.all()]

        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": total - successful,
            "average_duration_seconds": (
                round(sum(durations) / len(durations), 3) if durations else 0.0
            ),
            "last_execution": last_execution,
        }
