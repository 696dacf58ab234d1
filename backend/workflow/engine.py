"""Workflow Execution Engine: sequential step runner.

Takes a stored workflow definition (an ordered list of steps) and runs the
steps one after another, handling:

- Executor lookup per step type
- Per-step timeout and run-level cancellation
- Retry with backoff for retryable failures
- Routing after each step (continue, end, skip_to:<order>)
- Persisting the execution record

Step routing strings:
    onSuccess: unset | "continue" -> next step, "end" -> stop, "skip_to:5" -> jump to order 5
    onError:   unset | "end" -> stop, "continue" -> next step, "skip_to:5" -> jump to order 5

Run outcome:
    success = every executed step succeeded and completed_steps == total_steps
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.config import get_settings
from core.constants import RoutingKind, StepStatus
from core.exceptions import ConfigurationError, NotFoundError, WorkflowInactiveError
from executors.base import BaseStepExecutor
from executors.registry import ExecutorRegistry
from workflow.context import CancellationToken, WorkflowContext
from workflow.models import (
    RoutingAction,
    StepResult,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStepDefinition,
)
from workflow.retry_strategies import RetryStrategy

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Step cancelled"
RUN_CANCELLED_REASON = "Execution cancelled"

STOP = RoutingAction(RoutingKind.END)
CONTINUE = RoutingAction(RoutingKind.CONTINUE)


@dataclass
class _RunningExecution:
    definition: WorkflowDefinition
    result: WorkflowExecutionResult
    cancellation: CancellationToken
    current_step: Optional[WorkflowStepDefinition] = None


def validate_routing(definition: WorkflowDefinition) -> None:
    """Check that every skip_to target names an existing step.

    Raises:
        ConfigurationError: a skip_to target does not exist.
    """
    for step in definition.steps:
        for action in (step.on_success, step.on_error):
            if action is None or action.kind != RoutingKind.SKIP_TO:
                continue
            if definition.index_of(action.target_order) is None:
                raise ConfigurationError(
                    f"Step {step.order} ({step.name}): skip_to target "
                    f"{action.target_order} does not exist in workflow {definition.id}"
                )


class WorkflowEngine:
    """Runs workflows one step at a time.

    Each run gets its own WorkflowContext, so concurrent runs share nothing
    but the collaborators.
    """

    def __init__(
        self,
        workflow_store,
        registry: ExecutorRegistry,
        retry_strategy: Optional[RetryStrategy] = None,
        max_step_executions: Optional[int] = None,
        on_step_complete: Optional[Callable] = None,
    ):
        settings = get_settings()
        self._workflow_store = workflow_store
        self._registry = registry
        self._retry_strategy = retry_strategy or RetryStrategy.from_policy(
            settings.STEP_RETRY_POLICY,
            max_retries=0,
            base_delay=settings.STEP_RETRY_BASE_DELAY,
            max_delay=settings.STEP_RETRY_MAX_DELAY,
        )
        self._max_step_executions = max_step_executions or settings.MAX_STEP_EXECUTIONS
        self._on_step_complete = on_step_complete
        self._running_executions: dict[str, _RunningExecution] = {}

    async def execute(
        self,
        workflow_id: int,
        initial_variables: Optional[dict[str, Any]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> WorkflowExecutionResult:
        """Run a workflow to completion, early stop or cancellation.

        Args:
            workflow_id: Stored workflow to run
            initial_variables: Seed values for the run's context
            cancellation: Token the caller may cancel to abort the run

        Returns:
            The finished WorkflowExecutionResult (also handed to the store)

        Raises:
            NotFoundError: the workflow does not exist.
            WorkflowInactiveError: the workflow is not active.
            ConfigurationError: the workflow's routing is invalid.
        """
        definition = await self._workflow_store.get_workflow(workflow_id)
        if definition is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        if not definition.is_active:
            raise WorkflowInactiveError(f"Workflow {workflow_id} is not active")
        validate_routing(definition)

        cancellation = cancellation or CancellationToken()
        context = WorkflowContext(
            variables=dict(initial_variables or {}),
            cancellation=cancellation,
        )
        result = WorkflowExecutionResult(
            workflow_id=definition.id,
            total_steps=len(definition.steps),
        )
        running = _RunningExecution(definition, result, cancellation)
        self._running_executions[result.run_id] = running

        logger.info(
            f"Starting workflow {definition.id} ({definition.name}), "
            f"run {result.run_id}, {result.total_steps} steps"
        )

        try:
            await self._execute_steps(running, context)
        except asyncio.CancelledError:
            logger.info(f"Run {result.run_id} cancelled by caller, result not persisted")
            raise
        finally:
            self._running_executions.pop(result.run_id, None)

        result.finalize()
        logger.info(
            f"Workflow {definition.id} run {result.run_id} finished: {result.status.value}, "
            f"{result.completed_steps}/{result.total_steps} steps completed "
            f"in {result.duration_seconds:.2f}s"
        )
        await self._persist(result)
        return result

    # ─── Step loop ─────────────────────────────────────────

    async def _execute_steps(self, running: _RunningExecution, context: WorkflowContext) -> None:
        definition = running.definition
        result = running.result
        steps = definition.steps
        index = 0
        executions = 0

        while index < len(steps):
            if context.cancellation.is_cancelled:
                logger.info(f"Run {result.run_id} cancelled before step {steps[index].order}")
                result.cancelled = True
                result.abort_reason = RUN_CANCELLED_REASON
                return

            if executions >= self._max_step_executions:
                logger.error(
                    f"Run {result.run_id} exceeded {self._max_step_executions} step executions"
                )
                result.abort_reason = (
                    f"Aborted after {executions} step executions (routing loop)"
                )
                return

            step = steps[index]
            running.current_step = step
            executions += 1

            step_result = await self._execute_step(step, context)
            result.step_results.append(step_result)
            await self._notify(result, step_result)

            if step_result.status == StepStatus.CANCELLED:
                result.cancelled = True
                result.abort_reason = RUN_CANCELLED_REASON
                return

            if step_result.success:
                result.completed_steps += 1
                action = step.on_success or CONTINUE
            else:
                action = step.on_error or STOP
                logger.warning(
                    f"Step {step.order} ({step.name}) {step_result.status.value}: "
                    f"{step_result.error_message}; routing: {action}"
                )

            if action.kind == RoutingKind.END:
                if index + 1 < len(steps):
                    logger.info(f"Run {result.run_id} stopping after step {step.order}")
                return
            if action.kind == RoutingKind.SKIP_TO:
                logger.info(f"Step {step.order} routing to step {action.target_order}")
                index = definition.index_of(action.target_order)
            else:
                index += 1

    async def _execute_step(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        """Run one step, retrying retryable failures with backoff."""
        try:
            executor = self._registry.require(step.step_type)
        except ConfigurationError as e:
            return StepResult.start(step).fail(e.message, retryable=False)

        strategy = self._retry_strategy.with_max_retries(step.max_retries)
        retries = 0

        while True:
            step_result = await self._execute_attempt(executor, step, context)
            step_result.retry_count = retries

            if step_result.success or not step_result.retryable:
                return step_result
            if not strategy.should_retry(retries):
                return step_result

            delay = strategy.compute_delay(retries + 1)
            logger.info(
                f"Step {step.order} ({step.name}) retry {retries + 1}/{step.max_retries} "
                f"in {delay}s: {step_result.error_message}"
            )
            if await context.cancellation.sleep(delay):
                cancelled = StepResult.start(step).fail(
                    CANCELLED_MESSAGE, status=StepStatus.CANCELLED, retryable=False
                )
                cancelled.retry_count = retries
                return cancelled
            retries += 1

    async def _execute_attempt(
        self,
        executor: BaseStepExecutor,
        step: WorkflowStepDefinition,
        context: WorkflowContext,
    ) -> StepResult:
        """One attempt, bounded by the step timer and the run's cancellation."""
        attempt = StepResult.start(step)
        step_task = asyncio.ensure_future(executor.run(step, context))
        cancel_waiter = asyncio.ensure_future(context.cancellation.wait())

        try:
            done, _ = await asyncio.wait(
                {step_task, cancel_waiter},
                timeout=step.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            step_task.cancel()
            await asyncio.gather(step_task, return_exceptions=True)
            raise
        finally:
            cancel_waiter.cancel()

        if step_task in done:
            try:
                return step_task.result()
            except asyncio.CancelledError:
                return attempt.fail(CANCELLED_MESSAGE, status=StepStatus.CANCELLED, retryable=False)
            except Exception as e:
                logger.error(f"Executor for step {step.order} raised: {e}", exc_info=True)
                return attempt.fail(str(e) or type(e).__name__)

        step_task.cancel()
        await asyncio.gather(step_task, return_exceptions=True)

        if context.cancellation.is_cancelled:
            logger.info(f"Step {step.order} ({step.name}) cancelled")
            return attempt.fail(CANCELLED_MESSAGE, status=StepStatus.CANCELLED, retryable=False)

        logger.warning(f"Step {step.order} ({step.name}) timed out after {step.timeout_seconds}s")
        return attempt.fail(
            f"Step timed out after {step.timeout_seconds} seconds",
            status=StepStatus.TIMED_OUT,
            retryable=False,
        )

    # ─── Callbacks & persistence ───────────────────────────

    async def _notify(self, result: WorkflowExecutionResult, step_result: StepResult) -> None:
        if not self._on_step_complete:
            return
        try:
            outcome = self._on_step_complete(result, step_result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"on_step_complete callback failed: {e}")

    async def _persist(self, result: WorkflowExecutionResult) -> None:
        try:
            await self._workflow_store.append_execution_result(result)
        except Exception as e:
            logger.error(f"Failed to persist run {result.run_id}: {e}")

    # ─── Running executions ────────────────────────────────

    def cancel_execution(self, run_id: str) -> bool:
        """Cancel a running execution.

        Args:
            run_id: Run identifier from WorkflowExecutionResult.run_id

        Returns:
            True if cancelled, False if not found
        """
        running = self._running_executions.get(run_id)
        if running is None:
            return False
        running.cancellation.cancel()
        logger.info(f"Run {run_id} marked for cancellation")
        return True

    def get_running_executions(self) -> dict[str, dict]:
        """Get status of all running executions."""
        return {
            run_id: {
                "workflow_id": running.definition.id,
                "workflow_name": running.definition.name,
                "started_at": running.result.start_time.isoformat(),
                "current_step": running.current_step.order if running.current_step else None,
                "steps_completed": running.result.completed_steps,
                "steps_failed": len(running.result.failed_steps),
                "total_steps": running.result.total_steps,
            }
            for run_id, running in self._running_executions.items()
        }
