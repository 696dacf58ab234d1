"""
Base step executor for all workflow step types.

Every step type (ExecuteQuery, DataTransfer, WebServiceCall, ...) must
inherit from BaseStepExecutor and implement the execute() method.
"""

import time
import traceback
from abc import ABC, abstractmethod

import structlog

from core.constants import StepType
from core.exceptions import ConfigurationError, NotFoundError
from workflow.context import WorkflowContext
from workflow.models import StepResult, WorkflowStepDefinition

logger = structlog.get_logger(__name__)


class BaseStepExecutor(ABC):
    """
    Abstract base class for step executors.

    Subclasses must implement:
    - execute(step, context) -> StepResult
    - step_type (class attribute)
    - display_name (class attribute)

    Executors may read and add to the context; they never remove entries.
    """

    step_type: StepType
    display_name: str = "Base Step"

    @abstractmethod
    async def execute(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        """
        Execute one step.

        Args:
            step: Step definition, including its raw configuration
            context: Run context shared with the other steps of this run

        Returns:
            StepResult describing the attempt
        """

    async def run(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        """
        Run the step with timing and error capture.

        This is the entry point called by the workflow engine. Exceptions
        become failed StepResults; asyncio.CancelledError passes through.
        """
        start = time.monotonic()
        logger.info(
            "Step starting",
            executor=self.display_name,
            step_type=self.step_type.value,
            step_order=step.order,
            step_name=step.name,
        )
        try:
            result = await self.execute(step, context)
        except (ConfigurationError, NotFoundError) as e:
            result = StepResult.start(step).fail(e.message, retryable=False)
        except Exception as e:
            result = StepResult.start(step).fail(
                str(e) or type(e).__name__,
                log_details=traceback.format_exc(),
            )

        logger.info(
            "Step finished",
            executor=self.display_name,
            step_type=self.step_type.value,
            step_order=step.order,
            status=result.status.value,
            records_processed=result.records_processed,
            records_failed=result.records_failed,
            error=result.error_message,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result
