"""
Executor registry: maps each step type to its executor instance.

Populated once when the engine is built.
"""

from typing import Dict, Iterable, Optional

from core.constants import StepType
from core.exceptions import ConfigurationError
from executors.base import BaseStepExecutor


class ExecutorRegistry:
    """Explicit step type to executor map."""

    def __init__(self, executors: Iterable[BaseStepExecutor] = ()):
        self._executors: Dict[StepType, BaseStepExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: BaseStepExecutor) -> None:
        """Register an executor under its step type, replacing any previous one."""
        self._executors[executor.step_type] = executor

    def get(self, step_type: StepType) -> Optional[BaseStepExecutor]:
        return self._executors.get(step_type)

    def require(self, step_type: StepType) -> BaseStepExecutor:
        """Executor for ``step_type``.

        Raises:
            ConfigurationError: nothing is registered for the type.
        """
        executor = self.get(step_type)
        if executor is None:
            raise ConfigurationError(f"No executor registered for step type {step_type.value}")
        return executor


def build_executor_registry(query_store, backend, transport, settings=None) -> ExecutorRegistry:
    """Create the registry with the built-in executors."""
    from app.config import get_settings
    from executors.data_transfer import DataTransferExecutor
    from executors.execute_query import ExecuteQueryExecutor
    from executors.web_service import WebServiceExecutor

    settings = settings or get_settings()
    execute_query = ExecuteQueryExecutor(query_store, backend)
    return ExecutorRegistry([
        execute_query,
        DataTransferExecutor(execute_query, backend, default_batch_size=settings.DEFAULT_BATCH_SIZE),
        WebServiceExecutor(
            transport,
            backend,
            workspace_target=settings.WORKSPACE_DATABASE_URL,
            retry_base_delay=settings.WEB_SERVICE_RETRY_BASE_DELAY,
        ),
    ])
