"""Store adapters used by the engine and executors.

The engine outlives any single database session, so each call here opens
its own session from the factory and commits before returning.
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import PersistenceError, TransientCallError
from services.query_view_service import QueryDefinition, QueryViewService
from services.workflow_service import WorkflowService
from workflow.models import WorkflowDefinition, WorkflowExecutionResult

logger = logging.getLogger(__name__)


class DatabaseWorkflowStore:
    """Workflow/result store backed by the application database."""

    def __init__(self, session_factory, default_timeout: int = 300):
        self._session_factory = session_factory
        self._default_timeout = default_timeout

    async def get_workflow(self, workflow_id: int) -> WorkflowDefinition:
        async with self._session_factory() as session:
            try:
                return await WorkflowService(session).get_definition(
                    workflow_id, default_timeout=self._default_timeout
                )
            except SQLAlchemyError as e:
                raise TransientCallError(f"Failed to load workflow {workflow_id}: {e}")

    async def append_execution_result(self, result: WorkflowExecutionResult) -> None:
        """Persist a finished run.

        Raises:
            PersistenceError: the record could not be written.
        """
        async with self._session_factory() as session:
            try:
                await WorkflowService(session).record_execution(result)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Failed to save execution {result.run_id}: {e}")

    async def list_executions(self, workflow_id: int, limit: int = 50) -> list[WorkflowExecutionResult]:
        async with self._session_factory() as session:
            return await WorkflowService(session).list_executions(workflow_id, limit=limit)

    async def get_execution(self, execution_id: int) -> Optional[WorkflowExecutionResult]:
        async with self._session_factory() as session:
            return await WorkflowService(session).get_execution(execution_id)

    async def get_statistics(self, workflow_id: int) -> dict[str, Any]:
        async with self._session_factory() as session:
            return await WorkflowService(session).get_statistics(workflow_id)


class DatabaseQueryDefinitionStore:
    """Query definition store backed by the application database."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, query_view_id: int) -> QueryDefinition:
        async with self._session_factory() as session:
            try:
                return await QueryViewService(session).get_definition(query_view_id)
            except SQLAlchemyError as e:
                raise TransientCallError(f"Failed to load query view {query_view_id}: {e}")

    async def touch_last_executed(self, query_view_id: int) -> None:
        async with self._session_factory() as session:
            try:
                await QueryViewService(session).touch_last_executed(query_view_id)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.warning(f"Could not update last execution time of query view {query_view_id}: {e}")
