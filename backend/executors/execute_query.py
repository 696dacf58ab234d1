"""ExecuteQuery step: run a saved query and keep its result in the context."""

from typing import Mapping

import structlog

from core.constants import StepType
from executors.base import BaseStepExecutor
from services.query_view_service import QueryDefinition
from workflow.context import Table, WorkflowContext
from workflow.models import StepResult, WorkflowStepDefinition
from workflow.step_config import ExecuteQueryConfig, decode_step_config

logger = structlog.get_logger(__name__)


def substitute_parameters(definition: QueryDefinition, values: Mapping[str, str]) -> str:
    """Replace every parameter token in the query text.

    Each declared parameter's name (e.g. ``@StartDate``) is replaced verbatim
    with the supplied value, the parameter's default, or an empty string.
    This is plain text replacement, not bound parameters: values must be
    sanitized by whoever supplies them.
    """
    sql_text = definition.sql_text
    for param in definition.parameters:
        if param.name in values:
            value = values[param.name]
        else:
            value = param.default_value or ""
        sql_text = sql_text.replace(param.name, value)
    return sql_text


class ExecuteQueryExecutor(BaseStepExecutor):
    """Runs a query view and stores the full result set under ``resultKey``.

    Config:
        queryViewId: Saved query to run (required)
        parameterValues: Map of parameter name to value
        resultKey: Context table key (default: QueryResult)
    """

    step_type = StepType.EXECUTE_QUERY
    display_name = "Execute Query"

    def __init__(self, query_store, backend):
        self._query_store = query_store
        self._backend = backend

    async def fetch(self, query_view_id: int, parameter_values: Mapping[str, str]) -> Table:
        """Resolve, substitute and execute a saved query.

        Raises:
            NotFoundError: unknown query view.
            TransientCallError: the backend failed.
        """
        definition = await self._query_store.get(query_view_id)
        sql_text = substitute_parameters(definition, parameter_values)
        logger.debug("Executing query view", query_view_id=query_view_id, sql=sql_text)

        table = await self._backend.execute(definition.connection_target, sql_text)
        await self._query_store.touch_last_executed(query_view_id)
        return table

    async def execute(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        config: ExecuteQueryConfig = decode_step_config(self.step_type, step.configuration)
        result = StepResult.start(step)

        table = await self.fetch(config.query_view_id, config.parameter_values)
        context.set_table(config.result_key, table)

        result.records_processed = table.row_count
        return result.succeed(f"Query executed successfully. {table.row_count} rows returned.")
