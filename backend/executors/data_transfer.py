"""DataTransfer step: copy a saved query's rows into a destination table."""

import structlog

from core.constants import LoadMode, StepType, TransferMode
from executors.base import BaseStepExecutor
from executors.execute_query import ExecuteQueryExecutor
from workflow.context import WorkflowContext
from workflow.models import StepResult, WorkflowStepDefinition
from workflow.step_config import DataTransferConfig, decode_step_config

logger = structlog.get_logger(__name__)


class DataTransferExecutor(BaseStepExecutor):
    """Moves rows from a query view into ``destinationTableName``.

    Config:
        sourceQueryViewId: Saved query producing the rows (required)
        destinationConnectionString: Destination database URL (required)
        destinationTableName: Target table, optionally schema qualified (required)
        mode: Append | Truncate | Upsert (default: Append)
        primaryKeyColumns: Key columns for Upsert
        batchSize: Rows per committed batch for Append/Truncate (default: DEFAULT_BATCH_SIZE)

    Upsert without key columns loads like Append.
    """

    step_type = StepType.DATA_TRANSFER
    display_name = "Data Transfer"

    def __init__(self, execute_query: ExecuteQueryExecutor, backend, default_batch_size: int = 1000):
        self._execute_query = execute_query
        self._backend = backend
        self._default_batch_size = default_batch_size

    @staticmethod
    def source_key(step: WorkflowStepDefinition) -> str:
        return f"DataTransfer_{step.order}_Source"

    async def execute(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        config: DataTransferConfig = decode_step_config(self.step_type, step.configuration)
        result = StepResult.start(step)

        source_step = WorkflowStepDefinition(
            order=step.order,
            name=f"{step.name}_Source",
            step_type=StepType.EXECUTE_QUERY,
            configuration={
                "queryViewId": config.source_query_view_id,
                "resultKey": self.source_key(step),
            },
            timeout_seconds=step.timeout_seconds,
        )
        source_result = await self._execute_query.run(source_step, context)
        if not source_result.success:
            return result.fail(
                f"Failed to execute source query: {source_result.error_message}",
                retryable=source_result.retryable,
                log_details=source_result.log_details,
            )

        source = context.get_table(self.source_key(step))
        if source is None or source.row_count == 0:
            logger.info("No data to transfer", step_order=step.order)
            return result.succeed("No data to transfer.")

        if config.mode == TransferMode.UPSERT and config.primary_key_columns:
            mode = LoadMode.UPSERT
        elif config.mode == TransferMode.TRUNCATE:
            mode = LoadMode.TRUNCATE
        else:
            mode = LoadMode.APPEND

        logger.info(
            "Starting data transfer",
            source_query_view_id=config.source_query_view_id,
            destination=config.destination_table_name,
            mode=mode.value,
            rows=source.row_count,
        )
        load = await self._backend.load_table(
            config.destination_connection_string,
            config.destination_table_name,
            source,
            mode,
            primary_key_columns=config.primary_key_columns,
            batch_size=config.batch_size or self._default_batch_size,
        )

        result.records_processed = load.rows_written
        return result.succeed(
            f"Transferred {load.rows_written} records successfully in {load.batches} batch(es)."
        )
