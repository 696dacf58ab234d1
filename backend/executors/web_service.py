"""WebServiceCall step: call an HTTP endpoint per record or once per table.

PerRecord mode retries each call on its own (linear backoff); a record that
still fails after ``maxRetries`` retries is counted and the loop moves on.
Cancelling the run stops the loop and the backoff waits with CancelledError.
Batch mode issues exactly one call and leaves retries to the engine.
"""

import asyncio
import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog

from core.constants import LoadMode, StepType, WebServiceMode
from core.exceptions import ConfigurationError, DataflowException, NotFoundError
from executors.base import BaseStepExecutor
from workflow.context import Table, WorkflowContext
from workflow.models import StepResult, WorkflowStepDefinition
from workflow.retry_strategies import RetryStrategy, execute_with_retry
from workflow.step_config import WebServiceConfig, decode_step_config

logger = structlog.get_logger(__name__)

PLACEHOLDER = re.compile(r"\{(\w+)\}")
DATA_PLACEHOLDER = "{data}"
RESPONSE_COLUMNS = ["recordIndex", "statusCode", "body", "errorMessage", "timestamp", "attempts"]


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def serialize_table(table: Table) -> str:
    """Table as a JSON array of objects, columns in table order."""
    return json.dumps(table.to_records(), default=_json_default)


def render_record(template: str, row: dict[str, Any]) -> str:
    """Replace ``{Column}`` placeholders with the row's values.

    Absent columns and nulls render as an empty string.
    """
    def _value(match: re.Match) -> str:
        value = row.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(_value, template)


class WebServiceExecutor(BaseStepExecutor):
    """Calls an HTTP endpoint with data from a context table.

    Config:
        method: GET | POST | PUT | PATCH | DELETE (default: POST)
        url: Endpoint (required)
        mode: PerRecord | Batch (default: Batch)
        dataSource: Context table key
        bodyTemplate: Body with {Column} (PerRecord) or {data} (Batch) placeholders
        headers: Extra request headers
        timeoutSeconds: Per-call timeout (default: 30)
        maxRetries: Per-record retries in PerRecord mode (default: 3)
        saveResponses / responseTableName: Persist per-record responses
    """

    step_type = StepType.WEB_SERVICE_CALL
    display_name = "Web Service Call"

    def __init__(self, transport, backend, workspace_target: str, retry_base_delay: float = 1.0):
        self._transport = transport
        self._backend = backend
        self._workspace_target = workspace_target
        self._retry_base_delay = retry_base_delay

    async def execute(self, step: WorkflowStepDefinition, context: WorkflowContext) -> StepResult:
        config: WebServiceConfig = decode_step_config(self.step_type, step.configuration)
        result = StepResult.start(step)

        source: Optional[Table] = None
        if config.data_source:
            source = context.get_table(config.data_source)
            if source is None:
                raise ConfigurationError(f"Data source '{config.data_source}' not found in context")

        logger.info(
            "Starting web service call",
            url=config.url,
            method=config.method,
            mode=config.mode.value,
            rows=source.row_count if source is not None else None,
        )

        if config.mode == WebServiceMode.PER_RECORD:
            await self._execute_per_record(config, source, result, context)
        else:
            await self._execute_batch(config, source, result)

        if result.end_time is not None:
            return result

        if result.records_failed == 0 or result.records_processed > 0:
            return result.succeed()
        return result.fail(f"All {result.records_failed} records failed")

    async def _call(self, config: WebServiceConfig, body: str):
        return await self._transport.send(
            config.method,
            config.url,
            headers=config.headers,
            body=body,
            timeout=config.timeout_seconds,
        )

    async def _execute_per_record(
        self,
        config: WebServiceConfig,
        source: Optional[Table],
        result: StepResult,
        context: WorkflowContext,
    ) -> None:
        if source is None or source.row_count == 0:
            result.log_details = "No data to process in PerRecord mode."
            return

        strategy = RetryStrategy.linear(
            max_retries=config.max_retries,
            base_delay=self._retry_base_delay,
            max_delay=float("inf"),
        )
        strategy.retryable_errors = ["TransientCallError"]
        template = config.body_template or "{}"
        responses: list[dict[str, Any]] = []
        log_lines: list[str] = []

        async def backoff(delay: float) -> None:
            if await context.cancellation.sleep(delay):
                self._stop_cancelled(record_index, source.row_count)

        for record_index, row in enumerate(source.rows, start=1):
            if context.cancellation.is_cancelled:
                self._stop_cancelled(record_index, source.row_count)

            body = render_record(template, row)
            attempts = 0

            async def attempt():
                nonlocal attempts
                attempts += 1
                return await self._call(config, body)

            def on_retry(retry: int, error: Exception, delay: float, index: int = record_index):
                logger.warning(
                    "Web service call failed, retrying",
                    record_index=index,
                    retry=retry,
                    delay=delay,
                    error=str(error),
                )

            try:
                response = await execute_with_retry(
                    attempt, strategy, on_retry=on_retry, sleep=backoff
                )
            except ConfigurationError:
                raise
            except Exception as e:
                result.records_failed += 1
                message = getattr(e, "message", None) or str(e)
                log_lines.append(f"Record {record_index}: Failed after {attempts} attempts - {message}")
                logger.warning("Record failed", record_index=record_index, attempts=attempts, error=message)
                responses.append({
                    "recordIndex": record_index,
                    "statusCode": 0,
                    "body": None,
                    "errorMessage": message,
                    "timestamp": datetime.now(timezone.utc),
                    "attempts": attempts,
                })
                continue

            result.records_processed += 1
            log_lines.append(
                f"Record {record_index}: Success (Status: {response.status_code}, attempts: {attempts})"
            )
            responses.append({
                "recordIndex": record_index,
                "statusCode": response.status_code,
                "body": response.body,
                "errorMessage": None,
                "timestamp": datetime.now(timezone.utc),
                "attempts": attempts,
            })

        result.log_details = "\n".join(log_lines)

        if config.save_responses and responses and config.response_table_name:
            await self._save_responses(config.response_table_name, responses)

    @staticmethod
    def _stop_cancelled(record_index: int, total: int) -> None:
        # Partial counts are never reported as a finished step
        logger.info("PerRecord calls cancelled", record_index=record_index, total_records=total)
        raise asyncio.CancelledError()

    async def _save_responses(self, table_name: str, responses: list[dict[str, Any]]) -> None:
        table = Table(columns=list(RESPONSE_COLUMNS), rows=responses)
        try:
            await self._backend.load_table(
                self._workspace_target, table_name, table, LoadMode.REPLACE
            )
            logger.info("Saved web service responses", table=table_name, rows=len(responses))
        except DataflowException as e:
            logger.warning("Failed to save responses", table=table_name, error=e.message)

    async def _execute_batch(
        self,
        config: WebServiceConfig,
        source: Optional[Table],
        result: StepResult,
    ) -> None:
        if source is not None:
            payload = serialize_table(source)
            if config.body_template and DATA_PLACEHOLDER in config.body_template:
                body = config.body_template.replace(DATA_PLACEHOLDER, payload)
            else:
                body = payload
            record_count = source.row_count
        else:
            body = config.body_template or "{}"
            record_count = 1

        try:
            response = await self._call(config, body)
        except DataflowException as e:
            result.records_failed = record_count
            result.fail(
                e.message,
                retryable=not isinstance(e, (ConfigurationError, NotFoundError)),
            )
            return

        result.records_processed = record_count
        result.log_details = f"Batch call successful. Status: {response.status_code}\nResponse: {response.body}"
