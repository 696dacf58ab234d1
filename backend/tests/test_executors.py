"""Tests for the ExecuteQuery and DataTransfer executors."""

import pytest
import pytest_asyncio

from app.config import Settings
from core.constants import StepType
from core.exceptions import ConfigurationError
from executors.data_transfer import DataTransferExecutor
from executors.execute_query import ExecuteQueryExecutor, substitute_parameters
from executors.registry import ExecutorRegistry, build_executor_registry
from support import InMemoryQueryStore, fetch_all, query, run_sql
from workflow.context import WorkflowContext
from workflow.models import WorkflowStepDefinition


def execute_query_step(order=1, **config):
    return WorkflowStepDefinition(
        order=order, name=f"Query {order}", step_type=StepType.EXECUTE_QUERY, configuration=config
    )


def transfer_step(order=1, **config):
    return WorkflowStepDefinition(
        order=order, name=f"Transfer {order}", step_type=StepType.DATA_TRANSFER, configuration=config
    )


@pytest.mark.unit
class TestExecutorRegistry:
    def test_built_in_executors(self):
        settings = Settings(_env_file=None, DEFAULT_BATCH_SIZE=250)
        registry = build_executor_registry(InMemoryQueryStore(), backend=None, transport=None, settings=settings)

        transfer = registry.require(StepType.DATA_TRANSFER)
        assert isinstance(transfer, DataTransferExecutor)
        assert transfer._default_batch_size == 250
        assert registry.require(StepType.WEB_SERVICE_CALL).display_name == "Web Service Call"

    def test_require_unknown_type(self):
        registry = ExecutorRegistry()

        with pytest.raises(ConfigurationError, match="No executor registered for step type Validation"):
            registry.require(StepType.VALIDATION)


@pytest.mark.unit
class TestParameterSubstitution:
    def test_supplied_value_wins(self):
        definition = query(1, "SELECT * FROM Orders WHERE Region = '@Region'", "x", **{"@Region": "EU"})
        assert substitute_parameters(definition, {"@Region": "US"}) == (
            "SELECT * FROM Orders WHERE Region = 'US'"
        )

    def test_default_then_empty(self):
        definition = query(
            1, "SELECT '@A' AS A, '@B' AS B", "x", **{"@A": "fallback", "@B": None}
        )
        assert substitute_parameters(definition, {}) == "SELECT 'fallback' AS A, '' AS B"

    def test_every_occurrence_replaced(self):
        definition = query(1, "SELECT @N + @N", "x", **{"@N": "2"})
        assert substitute_parameters(definition, {}) == "SELECT 2 + 2"

    def test_undeclared_tokens_untouched(self):
        definition = query(1, "SELECT '@Other'", "x")
        assert substitute_parameters(definition, {"@Other": "1"}) == "SELECT '@Other'"


@pytest.mark.integration
class TestExecuteQueryExecutor:
    async def test_select_one(self, backend, source_url):
        store = InMemoryQueryStore(query(7, "SELECT 1 AS X", source_url))
        executor = ExecuteQueryExecutor(store, backend)
        context = WorkflowContext()

        result = await executor.run(execute_query_step(queryViewId=7, resultKey="R1"), context)

        assert result.success is True
        assert result.records_processed == 1
        table = context.get_table("R1")
        assert table.columns == ["X"]
        assert table.rows == [{"X": 1}]
        assert store.touched == [7]

    async def test_default_result_key_and_parameters(self, backend, source_url):
        await run_sql(
            source_url,
            "CREATE TABLE Orders (Id INTEGER, Region TEXT)",
            "INSERT INTO Orders VALUES (1, 'EU'), (2, 'US'), (3, 'EU')",
        )
        store = InMemoryQueryStore(
            query(3, "SELECT Id FROM Orders WHERE Region = '@Region' ORDER BY Id", source_url, **{"@Region": "US"})
        )
        executor = ExecuteQueryExecutor(store, backend)
        context = WorkflowContext()

        result = await executor.run(
            execute_query_step(queryViewId=3, parameterValues={"@Region": "EU"}), context
        )

        assert result.records_processed == 2
        assert [row["Id"] for row in context.get_table("QueryResult")] == [1, 3]

    async def test_missing_query_view(self, backend):
        executor = ExecuteQueryExecutor(InMemoryQueryStore(), backend)

        result = await executor.run(execute_query_step(queryViewId=99), WorkflowContext())

        assert result.success is False
        assert result.error_message == "Query view 99 not found"
        assert result.retryable is False

    async def test_backend_error_is_retryable(self, backend, source_url):
        store = InMemoryQueryStore(query(1, "SELECT * FROM NoSuchTable", source_url))
        executor = ExecuteQueryExecutor(store, backend)

        result = await executor.run(execute_query_step(queryViewId=1), WorkflowContext())

        assert result.success is False
        assert "no such table" in result.error_message
        assert result.retryable is True
        assert store.touched == []

    async def test_invalid_configuration(self, backend):
        executor = ExecuteQueryExecutor(InMemoryQueryStore(), backend)

        result = await executor.run(execute_query_step(resultKey="R"), WorkflowContext())

        assert result.success is False
        assert "queryViewId" in result.error_message
        assert result.retryable is False


SOURCE_ROWS = 2500


@pytest_asyncio.fixture
async def transfer_store(source_url, destination_url):
    """Query store over a source with a Customers table; the destination starts empty."""
    await run_sql(
        source_url,
        "CREATE TABLE Customers (Id INTEGER PRIMARY KEY, Name TEXT)",
        "INSERT INTO Customers (Id, Name) "
        "WITH RECURSIVE seq(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM seq WHERE n < 2500) "
        "SELECT n, 'Customer ' || n FROM seq",
        "CREATE TABLE Empty (Id INTEGER, Name TEXT)",
    )
    await run_sql(destination_url, "CREATE TABLE Customers (Id INTEGER, Name TEXT)")

    return InMemoryQueryStore(
        query(1, "SELECT Id, Name FROM Customers ORDER BY Id", source_url),
        query(2, "SELECT Id, Name FROM Customers WHERE Id <= 3 ORDER BY Id", source_url),
        query(3, "SELECT Id, Name FROM Empty", source_url),
    )


@pytest.fixture
def transfer(transfer_store, backend):
    return DataTransferExecutor(ExecuteQueryExecutor(transfer_store, backend), backend)


async def destination_count(url):
    rows = await fetch_all(url, "SELECT COUNT(*) FROM Customers")
    return rows[0][0]


@pytest.mark.integration
class TestDataTransferExecutor:
    async def test_append_in_batches(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=1,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
            mode="Append",
            batchSize=1000,
        )
        context = WorkflowContext()

        result = await transfer.run(step, context)

        assert result.success is True
        assert result.records_processed == SOURCE_ROWS
        assert "in 3 batch(es)" in result.log_details
        assert await destination_count(destination_url) == SOURCE_ROWS
        assert context.get_table("DataTransfer_1_Source").row_count == SOURCE_ROWS

    async def test_default_batch_size(self, transfer_store, backend, destination_url):
        executor = DataTransferExecutor(
            ExecuteQueryExecutor(transfer_store, backend), backend, default_batch_size=500
        )
        step = transfer_step(
            sourceQueryViewId=1,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
        )

        result = await executor.run(step, WorkflowContext())

        assert result.success is True
        assert "in 5 batch(es)" in result.log_details
        assert await destination_count(destination_url) == SOURCE_ROWS

    async def test_truncate_is_idempotent(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=2,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
            mode="Truncate",
        )

        first = await transfer.run(step, WorkflowContext())
        count_after_first = await destination_count(destination_url)
        second = await transfer.run(step, WorkflowContext())

        assert first.success and second.success
        assert count_after_first == 3
        assert await destination_count(destination_url) == 3

    async def test_upsert_does_not_duplicate(self, transfer, source_url, destination_url):
        step = transfer_step(
            sourceQueryViewId=2,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
            mode="Upsert",
            primaryKeyColumns=["Id"],
        )

        first = await transfer.run(step, WorkflowContext())
        await run_sql(source_url, "UPDATE Customers SET Name = 'Renamed' WHERE Id = 2")
        second = await transfer.run(step, WorkflowContext())

        assert first.success and second.success
        assert second.records_processed == 3
        assert second.records_failed == 0
        assert await destination_count(destination_url) == 3
        rows = await fetch_all(destination_url, "SELECT Name FROM Customers WHERE Id = 2")
        assert rows == [("Renamed",)]

    async def test_upsert_without_keys_appends(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=2,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
            mode="Upsert",
        )

        await transfer.run(step, WorkflowContext())
        await transfer.run(step, WorkflowContext())

        assert await destination_count(destination_url) == 6

    async def test_insert_is_accepted_as_append(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=2,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
            mode="Insert",
        )

        result = await transfer.run(step, WorkflowContext())

        assert result.success is True
        assert await destination_count(destination_url) == 3

    async def test_empty_source(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=3,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
        )

        result = await transfer.run(step, WorkflowContext())

        assert result.success is True
        assert result.records_processed == 0
        assert result.log_details == "No data to transfer."

    async def test_source_failure(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=404,
            destinationConnectionString=destination_url,
            destinationTableName="Customers",
        )

        result = await transfer.run(step, WorkflowContext())

        assert result.success is False
        assert result.error_message == "Failed to execute source query: Query view 404 not found"
        assert result.records_processed == 0
        assert result.retryable is False

    async def test_destination_failure(self, transfer, destination_url):
        step = transfer_step(
            sourceQueryViewId=2,
            destinationConnectionString=destination_url,
            destinationTableName="Missing",
        )

        result = await transfer.run(step, WorkflowContext())

        assert result.success is False
        assert "no such table" in result.error_message
        assert result.records_processed == 0
        assert result.retryable is True
