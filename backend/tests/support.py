"""Test doubles and helpers shared by the test modules."""

import asyncio
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import create_async_engine

from core.constants import StepType
from core.exceptions import NotFoundError, PersistenceError
from executors.base import BaseStepExecutor
from services.query_view_service import QueryDefinition, QueryParameterDefinition
from workflow.models import StepResult, WorkflowDefinition


def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def run_sql(url: str, *statements: str) -> None:
    """Execute raw statements against a database in one transaction."""
    engine = create_async_engine(url)
    try:
        async with engine.begin() as conn:
            for statement in statements:
                await conn.exec_driver_sql(statement)
    finally:
        await engine.dispose()


async def fetch_all(url: str, sql: str) -> list[tuple]:
    engine = create_async_engine(url)
    try:
        async with engine.connect() as conn:
            result = await conn.exec_driver_sql(sql)
            return [tuple(row) for row in result.fetchall()]
    finally:
        await engine.dispose()


def make_workflow(*steps: dict, id: int = 1, name: str = "Test Workflow", is_active: bool = True) -> WorkflowDefinition:
    """WorkflowDefinition from wire-form step dicts; steps default to ExecuteQuery."""
    return WorkflowDefinition.from_dict({
        "id": id,
        "name": name,
        "isActive": is_active,
        "steps": [{"stepType": "ExecuteQuery", **s} for s in steps],
    })


def query(id: int, sql_text: str, connection_target: str, **defaults: Optional[str]) -> QueryDefinition:
    return QueryDefinition(
        id=id,
        sql_text=sql_text,
        connection_target=connection_target,
        parameters=tuple(QueryParameterDefinition(n, v) for n, v in defaults.items()),
    )


class InMemoryWorkflowStore:
    """Workflow/result store keeping everything in memory."""

    def __init__(self, *definitions: WorkflowDefinition, fail_on_append: bool = False):
        self.definitions = {d.id: d for d in definitions}
        self.results = []
        self.fail_on_append = fail_on_append

    async def get_workflow(self, workflow_id: int) -> WorkflowDefinition:
        if workflow_id not in self.definitions:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return self.definitions[workflow_id]

    async def append_execution_result(self, result) -> None:
        if self.fail_on_append:
            raise PersistenceError("database is locked")
        self.results.append(result)


class InMemoryQueryStore:
    """Query definition store keeping definitions in memory."""

    def __init__(self, *definitions: QueryDefinition):
        self.definitions = {d.id: d for d in definitions}
        self.touched: list[int] = []

    async def get(self, query_view_id: int) -> QueryDefinition:
        if query_view_id not in self.definitions:
            raise NotFoundError(f"Query view {query_view_id} not found")
        return self.definitions[query_view_id]

    async def touch_last_executed(self, query_view_id: int) -> None:
        self.touched.append(query_view_id)


class ScriptedExecutor(BaseStepExecutor):
    """Plays back scripted outcomes per step order.

    Outcomes: "ok", "hang" (sleeps until cancelled), an error message string,
    or an exception instance to raise. Unscripted calls succeed.
    """

    display_name = "Scripted"

    def __init__(self, step_type: StepType = StepType.EXECUTE_QUERY, script: Optional[dict[int, list]] = None):
        self.step_type = step_type
        self.script = {order: list(outcomes) for order, outcomes in (script or {}).items()}
        self.calls: list[int] = []
        self.started = asyncio.Event()
        self.contexts: list[Any] = []

    async def execute(self, step, context) -> StepResult:
        self.calls.append(step.order)
        self.contexts.append(context)
        self.started.set()

        outcomes = self.script.get(step.order) or []
        outcome = outcomes.pop(0) if outcomes else "ok"

        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(3600)

        result = StepResult.start(step)
        if outcome == "ok":
            result.records_processed = 1
            return result.succeed()
        return result.fail(outcome)


class RecordingHandler:
    """httpx.MockTransport handler that records requests and plays back responses.

    ``responses`` items are status codes or exceptions; the last one repeats.
    """

    def __init__(self, *responses, body: str = '{"ok": true}'):
        self.responses = list(responses) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        outcome = self.responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text=self.body)

    @property
    def bodies(self) -> list[str]:
        return [r.content.decode("utf-8") for r in self.requests]
