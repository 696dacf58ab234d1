"""Engine wiring: stores, backends and executors from settings."""

from typing import Callable, Optional

from app.config import Settings, get_settings
from db.database import create_db_engine, create_session_factory
from executors.registry import build_executor_registry
from services.http_transport import HttpTransport
from services.stores import DatabaseQueryDefinitionStore, DatabaseWorkflowStore
from services.tabular_backend import TabularBackend
from workflow.engine import WorkflowEngine
from workflow.retry_strategies import RetryStrategy


def create_workflow_engine(
    session_factory=None,
    settings: Optional[Settings] = None,
    backend: Optional[TabularBackend] = None,
    transport: Optional[HttpTransport] = None,
    on_step_complete: Optional[Callable] = None,
) -> WorkflowEngine:
    """Build a WorkflowEngine backed by the application database.

    Args:
        session_factory: Async session factory for the workflow store
            (default: one created from DATABASE_URL)
        settings: Settings override
        backend: Tabular backend override
        transport: HTTP transport override (e.g. with httpx.MockTransport)
        on_step_complete: Callback(result, step_result) after each step
    """
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings.DATABASE_URL))

    backend = backend or TabularBackend(
        echo=settings.SQLALCHEMY_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    transport = transport or HttpTransport(
        block_private_networks=settings.HTTP_BLOCK_PRIVATE_NETWORKS,
    )

    workflow_store = DatabaseWorkflowStore(
        session_factory, default_timeout=settings.DEFAULT_STEP_TIMEOUT_SECONDS
    )
    query_store = DatabaseQueryDefinitionStore(session_factory)
    registry = build_executor_registry(query_store, backend, transport, settings)

    return WorkflowEngine(
        workflow_store,
        registry,
        retry_strategy=RetryStrategy.from_policy(
            settings.STEP_RETRY_POLICY,
            max_retries=0,
            base_delay=settings.STEP_RETRY_BASE_DELAY,
            max_delay=settings.STEP_RETRY_MAX_DELAY,
        ),
        max_step_executions=settings.MAX_STEP_EXECUTIONS,
        on_step_complete=on_step_complete,
    )
