"""Query view service: saved query lookup and bookkeeping."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.models.query_view import QueryParameter, QueryView
from services.base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryParameterDefinition:
    name: str
    default_value: Optional[str] = None


@dataclass(frozen=True)
class QueryDefinition:
    """A saved query as the executors see it."""

    id: int
    sql_text: str
    connection_target: str
    parameters: tuple[QueryParameterDefinition, ...] = field(default_factory=tuple)
    name: str = ""


class QueryViewService(BaseService[QueryView]):
    """Service for saved queries."""

    def __init__(self, db: AsyncSession):
        super().__init__(QueryView, db)

    async def create_query_view(
        self,
        name: str,
        sql_query: str,
        connection_string: str,
        parameters: list[dict] = None,
        description: str = "",
    ) -> QueryView:
        """Create a saved query with its parameters.

        ``parameters`` items: ``{"name": "@Since", "default_value": "2024-01-01", "data_type": "date"}``
        """
        return await self.create({
            "name": name,
            "description": description,
            "sql_query": sql_query,
            "connection_string": connection_string,
            "parameters": [
                QueryParameter(
                    name=p["name"],
                    data_type=p.get("data_type", "string"),
                    default_value=p.get("default_value"),
                )
                for p in parameters or []
            ],
        })

    async def get_definition(self, query_view_id: int) -> QueryDefinition:
        """Load a saved query.

        Raises:
            NotFoundError: no query view with this id.
        """
        view = await self.get_by_id(query_view_id)
        if view is None:
            raise NotFoundError(f"Query view {query_view_id} not found")
        return QueryDefinition(
            id=view.id,
            name=view.name,
            sql_text=view.sql_query,
            connection_target=view.connection_string,
            parameters=tuple(
                QueryParameterDefinition(name=p.name, default_value=p.default_value)
                for p in view.parameters
            ),
        )

    async def touch_last_executed(self, query_view_id: int) -> None:
        """Stamp the query view's last execution time."""
        await self.db.execute(
            update(QueryView)
            .where(QueryView.id == query_view_id)
            .values(last_executed=datetime.now(timezone.utc))
        )
        await self.db.flush()
