"""Base CRUD service.

Service classes inherit from this. Provides read, list and create with
pagination and simple equality filters.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Usage:
        class QueryViewService(BaseService[QueryView]):
            def __init__(self, db: AsyncSession):
                super().__init__(QueryView, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """Get a single record by ID."""
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def list(
        self,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """Page through records.

        ``filters`` maps column names to a value (equality) or a list (IN);
        unknown names are ignored. Ties in ``order_by`` fall back to id.

        Returns:
            (items, total_count) where total_count ignores offset/limit
        """
        conditions = []
        for name, value in (filters or {}).items():
            col = getattr(self.model, name, None)
            if col is None:
                continue
            conditions.append(col.in_(value) if isinstance(value, list) else col == value)

        total = await self.db.scalar(
            select(func.count()).select_from(self.model).where(*conditions)
        )

        query = select(self.model).where(*conditions)
        sort_col = getattr(self.model, order_by, self.model.id)
        for col in (sort_col, self.model.id):
            query = query.order_by(col.desc() if order_desc else col.asc())

        result = await self.db.execute(query.offset(offset).limit(limit))
        return result.scalars().all(), total or 0

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dict of field values

        Returns:
            Created model instance
        """
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance
