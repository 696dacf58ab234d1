"""Tabular execution backend.

Runs SQL text against a connection target and loads in-memory tables into a
destination table. Connection targets are SQLAlchemy async URLs
(``sqlite+aiosqlite:///...``, ``postgresql+asyncpg://...``, ...); one
AsyncEngine is created per target and reused.

Load modes:
- append: batched inserts, one transaction per batch
- truncate: delete every destination row, then append
- upsert: one transaction; per row, probe by primary key and update or insert
- replace: drop and recreate the table from the data's columns, then append
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    Table as SATable,
    Text,
    and_,
    column,
    delete,
    func,
    insert,
    select,
    table,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.constants import LoadMode
from core.exceptions import ConfigurationError, TransientCallError
from workflow.context import Table

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of a table load."""
    rows_written: int
    batches: int = 0


def _batches(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _split_table_name(name: str) -> tuple[str, Optional[str]]:
    """'dbo.Customers' -> ('Customers', 'dbo')."""
    schema, _, table_name = name.rpartition(".")
    return table_name, schema or None


def _describe(error: SQLAlchemyError) -> str:
    """Prefer the driver's message over SQLAlchemy's wrapper text."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def _infer_type(values):
    for value in values:
        if value is None:
            continue
        if isinstance(value, bool):
            return Boolean()
        if isinstance(value, int):
            return Integer()
        if isinstance(value, float):
            return Float()
        if isinstance(value, Decimal):
            return Numeric()
        if isinstance(value, datetime):
            return DateTime(timezone=True)
        if isinstance(value, date):
            return Date()
        if isinstance(value, bytes):
            return LargeBinary()
        return Text()
    return Text()


class TabularBackend:
    """Executes queries and loads tables for any SQLAlchemy async URL."""

    def __init__(
        self,
        echo: bool = False,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
    ):
        self._echo = echo
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._engines: dict[str, AsyncEngine] = {}

    def get_engine(self, connection_target: str) -> AsyncEngine:
        """Return the cached engine for a target, creating it on first use."""
        engine = self._engines.get(connection_target)
        if engine is None:
            kwargs: dict[str, Any] = dict(echo=self._echo)
            if not connection_target.startswith("sqlite"):
                kwargs["pool_pre_ping"] = True
                if self._pool_size:
                    kwargs["pool_size"] = self._pool_size
                if self._max_overflow is not None:
                    kwargs["max_overflow"] = self._max_overflow
            engine = create_async_engine(connection_target, **kwargs)
            self._engines[connection_target] = engine
        return engine

    async def dispose(self) -> None:
        """Close every pooled connection."""
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()

    # ─── Query ─────────────────────────────────────────────

    async def execute(self, connection_target: str, sql_text: str) -> Table:
        """Run SQL text verbatim and load the full result set into memory.

        Raises:
            TransientCallError: the backend rejected the statement or is unreachable.
        """
        try:
            engine = self.get_engine(connection_target)
            async with engine.connect() as conn:
                result = await conn.exec_driver_sql(sql_text)
                if not result.returns_rows:
                    await conn.commit()
                    return Table()
                return Table.from_rows(list(result.keys()), result.fetchall())
        except SQLAlchemyError as e:
            raise TransientCallError(_describe(e))

    # ─── Load ──────────────────────────────────────────────

    async def load_table(
        self,
        connection_target: str,
        table_name: str,
        data: Table,
        mode: LoadMode,
        primary_key_columns: Sequence[str] = (),
        batch_size: int = 1000,
    ) -> LoadResult:
        """Write ``data`` into ``table_name`` using the given load mode.

        Raises:
            ConfigurationError: upsert without usable primary key columns.
            TransientCallError: any database failure.
        """
        name, schema = _split_table_name(table_name)
        try:
            engine = self.get_engine(connection_target)

            if mode == LoadMode.UPSERT:
                return await self._upsert(engine, name, schema, data, primary_key_columns)

            if mode == LoadMode.REPLACE:
                target = await self._recreate(engine, name, schema, data)
            else:
                target = table(name, *[column(c) for c in data.columns], schema=schema)
                if mode == LoadMode.TRUNCATE:
                    await self._truncate(engine, target)

            batches = await self._insert_batches(engine, target, data, batch_size)
            logger.info(
                f"Loaded {len(data)} rows into {table_name} "
                f"({mode.value}, {batches} batch(es) of up to {batch_size})"
            )
            return LoadResult(rows_written=len(data), batches=batches)
        except SQLAlchemyError as e:
            raise TransientCallError(_describe(e))

    async def _truncate(self, engine: AsyncEngine, target) -> None:
        logger.info(f"Truncating table {target.fullname}")
        async with engine.begin() as conn:
            await conn.execute(delete(target))

    async def _recreate(self, engine: AsyncEngine, name: str, schema: Optional[str], data: Table) -> SATable:
        sa_table = SATable(
            name,
            MetaData(),
            *[Column(c, _infer_type(row.get(c) for row in data.rows)) for c in data.columns],
            schema=schema,
        )
        async with engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: sa_table.drop(sync_conn, checkfirst=True))
            await conn.run_sync(lambda sync_conn: sa_table.create(sync_conn))
        return sa_table

    async def _insert_batches(self, engine: AsyncEngine, target, data: Table, batch_size: int) -> int:
        batches = 0
        for chunk in _batches(data.rows, batch_size):
            params = [{c: row.get(c) for c in data.columns} for row in chunk]
            async with engine.begin() as conn:
                await conn.execute(insert(target), params)
            batches += 1
            logger.debug(f"Committed batch {batches} ({len(chunk)} rows) into {target.fullname}")
        return batches

    async def _upsert(
        self,
        engine: AsyncEngine,
        name: str,
        schema: Optional[str],
        data: Table,
        primary_key_columns: Sequence[str],
    ) -> LoadResult:
        keys = list(primary_key_columns)
        if not keys:
            raise ConfigurationError("Upsert requires primary key columns")
        missing = [c for c in keys if not data.has_column(c)]
        if missing:
            raise ConfigurationError(
                f"Primary key columns not found in source data: {', '.join(missing)}"
            )

        target = table(name, *[column(c) for c in data.columns], schema=schema)
        value_columns = [c for c in data.columns if c not in primary_key_columns]
        inserted = updated = 0

        # Single transaction: any row failure rolls back every row
        async with engine.begin() as conn:
            for row in data.rows:
                match = and_(*[target.c[k] == row.get(k) for k in keys])
                existing = await conn.scalar(
                    select(func.count()).select_from(target).where(match)
                )
                if existing:
                    if value_columns:
                        await conn.execute(
                            update(target).where(match).values({c: row.get(c) for c in value_columns})
                        )
                    updated += 1
                else:
                    await conn.execute(
                        insert(target).values({c: row.get(c) for c in data.columns})
                    )
                    inserted += 1

        logger.info(f"Upserted {len(data)} rows into {target.fullname}: {inserted} inserted, {updated} updated")
        return LoadResult(rows_written=len(data), batches=1)
