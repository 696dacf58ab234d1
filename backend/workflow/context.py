"""Per-run workflow state shared between steps.

A WorkflowContext is created by the engine for exactly one run and handed to
every executor by reference. Executors may add or overwrite variables and
tables but never remove them; every mutation is visible to later steps of the
same run only. The context is not thread-safe: a run executes its steps one at
a time, so there is a single writer.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional, Sequence


@dataclass
class Table:
    """In-memory tabular result: ordered column names plus rows keyed by column."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rows(cls, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> "Table":
        """Build a table from positional rows (e.g. a DB cursor)."""
        cols = list(columns)
        return cls(columns=cols, rows=[dict(zip(cols, row)) for row in rows])

    @classmethod
    def from_records(cls, records: Sequence[dict[str, Any]]) -> "Table":
        """Build a table from dicts; columns follow first-seen key order."""
        columns: list[str] = []
        for record in records:
            for key in record:
                if key not in columns:
                    columns.append(key)
        return cls(
            columns=columns,
            rows=[{c: record.get(c) for c in columns} for record in records],
        )

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.rows)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def to_records(self) -> list[dict[str, Any]]:
        """Rows as fresh dicts in column order."""
        return [{c: row.get(c) for c in self.columns} for row in self.rows]


class CancellationToken:
    """Run-level cancellation signal.

    The caller keeps a reference and calls cancel(); the engine stops the
    running step and starts no further steps.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancel() is called."""
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the token was cancelled during (or before) the sleep.
        """
        if self.is_cancelled:
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class WorkflowContext:
    """Shared context passed through one workflow run.

    Holds named variables, named tables and run metadata.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    tables: dict[str, Table] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    def get_variable(self, key: str, default: Any = None) -> Any:
        """Get a workflow variable."""
        return self.variables.get(key, default)

    def set_variable(self, key: str, value: Any) -> None:
        """Set a workflow variable."""
        self.variables[key] = value

    def get_table(self, key: str) -> Optional[Table]:
        """Get a table stored by a previous step."""
        return self.tables.get(key)

    def set_table(self, key: str, table: Table) -> None:
        """Store a table for later steps."""
        self.tables[key] = table
