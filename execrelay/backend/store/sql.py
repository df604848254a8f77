"""PostgreSQL execution repository.

Each method opens its own short session from the factory; conditional
updates are a single ``UPDATE ... WHERE status IN (...)`` so the check and
the write cannot interleave with another invocation.
"""

from __future__ import annotations

from collections.abc import Collection

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from execrelay.backend.db.tables import ExecutionRow
from execrelay.backend.models.enums import ExecutionStatus
from execrelay.backend.models.execution import Execution

# Columns a service is allowed to change after creation.
_MUTABLE_FIELDS = (
    "status",
    "completed_at",
    "exit_code",
    "duration_seconds",
    "modified_by_request_id",
)


def _to_row(execution: Execution) -> ExecutionRow:
    data = execution.model_dump()
    data["status"] = str(execution.status)
    data["compute_platform"] = str(execution.compute_platform)
    return ExecutionRow(**data)


def _from_row(row: ExecutionRow) -> Execution:
    return Execution.model_validate(row)


class SqlExecutionRepository:
    """ExecutionRepository backed by the ``executions`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_execution(self, execution: Execution) -> None:
        async with self._session_factory() as db:
            db.add(_to_row(execution))
            try:
                await db.commit()
            except IntegrityError as e:
                msg = f"Execution '{execution.execution_id}' already exists"
                raise ValueError(msg) from e

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._session_factory() as db:
            row = await db.get(ExecutionRow, execution_id)
            return _from_row(row) if row else None

    async def get_execution_by_task_handle(self, task_handle: str) -> Execution | None:
        async with self._session_factory() as db:
            result = await db.execute(select(ExecutionRow).where(ExecutionRow.task_handle == task_handle).limit(1))
            row = result.scalar_one_or_none()
            return _from_row(row) if row else None

    async def update_execution(
        self,
        execution: Execution,
        *,
        expected_statuses: Collection[ExecutionStatus] | None = None,
    ) -> bool:
        values = {name: getattr(execution, name) for name in _MUTABLE_FIELDS}
        values["status"] = str(execution.status)

        stmt = update(ExecutionRow).where(ExecutionRow.execution_id == execution.execution_id)
        if expected_statuses is not None:
            stmt = stmt.where(ExecutionRow.status.in_([str(s) for s in expected_statuses]))
        stmt = stmt.values(**values)

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            if result.rowcount == 0:
                exists = await db.get(ExecutionRow, execution.execution_id)
                await db.rollback()
                if exists is None:
                    raise LookupError(execution.execution_id)
                return False
            await db.commit()
            return True

    async def list_executions(self, statuses: Collection[ExecutionStatus] | None = None) -> list[Execution]:
        stmt = select(ExecutionRow)
        if statuses is not None:
            stmt = stmt.where(ExecutionRow.status.in_([str(s) for s in statuses]))
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [_from_row(row) for row in result.scalars().all()]
