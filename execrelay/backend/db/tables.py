"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema.  Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class ExecutionRow(Base):
    __tablename__ = "executions"
    __table_args__ = (
        Index("ix_executions_task_handle", "task_handle"),
        Index("ix_executions_status", "status"),
    )

    execution_id: Mapped[str] = mapped_column(primary_key=True)
    user_email: Mapped[str]
    command: Mapped[str] = mapped_column(Text, nullable=False)
    image: Mapped[str | None]
    compute_platform: Mapped[str] = mapped_column(server_default="ECS")
    task_handle: Mapped[str]
    request_id: Mapped[str | None]
    modified_by_request_id: Mapped[str | None]

    status: Mapped[str] = mapped_column(server_default="STARTING")
    started_at: Mapped[datetime] = mapped_column(TimestampTZ, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    exit_code: Mapped[int | None]
    duration_seconds: Mapped[int | None]
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())
