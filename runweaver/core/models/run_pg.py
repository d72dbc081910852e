"""SQLAlchemy models for run persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from runweaver.core.types.status import RunStatus, TaskRunStatus


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for PostgreSQL models"""

    pass


class DefinitionModel(Base):
    """
    Workflow definitions.

    - nodes: [{id, name, task_spec, settings, params}, ...]
    - connections: [{id, source_node_id, target_node_id, source_output_port, target_input_port}, ...]
    """

    __tablename__ = 'runweaver_definitions'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    team_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    nodes: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)
    connections: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )


class RunModel(Base):
    """One row per workflow run. `status` is a materialized view of its task runs."""

    __tablename__ = 'runweaver_runs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    definition_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey('runweaver_definitions.id', ondelete='RESTRICT'),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[RunStatus] = mapped_column(
        SQLAlchemyEnum(RunStatus, native_enum=False),
        nullable=False,
        default=RunStatus.PENDING,
        index=True,
    )
    output_artifact_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String(36)), nullable=False, server_default=text("'{}'"),
    )
    # Definition as started; the definitions row may be overwritten later
    definition_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stopped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class TaskRunModel(Base):
    """
    One row per (run, node) execution.

    - input_artifact_ids: {"port": ["artifact-id", ...], ...}
    - output_artifact_ids: artifact ids produced on completion
    """

    __tablename__ = 'runweaver_task_runs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    run_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey('runweaver_runs.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[TaskRunStatus] = mapped_column(
        SQLAlchemyEnum(TaskRunStatus, native_enum=False),
        nullable=False,
        default=TaskRunStatus.PENDING,
        index=True,
    )
    input_artifact_ids: Mapped[dict[str, list[str]]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb"),
    )
    output_artifact_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String(36)), nullable=False, server_default=text("'{}'"),
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stopped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # At most one task run per node per run
    __table_args__ = (
        UniqueConstraint('run_id', 'node_id', name='uq_runweaver_task_run_node'),
    )


class ArtifactModel(Base):
    """Artifacts are immutable once written; content is stored as JSON."""

    __tablename__ = 'runweaver_artifacts'
    __table_args__ = (
        Index('idx_runweaver_artifacts_task_run', 'task_run_id'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    port: Mapped[str] = mapped_column(String(128), nullable=False, default='default')
    task_run_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    content: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text('NOW()'),
    )
