# runweaver/core/storage/postgres.py
from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from runweaver.core.logging import get_logger
from runweaver.core.models.config import PostgresConfig
from runweaver.core.models.graph import WorkflowDefinition
from runweaver.core.models.run import Artifact, Run, TaskRun, utcnow
from runweaver.core.models.run_pg import Base
from runweaver.core.storage import sql
from runweaver.core.storage.base import (
    definition_not_found,
    duplicate_task_run,
    require_terminal,
    run_not_found,
    task_run_not_found,
)
from runweaver.core.types.status import (
    TASK_RUN_ACTIVE_VALUES,
    RunStatus,
    TaskRunStatus,
)
from runweaver.core.utils.url import mask_database_url


class PostgresBackend:
    """
    Owns the async engine and session factory shared by the PostgreSQL stores
    and PostgresRunLock.

    Schema creation is idempotent and serialized across processes with a
    transaction-scoped advisory lock.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.logger = get_logger('storage')

        engine_cfg = self.config.model_dump(exclude={'database_url'}, exclude_none=True)
        self.async_engine: AsyncEngine = create_async_engine(
            self.config.database_url, **engine_cfg
        )
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._initialized = False

        self.logger.info(
            f'PostgresBackend initialized for {mask_database_url(self.config.database_url)}'
        )

    def _schema_advisory_key(self) -> int:
        basis = self.config.database_url.encode('utf-8', errors='ignore')
        digest = hashlib.sha256(b'runweaver-schema:' + basis).digest()
        return int.from_bytes(digest[:8], byteorder='big', signed=True)

    async def ensure_schema_initialized(self) -> None:
        """Create tables if missing. Safe to call from many processes at once."""
        if self._initialized:
            return
        async with self.async_engine.begin() as conn:
            await conn.execute(
                sql.SCHEMA_ADVISORY_LOCK_SQL, {'key': self._schema_advisory_key()},
            )
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        self.logger.debug('schema initialized')

    async def close_async(self) -> None:
        await self.async_engine.dispose()
        self.logger.info('PostgresBackend closed')

    def run_store(self) -> PostgresRunStore:
        return PostgresRunStore(self)

    def artifact_store(self) -> PostgresArtifactStore:
        return PostgresArtifactStore(self)

    def definition_store(self) -> PostgresDefinitionStore:
        return PostgresDefinitionStore(self)


# ----------------------------------------------------------------- row mapping


def _run_params(run: Run) -> dict[str, Any]:
    return {
        'id': run.id,
        'definition_id': run.definition_id,
        'name': run.name,
        'status': run.status.value,
        'output_artifact_ids': list(run.output_artifact_ids),
        'definition_snapshot': (
            json.dumps(run.definition.to_dict()) if run.definition is not None else None
        ),
        'created_at': run.created_at,
        'started_at': run.started_at,
        'stopped_at': run.stopped_at,
        'completed_at': run.completed_at,
        'failed_at': run.failed_at,
    }


def _run_from_row(row: Mapping[str, Any]) -> Run:
    snapshot = row['definition_snapshot']
    return Run(
        id=row['id'],
        definition_id=row['definition_id'],
        name=row['name'],
        status=RunStatus(row['status']),
        output_artifact_ids=list(row['output_artifact_ids'] or []),
        definition=WorkflowDefinition.from_dict(snapshot) if snapshot else None,
        created_at=row['created_at'],
        started_at=row['started_at'],
        stopped_at=row['stopped_at'],
        completed_at=row['completed_at'],
        failed_at=row['failed_at'],
    )


def _task_run_params(task_run: TaskRun) -> dict[str, Any]:
    return {
        'id': task_run.id,
        'run_id': task_run.run_id,
        'node_id': task_run.node_id,
        'status': task_run.status.value,
        'input_artifact_ids': json.dumps(task_run.input_artifact_ids),
        'output_artifact_ids': list(task_run.output_artifact_ids),
        'error': task_run.error,
        'meta': json.dumps(task_run.meta),
        'created_at': task_run.created_at,
        'started_at': task_run.started_at,
        'stopped_at': task_run.stopped_at,
        'completed_at': task_run.completed_at,
        'failed_at': task_run.failed_at,
    }


def _task_run_from_row(row: Mapping[str, Any]) -> TaskRun:
    return TaskRun(
        id=row['id'],
        run_id=row['run_id'],
        node_id=row['node_id'],
        status=TaskRunStatus(row['status']),
        input_artifact_ids={
            port: list(ids) for port, ids in (row['input_artifact_ids'] or {}).items()
        },
        output_artifact_ids=list(row['output_artifact_ids'] or []),
        error=row['error'],
        meta=dict(row['meta'] or {}),
        created_at=row['created_at'],
        started_at=row['started_at'],
        stopped_at=row['stopped_at'],
        completed_at=row['completed_at'],
        failed_at=row['failed_at'],
    )


def _artifact_from_row(row: Mapping[str, Any]) -> Artifact:
    return Artifact(
        id=row['id'],
        name=row['name'],
        port=row['port'],
        task_run_id=row['task_run_id'],
        content=row['content'],
        meta=dict(row['meta'] or {}),
        created_at=row['created_at'],
    )


# ---------------------------------------------------------------------- stores


class PostgresRunStore:
    def __init__(self, backend: PostgresBackend):
        self.backend = backend

    async def create_run(self, run: Run) -> Run:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            await session.execute(sql.INSERT_RUN_SQL, _run_params(run))
            await session.commit()
        return run.copy()

    async def get_run(self, run_id: str) -> Run:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.GET_RUN_SQL, {'id': run_id})
            row = result.mappings().fetchone()
        if row is None:
            raise run_not_found(run_id)
        return _run_from_row(row)

    async def save_run(self, run: Run) -> None:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.UPDATE_RUN_SQL, _run_params(run))
            updated = result.fetchone()
            await session.commit()
        if updated is None:
            raise run_not_found(run.id)

    async def create_task_run(self, task_run: TaskRun) -> TaskRun:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(
                sql.INSERT_TASK_RUN_SQL, _task_run_params(task_run)
            )
            inserted = result.fetchone()
            await session.commit()
        if inserted is None:
            raise duplicate_task_run(task_run.run_id, task_run.node_id)
        return task_run.copy()

    async def get_task_run(self, task_run_id: str) -> TaskRun:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.GET_TASK_RUN_SQL, {'id': task_run_id})
            row = result.mappings().fetchone()
        if row is None:
            raise task_run_not_found(task_run_id)
        return _task_run_from_row(row)

    async def find_task_run(self, run_id: str, node_id: str) -> TaskRun | None:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(
                sql.FIND_TASK_RUN_SQL, {'run_id': run_id, 'node_id': node_id},
            )
            row = result.mappings().fetchone()
        return _task_run_from_row(row) if row is not None else None

    async def list_task_runs(self, run_id: str) -> list[TaskRun]:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.LIST_TASK_RUNS_SQL, {'run_id': run_id})
            rows = result.mappings().fetchall()
        return [_task_run_from_row(row) for row in rows]

    async def update_task_run(self, task_run: TaskRun) -> None:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(
                sql.UPDATE_TASK_RUN_SQL, _task_run_params(task_run)
            )
            updated = result.fetchone()
            await session.commit()
        if updated is None:
            raise task_run_not_found(task_run.id)

    async def finish_task_run(
        self,
        task_run_id: str,
        status: TaskRunStatus,
        output_artifact_ids: Sequence[str] = (),
        error: str | None = None,
    ) -> TaskRun | None:
        require_terminal(status)
        await self.backend.ensure_schema_initialized()
        now = utcnow()
        params = {
            'id': task_run_id,
            'status': status.value,
            'output_artifact_ids': list(output_artifact_ids),
            'error': error,
            'completed_at': now if status != TaskRunStatus.FAILED else None,
            'failed_at': now if status == TaskRunStatus.FAILED else None,
            'active_statuses': TASK_RUN_ACTIVE_VALUES,
        }
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.FINISH_TASK_RUN_SQL, params)
            row = result.mappings().fetchone()
            if row is None:
                exists = await session.execute(
                    sql.TASK_RUN_EXISTS_SQL, {'id': task_run_id}
                )
                if exists.fetchone() is None:
                    raise task_run_not_found(task_run_id)
                return None
            await session.commit()
        return _task_run_from_row(row)


class PostgresArtifactStore:
    def __init__(self, backend: PostgresBackend):
        self.backend = backend

    async def save_artifacts(self, artifacts: Sequence[Artifact]) -> None:
        if not artifacts:
            return
        await self.backend.ensure_schema_initialized()
        params = [
            {
                'id': a.id,
                'name': a.name,
                'port': a.port,
                'task_run_id': a.task_run_id,
                'content': json.dumps(a.content),
                'meta': json.dumps(a.meta),
                'created_at': a.created_at,
            }
            for a in artifacts
        ]
        async with self.backend.session_factory() as session:
            await session.execute(sql.UPSERT_ARTIFACT_SQL, params)
            await session.commit()

    async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[Artifact]:
        if not artifact_ids:
            return []
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(
                sql.GET_ARTIFACTS_SQL, {'ids': list(artifact_ids)}
            )
            by_id = {row['id']: _artifact_from_row(row) for row in result.mappings()}
        return [by_id[i] for i in artifact_ids if i in by_id]

    async def list_for_task_run(self, task_run_id: str) -> list[Artifact]:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(
                sql.LIST_TASK_RUN_ARTIFACTS_SQL, {'task_run_id': task_run_id}
            )
            return [_artifact_from_row(row) for row in result.mappings()]


class PostgresDefinitionStore:
    def __init__(self, backend: PostgresBackend):
        self.backend = backend

    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        await self.backend.ensure_schema_initialized()
        async with self.backend.session_factory() as session:
            result = await session.execute(sql.GET_DEFINITION_SQL, {'id': definition_id})
            row = result.mappings().fetchone()
        if row is None:
            raise definition_not_found(definition_id)
        return WorkflowDefinition.from_dict(row)

    async def save_definition(self, definition: WorkflowDefinition) -> None:
        await self.backend.ensure_schema_initialized()
        data = definition.to_dict()
        params = {
            **data,
            'nodes': json.dumps(data['nodes']),
            'connections': json.dumps(data['connections']),
        }
        async with self.backend.session_factory() as session:
            await session.execute(sql.UPSERT_DEFINITION_SQL, params)
            await session.commit()
