"""Integration test fixtures: PostgreSQL backend, stores and advisory lock."""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text

from runweaver.core.models.config import OrchestratorConfig, PostgresConfig
from runweaver.core.storage.postgres import (
    PostgresArtifactStore,
    PostgresBackend,
    PostgresDefinitionStore,
    PostgresRunStore,
)
from runweaver.core.workflows.engine import Orchestrator

from tests.helpers.executor import RecordingExecutor


def _db_url() -> str | None:
    password = os.environ.get('DB_PASSWORD')
    if not password:
        return None
    host = os.environ.get('DB_HOST', 'localhost')
    name = os.environ.get('DB_NAME', 'runweaver')
    return f'postgresql+psycopg://postgres:{password}@{host}:5432/{name}'


@pytest.fixture(scope='session')
def db_url() -> str:
    """Database connection URL; integration tests skip without DB_PASSWORD."""
    url = _db_url()
    if url is None:
        pytest.skip('DB_PASSWORD not set (see .env.test)')
    return url


@pytest_asyncio.fixture
async def backend(db_url: str) -> AsyncGenerator[PostgresBackend, None]:
    """PostgresBackend with schema initialized and tables emptied."""
    pg = PostgresBackend(PostgresConfig(database_url=db_url, pool_size=5))
    await pg.ensure_schema_initialized()
    async with pg.session_factory() as session:
        await session.execute(
            text(
                'TRUNCATE runweaver_artifacts, runweaver_task_runs, '
                'runweaver_runs, runweaver_definitions CASCADE'
            )
        )
        await session.commit()
    yield pg
    await pg.close_async()


@pytest.fixture
def run_store(backend: PostgresBackend) -> PostgresRunStore:
    return backend.run_store()


@pytest.fixture
def artifact_store(backend: PostgresBackend) -> PostgresArtifactStore:
    return backend.artifact_store()


@pytest.fixture
def definition_store(backend: PostgresBackend) -> PostgresDefinitionStore:
    return backend.definition_store()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def orchestrator(
    backend: PostgresBackend,
    executor: RecordingExecutor,
) -> Orchestrator:
    """Orchestrator wired entirely to PostgreSQL; the run lock follows the run store."""
    config = OrchestratorConfig(lock_timeout_ms=5_000, lock_poll_interval_ms=10)
    return Orchestrator(
        definitions=backend.definition_store(),
        runs=backend.run_store(),
        artifacts=backend.artifact_store(),
        executor=executor,
        config=config,
    )
