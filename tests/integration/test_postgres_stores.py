"""Integration tests for the PostgreSQL run, artifact and definition stores."""

from __future__ import annotations

import pytest
import pytest_asyncio

from runweaver.core.errors import (
    DefinitionNotFoundError,
    DuplicateTaskRunError,
    RunNotFoundError,
    TaskRunNotFoundError,
)
from runweaver.core.models.run import Artifact, Run, TaskRun
from runweaver.core.storage.postgres import (
    PostgresArtifactStore,
    PostgresDefinitionStore,
    PostgresRunStore,
)
from runweaver.core.types.status import RunStatus, TaskRunStatus

from tests.helpers.graphs import diamond, make_definition

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope='function')]


@pytest_asyncio.fixture(autouse=True)
async def _definitions(definition_store: PostgresDefinitionStore) -> None:
    """Runs reference their definition by foreign key."""
    await definition_store.save_definition(diamond())
    await definition_store.save_definition(make_definition(['A'], [], name='d'))


async def test_definition_upsert_and_load(definition_store: PostgresDefinitionStore) -> None:
    definition = make_definition(
        ['A', 'B'], [('A', 'B', 'rows', 'input')], name='etl'
    )
    await definition_store.save_definition(definition)
    assert await definition_store.get_definition('etl') == definition

    renamed = make_definition(['A'], [], name='etl')
    await definition_store.save_definition(renamed)
    assert await definition_store.get_definition('etl') == renamed

    with pytest.raises(DefinitionNotFoundError):
        await definition_store.get_definition('missing')


async def test_run_round_trip(run_store: PostgresRunStore) -> None:
    run = await run_store.create_run(Run(definition_id='diamond', name='diamond'))

    run.status = RunStatus.RUNNING
    run.output_artifact_ids = ['a1', 'a2']
    await run_store.save_run(run)

    loaded = await run_store.get_run(run.id)
    assert loaded.status == RunStatus.RUNNING
    assert loaded.output_artifact_ids == ['a1', 'a2']

    with pytest.raises(RunNotFoundError):
        await run_store.get_run('missing')
    with pytest.raises(RunNotFoundError):
        await run_store.save_run(Run(definition_id='d', name='ghost'))


async def test_one_task_run_per_node(run_store: PostgresRunStore) -> None:
    run = await run_store.create_run(Run(definition_id='d', name='d'))
    first = await run_store.create_task_run(
        TaskRun(run_id=run.id, node_id='A', input_artifact_ids={'default': ['x']})
    )

    with pytest.raises(DuplicateTaskRunError):
        await run_store.create_task_run(TaskRun(run_id=run.id, node_id='A'))

    found = await run_store.find_task_run(run.id, 'A')
    assert found is not None
    assert found.id == first.id
    assert found.input_artifact_ids == {'default': ['x']}
    assert await run_store.find_task_run(run.id, 'B') is None


async def test_finish_is_compare_and_set(run_store: PostgresRunStore) -> None:
    run = await run_store.create_run(Run(definition_id='d', name='d'))
    task_run = await run_store.create_task_run(TaskRun(run_id=run.id, node_id='A'))
    task_run.mark(TaskRunStatus.RUNNING)
    await run_store.update_task_run(task_run)

    finished = await run_store.finish_task_run(task_run.id, TaskRunStatus.COMPLETED, ['out-1'])
    assert finished is not None
    assert finished.status == TaskRunStatus.COMPLETED
    assert finished.output_artifact_ids == ['out-1']
    assert finished.completed_at is not None
    assert finished.failed_at is None

    assert await run_store.finish_task_run(task_run.id, TaskRunStatus.FAILED) is None
    assert (await run_store.get_task_run(task_run.id)).status == TaskRunStatus.COMPLETED

    with pytest.raises(TaskRunNotFoundError):
        await run_store.finish_task_run('missing', TaskRunStatus.FAILED)


async def test_stopped_task_run_cannot_finish(run_store: PostgresRunStore) -> None:
    run = await run_store.create_run(Run(definition_id='d', name='d'))
    task_run = await run_store.create_task_run(TaskRun(run_id=run.id, node_id='A'))
    task_run.mark(TaskRunStatus.STOPPED)
    await run_store.update_task_run(task_run)

    assert await run_store.finish_task_run(task_run.id, TaskRunStatus.COMPLETED) is None


async def test_list_task_runs_in_creation_order(run_store: PostgresRunStore) -> None:
    run = await run_store.create_run(Run(definition_id='diamond', name='d'))
    for node in diamond().nodes:
        await run_store.create_task_run(TaskRun(run_id=run.id, node_id=node.id))

    listed = await run_store.list_task_runs(run.id)
    assert [tr.node_id for tr in listed] == ['A', 'B', 'C', 'D']


async def test_artifacts(artifact_store: PostgresArtifactStore) -> None:
    report = Artifact(
        name='report.md',
        port='report',
        task_run_id='tr-1',
        content={'title': 'Q3', 'pages': 4},
        meta={'mime': 'text/markdown'},
    )
    log = Artifact(name='log.txt', task_run_id='tr-1', content='ok')
    await artifact_store.save_artifacts([report, log])

    fetched = await artifact_store.get_artifacts([log.id, 'unknown', report.id])
    assert [a.name for a in fetched] == ['log.txt', 'report.md']
    assert fetched[1].content == {'title': 'Q3', 'pages': 4}
    assert fetched[1].port == 'report'

    listed = await artifact_store.list_for_task_run('tr-1')
    assert {a.id for a in listed} == {report.id, log.id}
    assert await artifact_store.get_artifacts([]) == []
