"""SQL constants for the PostgreSQL stores and run lock."""

from __future__ import annotations

from sqlalchemy import text

# -- schema --

SCHEMA_ADVISORY_LOCK_SQL = text('SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))')

# -- definitions --

UPSERT_DEFINITION_SQL = text("""
    INSERT INTO runweaver_definitions (id, name, team_id, nodes, connections, created_at)
    VALUES (:id, :name, :team_id, CAST(:nodes AS JSONB), CAST(:connections AS JSONB), NOW())
    ON CONFLICT (id) DO UPDATE
    SET name = EXCLUDED.name,
        team_id = EXCLUDED.team_id,
        nodes = EXCLUDED.nodes,
        connections = EXCLUDED.connections
""")
GET_DEFINITION_SQL = text("""
    SELECT id, name, team_id, nodes, connections
    FROM runweaver_definitions
    WHERE id = :id
""")

# -- runs --

_RUN_COLUMNS = """id, definition_id, name, status, output_artifact_ids, definition_snapshot,
       created_at, started_at, stopped_at, completed_at, failed_at"""

INSERT_RUN_SQL = text(f"""
    INSERT INTO runweaver_runs ({_RUN_COLUMNS})
    VALUES (:id, :definition_id, :name, :status, :output_artifact_ids,
            CAST(:definition_snapshot AS JSONB),
            :created_at, :started_at, :stopped_at, :completed_at, :failed_at)
""")
GET_RUN_SQL = text(f"""
    SELECT {_RUN_COLUMNS} FROM runweaver_runs WHERE id = :id
""")
UPDATE_RUN_SQL = text("""
    UPDATE runweaver_runs
    SET name = :name,
        status = :status,
        output_artifact_ids = :output_artifact_ids,
        started_at = :started_at,
        stopped_at = :stopped_at,
        completed_at = :completed_at,
        failed_at = :failed_at
    WHERE id = :id
    RETURNING id
""")

# -- task runs --

_TASK_RUN_COLUMNS = """id, run_id, node_id, status, input_artifact_ids,
       output_artifact_ids, error, meta,
       created_at, started_at, stopped_at, completed_at, failed_at"""

INSERT_TASK_RUN_SQL = text(f"""
    INSERT INTO runweaver_task_runs ({_TASK_RUN_COLUMNS})
    VALUES (:id, :run_id, :node_id, :status, CAST(:input_artifact_ids AS JSONB),
            :output_artifact_ids, :error, CAST(:meta AS JSONB),
            :created_at, :started_at, :stopped_at, :completed_at, :failed_at)
    ON CONFLICT ON CONSTRAINT uq_runweaver_task_run_node DO NOTHING
    RETURNING id
""")
GET_TASK_RUN_SQL = text(f"""
    SELECT {_TASK_RUN_COLUMNS} FROM runweaver_task_runs WHERE id = :id
""")
FIND_TASK_RUN_SQL = text(f"""
    SELECT {_TASK_RUN_COLUMNS} FROM runweaver_task_runs
    WHERE run_id = :run_id AND node_id = :node_id
""")
LIST_TASK_RUNS_SQL = text(f"""
    SELECT {_TASK_RUN_COLUMNS} FROM runweaver_task_runs
    WHERE run_id = :run_id
    ORDER BY created_at, id
""")
UPDATE_TASK_RUN_SQL = text("""
    UPDATE runweaver_task_runs
    SET status = :status,
        input_artifact_ids = CAST(:input_artifact_ids AS JSONB),
        output_artifact_ids = :output_artifact_ids,
        error = :error,
        meta = CAST(:meta AS JSONB),
        started_at = :started_at,
        stopped_at = :stopped_at,
        completed_at = :completed_at,
        failed_at = :failed_at
    WHERE id = :id
    RETURNING id
""")
# Only active task runs may finish; a stopped one must be resumed first.
FINISH_TASK_RUN_SQL = text(f"""
    UPDATE runweaver_task_runs
    SET status = :status,
        output_artifact_ids = :output_artifact_ids,
        error = :error,
        completed_at = COALESCE(CAST(:completed_at AS TIMESTAMPTZ), completed_at),
        failed_at = COALESCE(CAST(:failed_at AS TIMESTAMPTZ), failed_at)
    WHERE id = :id AND status = ANY(:active_statuses)
    RETURNING {_TASK_RUN_COLUMNS}
""")
TASK_RUN_EXISTS_SQL = text("""SELECT 1 FROM runweaver_task_runs WHERE id = :id""")

# -- artifacts --

UPSERT_ARTIFACT_SQL = text("""
    INSERT INTO runweaver_artifacts (id, name, port, task_run_id, content, meta, created_at)
    VALUES (:id, :name, :port, :task_run_id, CAST(:content AS JSONB), CAST(:meta AS JSONB), :created_at)
    ON CONFLICT (id) DO UPDATE
    SET name = EXCLUDED.name,
        port = EXCLUDED.port,
        task_run_id = EXCLUDED.task_run_id,
        content = EXCLUDED.content,
        meta = EXCLUDED.meta
""")
GET_ARTIFACTS_SQL = text("""
    SELECT id, name, port, task_run_id, content, meta, created_at
    FROM runweaver_artifacts
    WHERE id = ANY(:ids)
""")
LIST_TASK_RUN_ARTIFACTS_SQL = text("""
    SELECT id, name, port, task_run_id, content, meta, created_at
    FROM runweaver_artifacts
    WHERE task_run_id = :task_run_id
    ORDER BY created_at, id
""")

# -- run lock --

TRY_RUN_LOCK_SQL = text('SELECT pg_try_advisory_lock(CAST(:key AS BIGINT))')
RELEASE_RUN_LOCK_SQL = text('SELECT pg_advisory_unlock(CAST(:key AS BIGINT))')
