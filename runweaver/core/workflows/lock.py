"""
Per-run mutual exclusion.

Every orchestrator operation that reads and mutates a run's state does so
while holding that run's lock. Locks for different runs never contend.

Locks are not reentrant: asking for a run's lock from the asyncio task that
already holds it raises LockReentryError instead of deadlocking. Code that
already holds the lock calls the orchestrator's `_locked` variants.
"""

from __future__ import annotations

import asyncio
import hashlib
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from runweaver.core.defaults import DEFAULT_LOCK_POLL_INTERVAL_MS, DEFAULT_LOCK_TIMEOUT_MS
from runweaver.core.errors import (
    ErrorCode,
    LockReentryError,
    LockTimeoutError,
    RunLockError,
)
from runweaver.core.logging import get_logger
from runweaver.core.storage import sql
from runweaver.core.storage.postgres import PostgresBackend
from runweaver.core.utils.db import is_retryable_connection_error

T = TypeVar('T')

logger = get_logger('lock')


class RunLock(Protocol):
    def hold(self, run_id: str) -> AbstractAsyncContextManager[None]:
        """Async context manager granting exclusive access to `run_id`."""
        ...

    def is_held(self, run_id: str) -> bool:
        """Whether the current asyncio task holds the lock for `run_id`."""
        ...


async def with_run_lock(lock: RunLock, run_id: str, fn: Callable[[], Awaitable[T]]) -> T:
    """Run `fn` while holding the lock for `run_id`."""
    async with lock.hold(run_id):
        return await fn()


def _reentry_error(run_id: str) -> LockReentryError:
    return LockReentryError(
        message=f"run lock for '{run_id}' is already held by the current task",
        code=ErrorCode.LOCK_REENTRY,
        run_id=run_id,
        help_text='call the _locked variant from code that already holds the lock',
    )


def _timeout_error(run_id: str, timeout_ms: int) -> LockTimeoutError:
    return LockTimeoutError(
        message=f"timed out after {timeout_ms}ms waiting for run lock '{run_id}'",
        code=ErrorCode.LOCK_TIMEOUT,
        run_id=run_id,
        help_text='orchestrator operations are idempotent; retry the call',
    )


# ---------------------------------------------------------------- in-process


@dataclass
class _LocalEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0
    owner: asyncio.Task[object] | None = None


class LocalRunLock:
    """
    asyncio.Lock per run id, for orchestrators confined to one event loop.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the registry only grows with concurrently active runs.
    """

    def __init__(self, timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> None:
        self.timeout_ms = timeout_ms
        self._entries: dict[str, _LocalEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, run_id: str) -> bool:
        entry = self._entries.get(run_id)
        return entry is not None and entry.lock.locked()

    def is_held(self, run_id: str) -> bool:
        entry = self._entries.get(run_id)
        current = asyncio.current_task()
        return entry is not None and current is not None and entry.owner is current

    @asynccontextmanager
    async def hold(self, run_id: str) -> AsyncIterator[None]:
        if self.is_held(run_id):
            raise _reentry_error(run_id)

        current = asyncio.current_task()
        entry = self._entries.get(run_id)
        if entry is None:
            entry = self._entries[run_id] = _LocalEntry()
        entry.refs += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), self.timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise _timeout_error(run_id, self.timeout_ms) from None
            entry.owner = current
            try:
                yield
            finally:
                entry.owner = None
                entry.lock.release()
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(run_id) is entry:
                del self._entries[run_id]


# ---------------------------------------------------------------- PostgreSQL


def run_lock_key(run_id: str) -> int:
    """Stable signed 64-bit advisory lock key for a run."""
    digest = hashlib.sha256(f'runweaver-run:{run_id}'.encode('utf-8')).digest()
    return int.from_bytes(digest[:8], byteorder='big', signed=True)


class PostgresRunLock:
    """
    Session-level PostgreSQL advisory lock per run id.

    Serializes orchestrators in different processes that share a database.
    Each hold() checks out a dedicated connection, polls
    pg_try_advisory_lock until `timeout_ms`, and unlocks before returning
    the connection to the pool.
    """

    def __init__(
        self,
        backend: PostgresBackend,
        timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
        poll_interval_ms: int = DEFAULT_LOCK_POLL_INTERVAL_MS,
    ) -> None:
        self.backend = backend
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self._owners: dict[str, asyncio.Task[object]] = {}

    def is_held(self, run_id: str) -> bool:
        current = asyncio.current_task()
        return current is not None and self._owners.get(run_id) is current

    def _backend_error(self, run_id: str, exc: SQLAlchemyError) -> RunLockError:
        retryable = is_retryable_connection_error(exc)
        logger.error(
            f"advisory lock for run '{run_id}' failed "
            f'({"transient" if retryable else "permanent"}): {exc}'
        )
        return RunLockError(
            message=f"run lock backend failed for '{run_id}'",
            code=ErrorCode.LOCK_BACKEND_FAILED,
            run_id=run_id,
            notes=[f'{type(exc).__name__}: {exc}'],
            help_text='retry the call' if retryable else None,
        )

    async def _acquire(self, run_id: str, key: int) -> AsyncConnection:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_ms / 1000
        try:
            conn = await self.backend.async_engine.connect()
        except SQLAlchemyError as exc:
            raise self._backend_error(run_id, exc) from exc
        try:
            while True:
                result = await conn.execute(sql.TRY_RUN_LOCK_SQL, {'key': key})
                acquired = bool(result.scalar())
                await conn.commit()
                if acquired:
                    return conn
                if loop.time() >= deadline:
                    raise _timeout_error(run_id, self.timeout_ms)
                await asyncio.sleep(self.poll_interval_ms / 1000)
        except SQLAlchemyError as exc:
            await conn.close()
            raise self._backend_error(run_id, exc) from exc
        except BaseException:
            await conn.close()
            raise

    async def _release(self, conn: AsyncConnection, run_id: str, key: int) -> None:
        try:
            await conn.execute(sql.RELEASE_RUN_LOCK_SQL, {'key': key})
            await conn.commit()
        except SQLAlchemyError as exc:
            # A pooled session would keep the advisory lock; drop the connection
            logger.warning(f"failed to unlock run '{run_id}', invalidating connection: {exc}")
            await conn.invalidate()
        finally:
            await conn.close()

    @asynccontextmanager
    async def hold(self, run_id: str) -> AsyncIterator[None]:
        if self.is_held(run_id):
            raise _reentry_error(run_id)

        current = asyncio.current_task()
        key = run_lock_key(run_id)
        conn = await self._acquire(run_id, key)
        if current is not None:
            self._owners[run_id] = current
        try:
            yield
        finally:
            if current is not None and self._owners.get(run_id) is current:
                del self._owners[run_id]
            await self._release(conn, run_id, key)
