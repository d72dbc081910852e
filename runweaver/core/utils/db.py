# runweaver/core/utils/db.py
"""Classification of transient database errors for the PostgreSQL backend."""

from __future__ import annotations

from psycopg import InterfaceError, OperationalError
from sqlalchemy.exc import DBAPIError, OperationalError as SAOperationalError


def is_retryable_connection_error(exc: BaseException) -> bool:
    """Whether exc is a dropped/refused connection rather than a query error.

    Lock and store callers surface these as retryable: the orchestrator
    operations are idempotent, so the whole call can be repeated.
    """
    match exc:
        case OperationalError() | InterfaceError() | SAOperationalError():
            return True
        case DBAPIError() as db_exc:
            return bool(
                getattr(db_exc, 'connection_invalidated', False)
                or getattr(db_exc, 'is_disconnect', False)
            )
        case _:
            return False
