"""Unit tests for runweaver.core.utils.db error classification."""

from __future__ import annotations

import pytest

from psycopg import InterfaceError, OperationalError
from sqlalchemy.exc import DBAPIError, OperationalError as SAOperationalError

from runweaver.core.utils.db import is_retryable_connection_error


def _make_dbapi_error(
    *,
    connection_invalidated: bool = False,
    is_disconnect: bool = False,
) -> DBAPIError:
    exc = DBAPIError(
        statement='SELECT pg_try_advisory_lock(:key)',
        params=None,
        orig=Exception('test'),
        connection_invalidated=connection_invalidated,
    )
    if is_disconnect:
        exc.is_disconnect = is_disconnect  # type: ignore[reportAttributeAccessIssue]
    return exc


@pytest.mark.unit
class TestIsRetryableConnectionError:
    def test_psycopg_operational_error(self) -> None:
        assert is_retryable_connection_error(OperationalError('connection refused')) is True

    def test_psycopg_interface_error(self) -> None:
        assert is_retryable_connection_error(InterfaceError('broken pipe')) is True

    def test_sqlalchemy_operational_error(self) -> None:
        exc = SAOperationalError('lost connection', {}, Exception('orig'))
        assert is_retryable_connection_error(exc) is True

    def test_dbapi_error_with_invalidated_connection(self) -> None:
        assert is_retryable_connection_error(_make_dbapi_error(connection_invalidated=True)) is True

    def test_dbapi_error_with_is_disconnect_only(self) -> None:
        assert is_retryable_connection_error(_make_dbapi_error(is_disconnect=True)) is True

    def test_dbapi_error_without_disconnect(self) -> None:
        assert is_retryable_connection_error(_make_dbapi_error()) is False

    @pytest.mark.parametrize(
        'exc',
        [ValueError('bad value'), ConnectionRefusedError(), KeyboardInterrupt()],
    )
    def test_unrelated_exceptions_not_retryable(self, exc: BaseException) -> None:
        assert is_retryable_connection_error(exc) is False
