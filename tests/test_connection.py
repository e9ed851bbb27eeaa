"""Tests for ConnectionHandle lifecycle and exclusive leasing."""
from unittest.mock import MagicMock, patch

import pytest

from sqlaccess.errors import ConnectionError
from sqlaccess.infra.db.connection import ConnectionHandle, ConnectionState
from sqlaccess.infra.db.connection_factory import get_connection, register

from .conftest import CONNECTION_STRING, FakeDriverError


@pytest.fixture
def handle(fake_db):
    return ConnectionHandle(CONNECTION_STRING, connector=fake_db.connect)


class TestOpenClose:
    def test_starts_closed_and_get_does_not_open(self, handle, fake_db):
        assert handle.state is ConnectionState.CLOSED
        assert handle.get() is None
        assert fake_db.connections == []

    def test_double_open_is_noop(self, handle, fake_db):
        handle.open()
        first = handle.get()
        handle.open()
        assert handle.state is ConnectionState.OPEN
        assert handle.get() is first
        assert len(fake_db.connections) == 1

    def test_close_on_closed_is_noop(self, handle, fake_db):
        handle.close()
        assert handle.state is ConnectionState.CLOSED
        assert fake_db.connections == []

    def test_close_then_reopen(self, handle, fake_db):
        handle.open()
        handle.close()
        assert fake_db.connections[0].closed
        handle.open()
        assert handle.state is ConnectionState.OPEN
        assert len(fake_db.connections) == 2

    def test_open_failure_wraps_cause(self, handle, fake_db):
        fake_db.connect_error = FakeDriverError("08001", "server not found")
        with pytest.raises(ConnectionError) as info:
            handle.open()
        assert info.value.cause is fake_db.connect_error
        assert handle.state is ConnectionState.CLOSED

    def test_close_failure_wraps_cause(self, handle, fake_db):
        handle.open()
        cause = FakeDriverError("08S01", "link failure")
        fake_db.connections[0].close = MagicMock(side_effect=cause)
        with pytest.raises(ConnectionError) as info:
            handle.close()
        assert info.value.cause is cause
        assert handle.state is ConnectionState.CLOSED


class TestDispose:
    def test_dispose_is_idempotent_and_releases_once(self, handle, fake_db):
        handle.open()
        conn = fake_db.connections[0]
        conn.close = MagicMock()
        handle.dispose()
        handle.dispose()
        conn.close.assert_called_once()
        assert handle.state is ConnectionState.DISPOSED

    @pytest.mark.parametrize("operation", ["open", "close", "get", "spawn", "lease"])
    def test_operations_after_dispose_fail_predictably(self, handle, operation):
        handle.dispose()
        with pytest.raises(ConnectionError, match="disposed"):
            getattr(handle, operation)()

    def test_context_manager_disposes_on_error(self, handle):
        with pytest.raises(RuntimeError):
            with handle:
                handle.open()
                raise RuntimeError("caller failure")
        assert handle.state is ConnectionState.DISPOSED

    def test_dispose_logs_close_errors(self, handle, fake_db):
        handle.open()
        fake_db.connections[0].close = MagicMock(side_effect=FakeDriverError("08S01", "gone"))
        with patch("sqlaccess.infra.db.connection.logging") as mock_logging:
            handle.dispose()
        mock_logging.warning.assert_called_once()
        assert handle.state is ConnectionState.DISPOSED


class TestLease:
    def test_second_lease_is_rejected(self, handle):
        lease = handle.lease()
        assert handle.in_use
        with pytest.raises(ConnectionError, match="already in use"):
            handle.lease()
        lease.release()
        lease.release()
        assert not handle.in_use
        handle.lease().release()

    def test_borrow_releases_on_error(self, handle):
        with pytest.raises(ValueError):
            with handle.borrow():
                raise ValueError("x")
        assert not handle.in_use


class TestSpawn:
    def test_dedicated_connection_leaves_handle_closed(self, handle, fake_db):
        db = handle.spawn()
        assert handle.state is ConnectionState.CLOSED
        assert db.raw is fake_db.connections[0]


class TestFactory:
    def test_registered_alias(self):
        register("reporting", CONNECTION_STRING)
        handle = get_connection("reporting")
        assert handle.connection_string == CONNECTION_STRING
        assert handle.state is ConnectionState.CLOSED

    def test_unknown_alias(self):
        with pytest.raises(KeyError, match="No connection defined"):
            get_connection("nope")

    def test_default_requires_configuration(self):
        with patch("sqlaccess.config.env.config.CONNECTION_STRING", None):
            with pytest.raises(ValueError, match="SQLACCESS_CONNECTION_STRING"):
                get_connection()
