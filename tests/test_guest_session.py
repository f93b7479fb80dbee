"""Tests for guest readiness polling and domain join."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from core.errors import ProvisioningError
from core.guest_session import join_domain, wait_for_guest


def _connection_cm(conn):
    cm = MagicMock()
    cm.__aenter__.return_value = conn
    cm.__aexit__.return_value = False
    return cm


@pytest.fixture
def guest_conn():
    conn = MagicMock()
    conn.run = AsyncMock()
    return conn


@pytest.mark.asyncio
async def test_join_domain_runs_join_then_restart(guest_conn, credential):
    with patch("core.guest_session.asyncssh.connect", return_value=_connection_cm(guest_conn)) as mock_connect:
        await join_domain("web01", credential, "corp.example.com")

    kwargs = mock_connect.call_args.kwargs
    assert kwargs["host"] == "web01"
    assert kwargs["username"] == "admin"
    assert kwargs["password"] == "s3cret"

    join_call, restart_call = guest_conn.run.await_args_list
    assert join_call.args[0] == "realm join --user=admin corp.example.com"
    assert join_call.kwargs["input"] == "s3cret\n"
    assert join_call.kwargs["check"] is True
    assert restart_call.args[0] == "shutdown -r now"


@pytest.mark.asyncio
async def test_join_domain_tolerates_disconnect_on_restart(guest_conn, credential):
    guest_conn.run.side_effect = [MagicMock(), asyncssh.ConnectionLost("reset by peer")]

    with patch("core.guest_session.asyncssh.connect", return_value=_connection_cm(guest_conn)):
        await join_domain("web01", credential, "corp.example.com")

    assert guest_conn.run.await_count == 2


@pytest.mark.asyncio
async def test_join_domain_nonzero_exit_fails(guest_conn, credential):
    guest_conn.run.side_effect = asyncssh.ProcessError(
        env={},
        command="realm join",
        subsystem=None,
        exit_status=1,
        exit_signal=None,
        returncode=1,
        stdout="",
        stderr="realm: Couldn't join realm: Insufficient permissions\n",
    )

    with patch("core.guest_session.asyncssh.connect", return_value=_connection_cm(guest_conn)):
        with pytest.raises(ProvisioningError) as excinfo:
            await join_domain("web01", credential, "corp.example.com")

    assert excinfo.value.step == "join_domain"
    assert "Insufficient permissions" in str(excinfo.value)
    assert guest_conn.run.await_count == 1


@pytest.mark.asyncio
async def test_join_domain_connection_refused(credential):
    with patch("core.guest_session.asyncssh.connect", side_effect=OSError("Connection refused")):
        with pytest.raises(ProvisioningError, match="Guest session to web01 failed"):
            await join_domain("web01", credential, "corp.example.com")


@pytest.mark.asyncio
async def test_wait_for_guest_retries_until_login(guest_conn, credential):
    sleep = AsyncMock()
    attempts = [OSError("No route to host"), _connection_cm(guest_conn)]

    with patch("core.guest_session.asyncssh.connect", side_effect=attempts) as mock_connect:
        await wait_for_guest("web01", credential, timeout=600, interval=10, sleep=sleep)

    assert mock_connect.call_count == 2
    sleep.assert_awaited_once_with(10)


@pytest.mark.asyncio
async def test_wait_for_guest_times_out(credential):
    sleep = AsyncMock()

    with patch("core.guest_session.asyncssh.connect", side_effect=OSError("No route to host")):
        with pytest.raises(ProvisioningError) as excinfo:
            await wait_for_guest("web01", credential, timeout=0, interval=10, sleep=sleep)

    assert excinfo.value.step == "wait"
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_wait_for_guest_bounds_each_connection_attempt(guest_conn, credential):
    with patch("core.guest_session.asyncssh.connect", return_value=_connection_cm(guest_conn)) as mock_connect:
        await wait_for_guest("web01", credential, timeout=120, interval=10, sleep=AsyncMock())

    assert 1 <= mock_connect.call_args.kwargs["connect_timeout"] <= 120


@pytest.mark.asyncio
async def test_wait_for_guest_treats_connect_timeout_as_not_ready(credential):
    sleep = AsyncMock()

    with patch("core.guest_session.asyncssh.connect", side_effect=asyncio.TimeoutError()):
        with pytest.raises(ProvisioningError) as excinfo:
            await wait_for_guest("web01", credential, timeout=0, interval=10, sleep=sleep)

    assert excinfo.value.step == "wait"


@pytest.mark.asyncio
async def test_join_domain_uses_configured_connect_timeout(guest_conn, credential):
    with patch("core.guest_session.asyncssh.connect", return_value=_connection_cm(guest_conn)) as mock_connect, \
         patch("core.guest_session.GUEST_CONNECT_TIMEOUT", 15):
        await join_domain("web01", credential, "corp.example.com")

    assert mock_connect.call_args.kwargs["connect_timeout"] == 15
