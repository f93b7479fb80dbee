"""Tests for the per-VM provision log."""

from datetime import datetime

import pytest

from core.provision_log import ProvisionLog


@pytest.mark.asyncio
async def test_nothing_written_before_open(session_factory):
    session = session_factory.add("hv01")
    log = ProvisionLog(session, "/vms/web01/ProvisionLog.txt")

    await log.write("Checking path")

    assert session.files == {}


@pytest.mark.asyncio
async def test_lines_are_appended_with_timestamp(session_factory):
    session = session_factory.add("hv01")
    times = iter([datetime(2026, 3, 1, 9, 0, 0), datetime(2026, 3, 1, 9, 10, 30)])
    log = ProvisionLog(session, "/vms/web01/ProvisionLog.txt", clock=lambda: next(times))
    log.open()

    await log.write("Created VM directory /vms/web01")
    await log.write("Starting VM 'web01'")

    assert session.files["/vms/web01/ProvisionLog.txt"] == (
        "2026-03-01 09:00:00 - Created VM directory /vms/web01\n"
        "2026-03-01 09:10:30 - Starting VM 'web01'\n"
    )
