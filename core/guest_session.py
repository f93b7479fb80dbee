import asyncio
import time
from typing import Awaitable, Callable

import asyncssh

from config.settings import (
    GUEST_CONNECT_TIMEOUT,
    GUEST_JOIN_COMMAND,
    GUEST_RESTART_COMMAND,
    GUEST_SSH_PORT,
)
from core.errors import ProvisioningError
from core.logger import log_event
from schemas.provision_schema import DomainCredential


def _connect(host: str, credential: DomainCredential, connect_timeout: float):
    return asyncssh.connect(
        host=host,
        port=GUEST_SSH_PORT,
        username=credential.username,
        password=credential.password.get_secret_value(),
        known_hosts=None,
        connect_timeout=connect_timeout,
    )


async def wait_for_guest(
    host: str,
    credential: DomainCredential,
    timeout: float,
    interval: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Poll until an SSH login to the guest succeeds.

    Raises ProvisioningError("wait", ...) once `timeout` seconds have passed
    without a successful login.
    """
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        attempt += 1
        try:
            async with _connect(host, credential, max(deadline - time.monotonic(), 1)):
                log_event(f"[guest] {host} accepted login after {attempt} attempt(s)")
                return
        except (OSError, asyncio.TimeoutError, asyncssh.Error) as e:
            last_error = e

        if time.monotonic() + interval > deadline:
            raise ProvisioningError(
                "wait",
                f"Guest {host} did not accept a login within {timeout}s: {last_error}",
            )
        log_event(f"[guest] {host} not ready yet (attempt {attempt}): {last_error}")
        await sleep(interval)


async def join_domain(host: str, credential: DomainCredential, domain_name: str) -> None:
    """
    Open a session to the guest with the domain credential, join it to
    `domain_name` and force a restart.
    """
    join_cmd = GUEST_JOIN_COMMAND.format(domain=domain_name, user=credential.username)
    log_event(f"[guest] Joining {host} to domain {domain_name}: {join_cmd}")

    try:
        async with _connect(host, credential, GUEST_CONNECT_TIMEOUT) as conn:
            await conn.run(
                join_cmd,
                input=credential.password.get_secret_value() + "\n",
                check=True,
            )
            log_event(f"[guest] {host} joined domain {domain_name}, restarting")

            try:
                await conn.run(GUEST_RESTART_COMMAND)
            except asyncssh.DisconnectError as e:
                # the restart usually tears the connection down first
                log_event(f"[guest] Connection to {host} closed by restart: {e}")
    except asyncssh.ProcessError as e:
        err = (e.stderr or "").strip() or f"exit status {e.exit_status}"
        raise ProvisioningError("join_domain", f"Domain join failed on {host}: {err}") from e
    except (OSError, asyncio.TimeoutError, asyncssh.Error) as e:
        raise ProvisioningError("join_domain", f"Guest session to {host} failed: {e}") from e
