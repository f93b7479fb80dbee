import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncssh

from config.settings import (
    HOST_LIBVIRT_URI_TEMPLATE,
    HOST_SSH_KNOWN_HOSTS,
    HOST_SSH_PORT,
    HOST_SSH_PRIVATE_KEY,
    HOST_SSH_USERNAME,
)
from core.errors import ProvisioningError
from core.hypervisor import HypervisorClient, open_hypervisor
from core.logger import log_event


class HostSession:
    """
    Remote execution session on one hypervisor host.

    Filesystem work (VM directory, provision log) goes over SFTP, VM work
    goes through the libvirt `hypervisor` client. A session belongs to a
    single host and is never reused.
    """

    def __init__(self, host: str, sftp: asyncssh.SFTPClient, hypervisor: HypervisorClient) -> None:
        self.host = host
        self.sftp = sftp
        self.hypervisor = hypervisor

    async def path_exists(self, path: str) -> bool:
        return await self.sftp.exists(path)

    async def make_dirs(self, path: str) -> None:
        await self.sftp.makedirs(path)

    async def append_text(self, path: str, text: str) -> None:
        async with self.sftp.open(path, "a", encoding="utf-8") as f:
            await f.write(text)


@asynccontextmanager
async def open_host_session(host: str) -> AsyncIterator[HostSession]:
    uri = HOST_LIBVIRT_URI_TEMPLATE.format(host=host, user=HOST_SSH_USERNAME)
    key_path = HOST_SSH_PRIVATE_KEY

    log_event(f"[host] Opening session to {host} (user={HOST_SSH_USERNAME}, libvirt={uri})")
    try:
        conn = await asyncssh.connect(
            host=host,
            port=HOST_SSH_PORT,
            username=HOST_SSH_USERNAME,
            client_keys=[key_path] if key_path else None,
            known_hosts=HOST_SSH_KNOWN_HOSTS,
        )
    except (OSError, asyncssh.Error) as e:
        raise ProvisioningError("connect", f"SSH connection to {host} failed: {e}") from e

    async with conn:
        async with conn.start_sftp_client() as sftp:
            hypervisor = await asyncio.to_thread(open_hypervisor, uri)
            try:
                yield HostSession(host, sftp, hypervisor)
            finally:
                await asyncio.to_thread(hypervisor.close)
                log_event(f"[host] Session to {host} closed")
