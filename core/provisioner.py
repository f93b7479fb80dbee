import asyncio
import inspect
import logging
import time
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Callable

from config.settings import (
    GUEST_HOST_TEMPLATE,
    GUEST_READY_INTERVAL,
    GUEST_READY_TIMEOUT,
    PROVISION_LOG_NAME,
    VM_BASE_PATH,
)
from core import guest_session
from core.errors import ProvisioningError
from core.host_session import open_host_session
from core.logger import log_event
from core.metrics import record_host_outcome
from core.provision_log import ProvisionLog
from schemas.provision_schema import HostOutcome, ProvisioningRequest


class Provisioner:
    """
    Create one VM on every host of a ProvisioningRequest.

    Hosts are handled one after another. For each host a fresh session is
    opened and the fixed step sequence runs until it finishes or a step
    fails; a failure ends that host only and the next host still runs.
    Nothing is retried and nothing created before a failure is removed.
    """

    def __init__(
        self,
        session_factory: Callable = open_host_session,
        join_domain: Callable = guest_session.join_domain,
        wait_for_guest: Callable = guest_session.wait_for_guest,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
        base_path: str = VM_BASE_PATH,
        guest_host_template: str = GUEST_HOST_TEMPLATE,
        guest_ready_timeout: float = GUEST_READY_TIMEOUT,
        guest_ready_interval: float = GUEST_READY_INTERVAL,
    ) -> None:
        self.session_factory = session_factory
        self.join_domain = join_domain
        self.wait_for_guest = wait_for_guest
        self.sleep = sleep
        self.clock = clock
        self.base_path = base_path
        self.guest_host_template = guest_host_template
        self.guest_ready_timeout = guest_ready_timeout
        self.guest_ready_interval = guest_ready_interval

    def vm_path(self, vm_name: str) -> str:
        return str(PurePosixPath(self.base_path) / vm_name)

    async def run(self, request: ProvisioningRequest) -> list[HostOutcome]:
        log_event(
            f"[provision] Provisioning VM '{request.vm_name}' on {len(request.hosts)} host(s): "
            f"{', '.join(request.hosts)}"
        )
        outcomes: list[HostOutcome] = []
        for host in request.hosts:
            outcomes.append(await self.provision_host(host, request))
        return outcomes

    async def provision_host(self, host: str, request: ProvisioningRequest) -> HostOutcome:
        vm_path = self.vm_path(request.vm_name)
        log_path = str(PurePosixPath(vm_path) / PROVISION_LOG_NAME)
        started = time.monotonic()

        try:
            async with self.session_factory(host) as session:
                log = ProvisionLog(session, log_path, clock=self.clock)
                try:
                    await self._run_steps(session, log, request, vm_path)
                except Exception as e:
                    await self._log_failure(log, e)
                    raise
        except Exception as e:  # noqa: BLE001
            failed_step = e.step if isinstance(e, ProvisioningError) else "unknown"
            log_event(
                f"[provision] FAILED on {host} at step {failed_step} for VM '{request.vm_name}': {e}",
                logging.ERROR,
            )
            record_host_outcome(host, False, failed_step, time.monotonic() - started)
            return HostOutcome(
                host=host,
                vm_name=request.vm_name,
                success=False,
                error=str(e) or e.__class__.__name__,
                failed_step=failed_step,
                log_path=log_path,
            )

        record_host_outcome(host, True, None, time.monotonic() - started)
        return HostOutcome(host=host, vm_name=request.vm_name, success=True, log_path=log_path)

    async def _run_steps(self, session, log: ProvisionLog, request: ProvisioningRequest, vm_path: str) -> None:
        name = request.vm_name
        hypervisor = session.hypervisor

        if await session.path_exists(vm_path):
            raise ProvisioningError("check_path", f"VM path already exists: {vm_path}")

        await self._step(log, "create_directory", None, session.make_dirs, vm_path)
        log.open()
        await log.write(f"Created VM directory {vm_path}")

        disk_path = await self._step(
            log,
            "create_disk",
            f"Creating dynamically expanding virtual disk {name}.qcow2 ({request.disk_size_gb} GB)",
            hypervisor.create_disk,
            name,
            vm_path,
            request.disk_size_gb,
        )
        await self._step(
            log,
            "define_vm",
            f"Defining VM '{name}' (memory {request.memory_mb} MB, generation {request.generation}, "
            f"switch '{request.switch_name}', disk {disk_path})",
            hypervisor.define_vm,
            name,
            request.memory_mb,
            request.generation,
            disk_path,
            request.switch_name,
        )
        await self._step(
            log, "set_vcpus", f"Setting vCPU count to {request.vcpus}",
            hypervisor.set_vcpus, name, request.vcpus,
        )
        await self._step(
            log, "attach_dvd", f"Attaching install media {request.iso_path}",
            hypervisor.attach_dvd, name, request.iso_path, request.generation,
        )
        if request.autostart:
            await self._step(
                log, "set_autostart", "Enabling autostart (start if previously running)",
                hypervisor.set_autostart, name,
            )
        await self._step(log, "set_notes", "Setting VM notes", hypervisor.set_notes, name, request.notes)
        await self._step(log, "start_vm", f"Starting VM '{name}'", hypervisor.start_vm, name)

        await self._step(
            log, "wait", f"Waiting {request.wait_seconds:g} seconds for OS installation",
            self.sleep, request.wait_seconds,
        )

        guest_host = self.guest_host_template.format(name=name, host=session.host)
        if self.guest_ready_timeout > 0:
            await self._step(
                log,
                "wait",
                f"Polling {guest_host} for guest login (timeout {self.guest_ready_timeout:g} seconds)",
                self.wait_for_guest,
                guest_host,
                request.domain_credential,
                self.guest_ready_timeout,
                self.guest_ready_interval,
                self.sleep,
            )

        snapshot_name = request.effective_snapshot_name
        await self._step(
            log, "snapshot", f"Creating snapshot '{snapshot_name}'",
            hypervisor.create_snapshot, name, snapshot_name,
        )
        await self._step(
            log,
            "join_domain",
            f"Joining {guest_host} to domain {request.domain_name} as "
            f"{request.domain_credential.username} and restarting",
            self.join_domain,
            guest_host,
            request.domain_credential,
            request.domain_name,
        )

        await log.write(f"Provisioning of VM '{name}' on {session.host} completed successfully")

    @staticmethod
    async def _step(log: ProvisionLog, step: str, message: str | None, action: Callable, *args: Any) -> Any:
        if message is not None:
            await log.write(message)
        try:
            if inspect.iscoroutinefunction(action):
                result = await action(*args)
            else:
                # libvirt and virsh calls block, keep them off the event loop
                result = await asyncio.to_thread(action, *args)
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(step, str(e) or e.__class__.__name__) from e
        return result

    @staticmethod
    async def _log_failure(log: ProvisionLog, error: Exception) -> None:
        try:
            await log.write(f"ERROR: {error}")
        except Exception as log_error:  # noqa: BLE001
            log_event(f"[provision] Could not append error to {log.path}: {log_error}", logging.ERROR)
