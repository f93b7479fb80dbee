import subprocess

from core.errors import ProvisioningError
from core.logger import log_event


class SnapshotManager:
    """
    Thin wrapper around virsh snapshots for a (possibly remote) libvirt host.

    Unlike a best-effort backup, the post-install snapshot is part of the
    provisioning sequence: a failed snapshot fails the host.
    """

    def __init__(self, uri: str) -> None:
        self.uri = uri

    def create_snapshot(self, vm_name: str, snapshot_name: str | None = None) -> str:
        if snapshot_name is None:
            snapshot_name = f"{vm_name}-snapshot"

        cmd = [
            "virsh",
            "-c",
            self.uri,
            "snapshot-create-as",
            vm_name,
            snapshot_name,
            "--atomic",
        ]

        log_event(f"[snapshot] Creating snapshot {snapshot_name} for VM {vm_name}: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise ProvisioningError("snapshot", f"virsh not found: {e}") from e
        except subprocess.CalledProcessError as e:
            err = e.stderr.strip() if e.stderr else str(e)
            log_event(f"[snapshot] Snapshot creation failed for {vm_name}: {err}")
            raise ProvisioningError(
                "snapshot",
                f"Failed to create snapshot '{snapshot_name}' for VM '{vm_name}': {err}",
            ) from e

        if result.stdout:
            log_event(f"[snapshot] virsh output for {vm_name}: {result.stdout.strip()}")
        return snapshot_name
