from typing import Optional
from xml.sax.saxutils import escape

import libvirt

from core.errors import ProvisioningError
from core.logger import log_event
from core.snapshot_manager import SnapshotManager


def _xml(value) -> str:
    """Escape a value for use as XML text or a single-quoted attribute."""
    return escape(str(value), {"'": "&apos;", '"': "&quot;"})


def _libvirt_error_handler(ctx, error):
    """
    Custom libvirt error handler to suppress noisy stderr messages like:
    'Domain not found: no domain with matching name ...'
    """
    # errors are raised as libvirtError and logged by the caller
    pass


def open_hypervisor(uri: str) -> "HypervisorClient":
    libvirt.registerErrorHandler(_libvirt_error_handler, None)

    try:
        conn = libvirt.open(uri)
    except libvirt.libvirtError as e:
        raise ProvisioningError("connect", f"libvirt connection error for {uri}: {e}") from e
    if conn is None:
        raise ProvisioningError("connect", f"Failed to connect to hypervisor via libvirt URI: {uri}")

    log_event(f"[hypervisor] Connected to hypervisor via libvirt URI={uri}")
    return HypervisorClient(conn, uri)


class HypervisorClient:
    """
    VM creation operations against one libvirt host.

    Every method takes its inputs as explicit arguments and hands them to
    libvirt without transformation; libvirt errors are re-raised as
    ProvisioningError tagged with the step name.
    """

    def __init__(self, conn, uri: str) -> None:
        self.conn = conn
        self.uri = uri
        self.snapshot_manager = SnapshotManager(uri)

    def close(self) -> None:
        try:
            self.conn.close()
        except libvirt.libvirtError as e:
            log_event(f"[hypervisor] Error closing connection to {self.uri}: {e}")

    # ------------------------------------------------------------------
    # XML helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _generate_pool_xml(name: str, path: str) -> str:
        return f"""
        <pool type='dir'>
          <name>{_xml(name)}</name>
          <target>
            <path>{_xml(path)}</path>
          </target>
        </pool>
        """

    @staticmethod
    def _generate_volume_xml(name: str, size_gb: int) -> str:
        # allocation 0 keeps the qcow2 file dynamically expanding
        return f"""
        <volume>
          <name>{_xml(name)}</name>
          <capacity unit='G'>{size_gb}</capacity>
          <allocation unit='G'>0</allocation>
          <target>
            <format type='qcow2'/>
          </target>
        </volume>
        """

    @staticmethod
    def _generate_domain_xml(
        name: str,
        memory_mb: int,
        generation: int,
        disk_path: str,
        switch_name: str,
    ) -> str:
        """
        Domain XML for a QEMU/KVM style hypervisor.

        Generation 1 boots legacy BIOS on i440fx, generation 2 boots UEFI
        on q35.
        """
        if generation == 2:
            os_xml = "<os firmware='efi'><type arch='x86_64' machine='q35'>hvm</type></os>"
            disk_bus = "sata"
        else:
            os_xml = "<os><type arch='x86_64' machine='pc'>hvm</type></os>"
            disk_bus = "ide"

        return f"""
        <domain type='kvm'>
          <name>{_xml(name)}</name>
          <memory unit='MiB'>{memory_mb}</memory>
          <vcpu>1</vcpu>
          {os_xml}
          <features><acpi/><apic/></features>
          <devices>
            <disk type='file' device='disk'>
              <driver name='qemu' type='qcow2'/>
              <source file='{_xml(disk_path)}'/>
              <target dev='sda' bus='{disk_bus}'/>
              <boot order='2'/>
            </disk>
            <interface type='network'>
              <source network='{_xml(switch_name)}'/>
              <model type='virtio'/>
            </interface>
            <graphics type='vnc' port='-1' autoport='yes'/>
            <console type='pty'/>
          </devices>
        </domain>
        """

    @staticmethod
    def _generate_dvd_xml(iso_path: str, generation: int) -> str:
        bus = "sata" if generation == 2 else "ide"
        return f"""
        <disk type='file' device='cdrom'>
          <driver name='qemu' type='raw'/>
          <source file='{_xml(iso_path)}'/>
          <target dev='sdb' bus='{bus}'/>
          <readonly/>
          <boot order='1'/>
        </disk>
        """

    def _get_domain(self, name: str, step: str):
        try:
            return self.conn.lookupByName(name)
        except libvirt.libvirtError as e:
            raise ProvisioningError(step, f"VM '{name}' not found on {self.uri}: {e}") from e

    # ------------------------------------------------------------------
    # Provisioning operations
    # ------------------------------------------------------------------
    def create_disk(self, vm_name: str, vm_path: str, size_gb: int) -> str:
        """
        Create <vm_path>/<vm_name>.qcow2 through a transient dir pool rooted
        at the VM directory. Returns the disk path.

        The pool is destroyed again once the volume exists; destroying a dir
        pool leaves its files in place.
        """
        volume_name = f"{vm_name}.qcow2"
        try:
            pool = self.conn.storagePoolCreateXML(self._generate_pool_xml(vm_name, vm_path), 0)
        except libvirt.libvirtError as e:
            raise ProvisioningError("create_disk", f"Failed to create disk for VM '{vm_name}': {e}") from e

        try:
            volume = pool.createXML(self._generate_volume_xml(volume_name, size_gb), 0)
            disk_path = volume.path()
        except libvirt.libvirtError as e:
            raise ProvisioningError("create_disk", f"Failed to create disk for VM '{vm_name}': {e}") from e
        finally:
            try:
                pool.destroy()
            except libvirt.libvirtError as e:
                log_event(f"[hypervisor] Could not release transient pool for VM '{vm_name}': {e}")

        log_event(f"[hypervisor] Created disk {disk_path} ({size_gb}G) for VM '{vm_name}'")
        return disk_path

    def define_vm(
        self,
        name: str,
        memory_mb: int,
        generation: int,
        disk_path: str,
        switch_name: str,
    ) -> None:
        domain_xml = self._generate_domain_xml(
            name=name,
            memory_mb=memory_mb,
            generation=generation,
            disk_path=disk_path,
            switch_name=switch_name,
        )
        try:
            dom = self.conn.defineXML(domain_xml)
        except libvirt.libvirtError as e:
            raise ProvisioningError("define_vm", f"Failed to define VM '{name}': {e}") from e
        if dom is None:
            raise ProvisioningError("define_vm", "Failed to define libvirt domain from XML")

        log_event(
            f"[hypervisor] Defined VM '{name}' (memory={memory_mb}MiB, generation={generation}, "
            f"switch={switch_name}, disk={disk_path})"
        )

    def set_vcpus(self, name: str, vcpus: int) -> None:
        dom = self._get_domain(name, "set_vcpus")
        try:
            dom.setVcpusFlags(
                vcpus,
                libvirt.VIR_DOMAIN_AFFECT_CONFIG | libvirt.VIR_DOMAIN_VCPU_MAXIMUM,
            )
            dom.setVcpusFlags(vcpus, libvirt.VIR_DOMAIN_AFFECT_CONFIG)
        except libvirt.libvirtError as e:
            raise ProvisioningError("set_vcpus", f"Failed to set vCPU count for VM '{name}': {e}") from e

    def attach_dvd(self, name: str, iso_path: str, generation: int) -> None:
        dom = self._get_domain(name, "attach_dvd")
        try:
            dom.attachDeviceFlags(
                self._generate_dvd_xml(iso_path, generation),
                libvirt.VIR_DOMAIN_AFFECT_CONFIG,
            )
        except libvirt.libvirtError as e:
            raise ProvisioningError("attach_dvd", f"Failed to attach {iso_path} to VM '{name}': {e}") from e

    def set_autostart(self, name: str) -> None:
        dom = self._get_domain(name, "set_autostart")
        try:
            dom.setAutostart(1)
        except libvirt.libvirtError as e:
            raise ProvisioningError("set_autostart", f"Failed to enable autostart for VM '{name}': {e}") from e

    def set_notes(self, name: str, notes: str) -> None:
        dom = self._get_domain(name, "set_notes")
        try:
            dom.setMetadata(
                libvirt.VIR_DOMAIN_METADATA_DESCRIPTION,
                notes,
                None,
                None,
                libvirt.VIR_DOMAIN_AFFECT_CONFIG,
            )
        except libvirt.libvirtError as e:
            raise ProvisioningError("set_notes", f"Failed to set notes for VM '{name}': {e}") from e

    def start_vm(self, name: str) -> None:
        dom = self._get_domain(name, "start_vm")
        try:
            dom.create()
        except libvirt.libvirtError as e:
            raise ProvisioningError("start_vm", f"Failed to start VM '{name}': {e}") from e
        log_event(f"[hypervisor] Started VM '{name}' on {self.uri}")

    def create_snapshot(self, name: str, snapshot_name: Optional[str] = None) -> str:
        return self.snapshot_manager.create_snapshot(vm_name=name, snapshot_name=snapshot_name)
