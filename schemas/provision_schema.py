from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from config.settings import (
    DOMAIN_NAME,
    TARGET_HOSTS,
    VM_AUTOSTART,
    VM_DISK_SIZE_GB,
    VM_GENERATION,
    VM_ISO_PATH,
    VM_MEMORY_MB,
    VM_NAME,
    VM_NOTES,
    VM_SNAPSHOT_TEMPLATE,
    VM_SWITCH_NAME,
    VM_VCPUS,
    VM_WAIT_SECONDS,
)


class DomainCredential(BaseModel):
    """
    Account used to open the guest session and join the directory domain.

    The password is a SecretStr so it never shows up in repr() or logs.
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    password: SecretStr


class ProvisioningRequest(BaseModel):
    """
    Immutable description of one provisioning run.

    Built once at startup from config/settings.py (plus any overrides) and
    the interactive password prompt, then handed to every host unchanged.
    """

    model_config = ConfigDict(frozen=True)

    vm_name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    disk_size_gb: int = Field(..., ge=1, description="Virtual disk size in GiB")
    memory_mb: int = Field(..., ge=256, description="RAM in MiB")
    vcpus: int = Field(..., ge=1, description="Number of virtual CPUs")
    switch_name: str = Field(..., min_length=1, description="Virtual switch (libvirt network)")
    iso_path: str = Field(..., min_length=1, description="Install media path on the host")
    generation: Literal[1, 2] = 2
    autostart: bool = True
    domain_name: str = Field(..., min_length=1)
    domain_credential: DomainCredential
    notes: str = ""
    wait_seconds: float = Field(0, ge=0)
    hosts: tuple[str, ...] = Field(..., min_length=1)
    snapshot_name: Optional[str] = None

    @property
    def effective_snapshot_name(self) -> str:
        return self.snapshot_name or VM_SNAPSHOT_TEMPLATE.format(name=self.vm_name)

    @classmethod
    def from_settings(cls, credential: DomainCredential, **overrides) -> "ProvisioningRequest":
        """
        Build a request from the configured defaults; keyword arguments
        whose value is None are ignored so callers can pass optional CLI or
        API fields straight through.
        """
        values = {
            "vm_name": VM_NAME,
            "disk_size_gb": VM_DISK_SIZE_GB,
            "memory_mb": VM_MEMORY_MB,
            "vcpus": VM_VCPUS,
            "switch_name": VM_SWITCH_NAME,
            "iso_path": VM_ISO_PATH,
            "generation": VM_GENERATION,
            "autostart": VM_AUTOSTART,
            "domain_name": DOMAIN_NAME,
            "notes": VM_NOTES,
            "wait_seconds": VM_WAIT_SECONDS,
            "hosts": tuple(TARGET_HOSTS),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        values["hosts"] = tuple(values["hosts"])
        return cls(domain_credential=credential, **values)


class HostOutcome(BaseModel):
    """Result of provisioning one host."""

    host: str
    vm_name: str
    success: bool
    error: str | None = None
    failed_step: str | None = None
    log_path: str | None = None


class ProvisionRunSchema(BaseModel):
    """
    Payload for POST /provision.

    Every field is optional; missing ones fall back to config/settings.py.
    The domain password is never part of the payload, it is set beforehand
    via POST /credentials/domain.
    """

    vm_name: str | None = None
    disk_size_gb: int | None = None
    memory_mb: int | None = None
    vcpus: int | None = None
    switch_name: str | None = None
    iso_path: str | None = None
    generation: Literal[1, 2] | None = None
    autostart: bool | None = None
    domain_name: str | None = None
    notes: str | None = None
    wait_seconds: float | None = None
    hosts: list[str] | None = None
    snapshot_name: str | None = None


class DomainCredentialSchema(BaseModel):
    username: str | None = None
    password: str
