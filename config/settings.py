import os
from pathlib import Path

# -----------------------------
# Base paths
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent  # project root: vm-provisioner/

# -----------------------------
# Logging
# -----------------------------
LOG_DIR = BASE_DIR / "log"
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOG_DIR / "vm-provisioner.log"

# name of the per-VM log written inside <VM_BASE_PATH>/<vm_name>/ on the host
PROVISION_LOG_NAME = "ProvisionLog.txt"

# -----------------------------
# VM defaults
# -----------------------------
VM_NAME = os.getenv("VM_NAME", "app-server-01")
VM_DISK_SIZE_GB = int(os.getenv("VM_DISK_SIZE_GB", "60"))
VM_MEMORY_MB = int(os.getenv("VM_MEMORY_MB", "4096"))
VM_VCPUS = int(os.getenv("VM_VCPUS", "2"))
VM_SWITCH_NAME = os.getenv("VM_SWITCH_NAME", "default")
VM_ISO_PATH = os.getenv("VM_ISO_PATH", "/var/lib/libvirt/iso/install.iso")
VM_GENERATION = int(os.getenv("VM_GENERATION", "2"))
VM_AUTOSTART = os.getenv("VM_AUTOSTART", "true").lower() == "true"
VM_NOTES = os.getenv("VM_NOTES", "Provisioned by vm-provisioner")

# seconds to wait after start before the snapshot is taken
VM_WAIT_SECONDS = float(os.getenv("VM_WAIT_SECONDS", "600"))

# snapshot name template, {name} is the VM name
VM_SNAPSHOT_TEMPLATE = os.getenv("VM_SNAPSHOT_TEMPLATE", "{name}-snapshot")

# -----------------------------
# Directory domain
# -----------------------------
DOMAIN_NAME = os.getenv("DOMAIN_NAME", "corp.example.com")
DOMAIN_USER = os.getenv("DOMAIN_USER", "administrator")

# -----------------------------
# Hypervisor hosts
# -----------------------------
TARGET_HOSTS = [
    host.strip()
    for host in os.getenv("PROVISION_TARGET_HOSTS", "hv01,hv02").split(",")
    if host.strip()
]

# VM directories are created as <VM_BASE_PATH>/<vm_name> on every host
VM_BASE_PATH = os.getenv("VM_BASE_PATH", "/var/lib/libvirt/images/provisioned")

HOST_SSH_PORT = int(os.getenv("HOST_SSH_PORT", "22"))
HOST_SSH_USERNAME = os.getenv("HOST_SSH_USERNAME", "root")
HOST_SSH_KNOWN_HOSTS = os.getenv("HOST_SSH_KNOWN_HOSTS", None)
HOST_SSH_PRIVATE_KEY = os.getenv(
    "HOST_SSH_PRIVATE_KEY",
    str(Path.home() / ".ssh" / "id_rsa"),
)

# common examples:
#   qemu+ssh://{user}@{host}/system   (KVM/QEMU over SSH)
#   qemu+tls://{host}/system          (KVM/QEMU over TLS)
#   xen+ssh://{user}@{host}/system    (Xen)
HOST_LIBVIRT_URI_TEMPLATE = os.getenv(
    "HOST_LIBVIRT_URI_TEMPLATE",
    "qemu+ssh://{user}@{host}/system",
)

# -----------------------------
# Guest access (domain join)
# -----------------------------
GUEST_HOST_TEMPLATE = os.getenv("GUEST_HOST_TEMPLATE", "{name}")
GUEST_SSH_PORT = int(os.getenv("GUEST_SSH_PORT", "22"))

# {domain} and {user} are substituted; the password is fed on stdin
GUEST_JOIN_COMMAND = os.getenv(
    "GUEST_JOIN_COMMAND",
    "realm join --user={user} {domain}",
)
GUEST_RESTART_COMMAND = os.getenv("GUEST_RESTART_COMMAND", "shutdown -r now")

# 0 disables polling for guest login after the fixed wait
GUEST_READY_TIMEOUT = float(os.getenv("GUEST_READY_TIMEOUT", "0"))
GUEST_READY_INTERVAL = float(os.getenv("GUEST_READY_INTERVAL", "10"))

# upper bound for one SSH connection attempt to the guest
GUEST_CONNECT_TIMEOUT = float(os.getenv("GUEST_CONNECT_TIMEOUT", "30"))

# -----------------------------
# Metrics / monitoring
# -----------------------------
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() == "true"
