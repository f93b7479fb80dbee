from contextlib import asynccontextmanager
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.provisioner import Provisioner
from schemas.provision_schema import DomainCredential, ProvisioningRequest

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5)


class FakeHostSession:
    """In-memory stand-in for core.host_session.HostSession."""

    def __init__(self, host, existing_paths=()):
        self.host = host
        self.dirs = set(existing_paths)
        self.files = {}
        self.hypervisor = MagicMock()
        self.hypervisor.create_disk.side_effect = lambda name, path, size: f"{path}/{name}.qcow2"
        self.hypervisor.create_snapshot.side_effect = lambda name, snapshot_name: snapshot_name

    async def path_exists(self, path):
        return path in self.dirs or path in self.files

    async def make_dirs(self, path):
        self.dirs.add(path)

    async def append_text(self, path, text):
        self.files[path] = self.files.get(path, "") + text

    def log_messages(self, path):
        """Provision log lines without their timestamp prefix."""
        lines = self.files.get(path, "").splitlines()
        return [line.split(" - ", 1)[1] for line in lines]


class FakeSessionFactory:
    def __init__(self):
        self.sessions = {}
        self.connect_errors = {}
        self.opened = []

    def add(self, host, **kwargs):
        session = FakeHostSession(host, **kwargs)
        self.sessions[host] = session
        return session

    @asynccontextmanager
    async def __call__(self, host):
        self.opened.append(host)
        if host in self.connect_errors:
            raise self.connect_errors[host]
        session = self.sessions.get(host) or self.add(host)
        yield session


@pytest.fixture
def credential():
    return DomainCredential(username="admin", password="s3cret")


@pytest.fixture
def make_request(credential):
    def _make(**overrides):
        values = {
            "vm_name": "web01",
            "disk_size_gb": 80,
            "memory_mb": 8192,
            "vcpus": 4,
            "switch_name": "lab-switch",
            "iso_path": "/iso/os.iso",
            "generation": 2,
            "autostart": True,
            "domain_name": "corp.example.com",
            "domain_credential": credential,
            "notes": "web tier",
            "wait_seconds": 30,
            "hosts": ("hv01",),
        }
        values.update(overrides)
        return ProvisioningRequest(**values)

    return _make


@pytest.fixture
def session_factory():
    return FakeSessionFactory()


@pytest.fixture
def provisioner(session_factory):
    return Provisioner(
        session_factory=session_factory,
        join_domain=AsyncMock(),
        wait_for_guest=AsyncMock(),
        sleep=AsyncMock(),
        clock=lambda: FIXED_NOW,
        base_path="/vms",
        guest_host_template="{name}",
        guest_ready_timeout=0,
        guest_ready_interval=5,
    )
