"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pytest

from vmharness.disks import DiskConfig
from vmharness.models import DiskType, GuestNetworkConfig, HarnessConfig


class FakeDiskConfig(DiskConfig):
    """Hands out placeholder disk paths without touching any image."""

    def __init__(self) -> None:
        self.prepared_in: Optional[Path] = None
        self.network: Optional[GuestNetworkConfig] = None
        self._disks: Dict[DiskType, str] = {}

    def prepare_files(self, tmp_dir: Path, network: GuestNetworkConfig) -> None:
        self.prepared_in = tmp_dir
        self.network = network
        self._disks = {
            DiskType.OPERATING_SYSTEM: str(tmp_dir / "osdisk.img"),
            DiskType.CLOUD_INIT: str(tmp_dir / "cloudinit"),
        }

    def disk(self, disk_type: DiskType) -> Optional[str]:
        return self._disks.get(disk_type)


class StaticDiskConfig(DiskConfig):
    def __init__(self, os_disk: str = "/images/os.raw", seed: str = "/images/seed.img") -> None:
        self._disks = {DiskType.OPERATING_SYSTEM: os_disk, DiskType.CLOUD_INIT: seed}

    def prepare_files(self, tmp_dir: Path, network: GuestNetworkConfig) -> None:
        pass

    def disk(self, disk_type: DiskType) -> Optional[str]:
        return self._disks.get(disk_type)


@pytest.fixture
def harness_config(tmp_path) -> HarnessConfig:
    """Return a HarnessConfig whose scratch dirs live under tmp_path."""
    return HarnessConfig(
        connect_uri="ch:///system",
        libvirtd_bin="libvirtd",
        virsh_bin="virsh",
        workloads_dir=tmp_path / "workloads",
        kernel_path=tmp_path / "workloads" / "hypervisor-fw",
        os_image="focal-server-cloudimg-amd64.raw",
        network_class="192.168",
        settle_delay=0,
        ready_probe="settle",
        boot_timeout=5,
        boot_probe="ssh",
        ssh_retries=1,
        ssh_timeout=1,
        ssh_user="cloud",
        ssh_password="cloud123",
        tmp_prefix=str(tmp_path / "ch"),
    )


@pytest.fixture
def fake_disks() -> FakeDiskConfig:
    return FakeDiskConfig()


# All environment variables that parse_env() reads.
_PARSE_ENV_VARS = [
    "CONNECT_URI",
    "LIBVIRTD_BIN",
    "VIRSH_BIN",
    "WORKLOADS_DIR",
    "KERNEL_NAME",
    "KERNEL_PATH",
    "OS_IMAGE",
    "NETWORK_CLASS",
    "SETTLE_DELAY",
    "READY_PROBE",
    "BOOT_TIMEOUT",
    "BOOT_PROBE",
    "SSH_RETRIES",
    "SSH_TIMEOUT",
    "SSH_USER",
    "SSH_PASSWORD",
    "TMP_PREFIX",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable parse_env() reads and point the YAML file somewhere empty."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("vmharness.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("KERNEL_NAME", "hypervisor-fw")


@pytest.fixture
def static_disks() -> StaticDiskConfig:
    return StaticDiskConfig()


@pytest.fixture
def fake_disk_factory():
    """Callable producing a fresh FakeDiskConfig per guest."""
    return FakeDiskConfig
