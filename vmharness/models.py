"""Data models for vmharness."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

from vmharness.exceptions import HarnessError


@dataclass(frozen=True)
class GuestIdentity:
    id: int
    name: str
    uuid: str


@dataclass(frozen=True)
class GuestNetworkConfig:
    host_ip: str
    guest_ip: str
    l2_guest_ip1: str
    l2_guest_ip2: str
    l2_guest_ip3: str
    guest_mac: str
    l2_guest_mac1: str
    l2_guest_mac2: str
    l2_guest_mac3: str
    tcp_listener_port: int


@dataclass(frozen=True)
class VcpuConfig:
    boot: int = 1
    max: int = 1

    def __post_init__(self):
        if self.boot < 1:
            raise HarnessError(f"boot vCPU count must be >= 1 (got {self.boot})")
        if self.boot > self.max:
            raise HarnessError(f"boot vCPU count {self.boot} exceeds max {self.max}")


class DiskType(enum.Enum):
    OPERATING_SYSTEM = "os"
    CLOUD_INIT = "cloud-init"


class CommandResult(NamedTuple):
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.strip()

    def starts_with(self, prefix: str) -> bool:
        return self.stdout_text.startswith(prefix)


@dataclass
class HarnessConfig:
    connect_uri: str
    libvirtd_bin: str
    virsh_bin: str
    workloads_dir: Path
    kernel_path: Path
    os_image: str
    network_class: str
    settle_delay: int
    ready_probe: str
    boot_timeout: int
    boot_probe: str
    ssh_retries: int
    ssh_timeout: int
    ssh_user: str
    ssh_password: str
    tmp_prefix: str
