"""A single test guest: identity, addressing, scratch directory and in-guest queries."""

from __future__ import annotations

import tempfile
import time
from pathlib import Path
from typing import Optional

from vmharness.allocator import derive_network, new_identity, next_id
from vmharness.constants import DEFAULT_RAM_SIZE, DOMAIN_XML_NAME
from vmharness.disks import DiskConfig
from vmharness.domain import build_domain_xml, write_domain_xml
from vmharness.exceptions import HarnessError
from vmharness.models import HarnessConfig, VcpuConfig
from vmharness.remote import BootListener, RemoteChannel
from vmharness.utils import log

CPU_COUNT_COMMAND = "grep -c processor /proc/cpuinfo"
MEMORY_TOTAL_COMMAND = 'grep MemTotal /proc/meminfo | grep -o "[0-9]*"'


class Guest:
    """Owns a scratch directory for one guest; ``close()`` removes it.

    The guest does not own the daemon or anything started through ``virsh``;
    tearing those down is the caller's job.
    """

    def __init__(
        self,
        disk_config: DiskConfig,
        config: HarnessConfig,
        guest_id: Optional[int] = None,
        channel: Optional[RemoteChannel] = None,
    ) -> None:
        gid = next_id() if guest_id is None else guest_id
        self.config = config
        self.identity = new_identity(gid)
        self.network = derive_network(config.network_class, gid)
        self.kernel_path = config.kernel_path
        self.disk_config = disk_config
        self.channel = channel or RemoteChannel(
            user=config.ssh_user,
            password=config.ssh_password,
            retries=config.ssh_retries,
            timeout=config.ssh_timeout,
        )
        prefix = Path(config.tmp_prefix)
        self._tmp: Optional[tempfile.TemporaryDirectory] = tempfile.TemporaryDirectory(
            prefix=prefix.name, dir=str(prefix.parent)
        )
        self.tmp_dir = Path(self._tmp.name)
        try:
            disk_config.prepare_files(self.tmp_dir, self.network)
        except BaseException:
            self.close()
            raise
        log("DEBUG", f"Guest {self.name} allocated ip={self.network.guest_ip} dir={self.tmp_dir}")

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def uuid(self) -> str:
        return self.identity.uuid

    @property
    def closed(self) -> bool:
        return self._tmp is None

    def __enter__(self) -> "Guest":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._tmp is None:
            return
        tmp, self._tmp = self._tmp, None
        tmp.cleanup()
        log("DEBUG", f"Removed {self.tmp_dir}")

    def create_domain(self, vcpus: Optional[VcpuConfig] = None, memory_size: int = DEFAULT_RAM_SIZE) -> Path:
        """Render the domain XML and write it into the scratch directory."""
        if self.closed:
            raise HarnessError(f"Guest {self.name} is already closed")
        xml = build_domain_xml(
            self.identity,
            self.network,
            vcpus or VcpuConfig(),
            memory_size,
            self.kernel_path,
            self.disk_config,
        )
        return write_domain_xml(self.tmp_dir / DOMAIN_XML_NAME, xml)

    def wait_vm_boot(self, custom_timeout: Optional[float] = None) -> float:
        """Block until the guest is up; returns the seconds it took."""
        timeout = self.config.boot_timeout if custom_timeout is None else custom_timeout
        if self.config.boot_probe != "listener":
            return self.channel.wait_boot(self.network.guest_ip, timeout)
        listener = BootListener(self.network.host_ip, self.network.tcp_listener_port)
        start = time.monotonic()
        listener.wait(timeout, self.network.guest_ip)
        elapsed = time.monotonic() - start
        log("SUCCESS", f"Guest {self.network.guest_ip} is up ({elapsed:.1f}s)")
        return elapsed

    def ssh_command(self, command: str) -> str:
        return self.channel.run(command, self.network.guest_ip)

    def get_cpu_count(self) -> int:
        return self.channel.query_numeric(CPU_COUNT_COMMAND, self.network.guest_ip)

    def get_total_memory(self) -> int:
        """MemTotal in kB as the guest kernel reports it."""
        return self.channel.query_numeric(MEMORY_TOTAL_COMMAND, self.network.guest_ip)

    def online_cpu(self, index: int) -> None:
        self.ssh_command(f"echo 1 | sudo tee /sys/bus/cpu/devices/cpu{index}/online")

    def dmesg_line(self, needle: str) -> str:
        """First kernel log line containing ``needle``, without its timestamp."""
        output = self.ssh_command(f'dmesg | grep "{needle}" | sed "s/\\[\\ *[0-9.]*\\] //"')
        lines = output.strip().splitlines()
        return lines[0].strip() if lines else ""
