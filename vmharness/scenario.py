"""Scenario sequencing: clean state, daemon up, body, unconditional teardown."""

from __future__ import annotations

import contextlib
from typing import Callable, Iterator, List, Optional

from vmharness.constants import DEFAULT_RAM_SIZE
from vmharness.control import DaemonController, VirshClient
from vmharness.disks import DiskConfig, UbuntuDiskConfig
from vmharness.guest import Guest
from vmharness.models import CommandResult, HarnessConfig, VcpuConfig
from vmharness.utils import log, log_tag


class ScenarioContext:
    """What a scenario body gets to work with.

    Every guest started through ``create`` is remembered until it has been
    destroyed, so ``teardown`` can destroy whatever the body left running.
    """

    def __init__(
        self,
        config: HarnessConfig,
        name: str,
        daemon: Optional[DaemonController] = None,
        virsh: Optional[VirshClient] = None,
        disk_factory: Optional[Callable[[], DiskConfig]] = None,
    ) -> None:
        self.config = config
        self.name = name
        self.daemon = daemon or DaemonController(
            binary=config.libvirtd_bin,
            connect_uri=config.connect_uri,
            settle_delay=config.settle_delay,
            ready_probe=config.ready_probe,
        )
        self.virsh = virsh or VirshClient(binary=config.virsh_bin, connect_uri=config.connect_uri)
        self.disk_factory = disk_factory or self._default_disks
        self.guests: List[Guest] = []
        self.running: List[str] = []

    def _default_disks(self) -> DiskConfig:
        return UbuntuDiskConfig(
            self.config.os_image,
            workloads_dir=self.config.workloads_dir,
            user=self.config.ssh_user,
            password=self.config.ssh_password,
        )

    def start_daemon(self) -> None:
        self.daemon.spawn()
        self.daemon.wait_ready()

    def restart_daemon(self, clear_runtime_state: bool = False) -> None:
        """Kill and respawn the daemon; optionally drop its non-persistent state in between."""
        self.daemon.terminate()
        if clear_runtime_state:
            DaemonController.clear_state(persistent=False)
        self.start_daemon()

    def new_guest(self, guest_id: Optional[int] = None) -> Guest:
        guest = Guest(self.disk_factory(), self.config, guest_id=guest_id)
        self.guests.append(guest)
        return guest

    def create(
        self,
        guest: Guest,
        vcpus: Optional[VcpuConfig] = None,
        memory_size: int = DEFAULT_RAM_SIZE,
    ) -> CommandResult:
        domain_path = guest.create_domain(vcpus, memory_size)
        if guest.name not in self.running:
            self.running.append(guest.name)
        return self.virsh.create(domain_path)

    def define(
        self,
        guest: Guest,
        vcpus: Optional[VcpuConfig] = None,
        memory_size: int = DEFAULT_RAM_SIZE,
    ) -> CommandResult:
        return self.virsh.define(guest.create_domain(vcpus, memory_size))

    def destroy(self, guest: Guest) -> CommandResult:
        result = self.virsh.destroy(guest.name)
        if result.ok and guest.name in self.running:
            self.running.remove(guest.name)
        return result

    def teardown(self) -> None:
        """Best-effort cleanup. Failures are logged and never raised."""
        for name in list(self.running):
            try:
                result = self.virsh.destroy(name)
            except Exception as exc:
                log("WARN", f"Cleanup: destroy {name} failed: {exc}")
                continue
            if result.ok:
                self.running.remove(name)
            else:
                log("WARN", f"Cleanup: destroy {name} exited {result.exit_status}: {result.stderr.strip()}")
        try:
            stdout, stderr = self.daemon.terminate()
        except Exception as exc:
            log("WARN", f"Cleanup: stopping {self.daemon.binary} failed: {exc}")
        else:
            if stderr.strip():
                log("INFO", f"{self.daemon.binary} stderr:\n{stderr.strip()}")
        for guest in self.guests:
            try:
                guest.close()
            except Exception as exc:
                log("WARN", f"Cleanup: removing {guest.tmp_dir} failed: {exc}")


@contextlib.contextmanager
def scenario_context(config: HarnessConfig, name: str, **kwargs) -> Iterator[ScenarioContext]:
    """Run a scenario body between a clean daemon start and an unconditional teardown.

    An exception from the body propagates unchanged once teardown is done.
    """
    ctx = ScenarioContext(config, name, **kwargs)
    with log_tag(name):
        DaemonController.clear_state()
        try:
            ctx.start_daemon()
            yield ctx
        except Exception as exc:
            log("ERROR", f"Scenario failed: {exc}")
            raise
        finally:
            ctx.teardown()
