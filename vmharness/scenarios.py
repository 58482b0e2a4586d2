"""End-to-end scenarios exercising the ch driver through virsh."""

from __future__ import annotations

from typing import Callable, Dict

from vmharness.constants import HOST_ARCH, HUGE_RAM_SIZE
from vmharness.control import expect_exact, expect_listed, expect_not_listed, expect_output
from vmharness.models import HarnessConfig, VcpuConfig
from vmharness.scenario import scenario_context
from vmharness.utils import log

Scenario = Callable[[HarnessConfig], None]

# The guest reports MemTotal in kB; a 128 GiB guest must show at least this much.
HUGE_MEMORY_MIN_KB = 128_000_000

SMP_BOOT_LINES = {
    "x86_64": ("smpboot: Allowing", "smpboot: Allowing 4 CPUs, 2 hotplug CPUs"),
    "aarch64": ("smp: Brought up", "smp: Brought up 1 node, 2 CPUs"),
}


def _expect_equal(actual, expected, what: str) -> None:
    if actual != expected:
        raise AssertionError(f"{what}: expected {expected!r}, got {actual!r}")


def create_vm(config: HarnessConfig) -> None:
    with scenario_context(config, "create_vm") as ctx:
        guest = ctx.new_guest()
        expect_output(ctx.create(guest), f"Domain {guest.name} created")
        guest.wait_vm_boot()
        expect_output(ctx.destroy(guest), f"Domain {guest.name} destroyed")


def defines(config: HarnessConfig) -> None:
    """A defined guest survives a daemon restart and is gone once undefined."""
    with scenario_context(config, "defines") as ctx:
        guest = ctx.new_guest()
        expect_output(ctx.define(guest), f"Domain {guest.name} defined")

        # The daemon is killed, so its runtime state has to go by hand.
        ctx.restart_daemon(clear_runtime_state=True)
        expect_listed(ctx.virsh.list_all(), guest.name, "shut off")

        expect_output(ctx.virsh.undefine(guest.name), f"Domain {guest.name} has been undefined")
        expect_not_listed(ctx.virsh.list_all(), guest.name)


def libvirt_restart(config: HarnessConfig) -> None:
    """A running guest can still be destroyed after the daemon restarts."""
    with scenario_context(config, "libvirt_restart") as ctx:
        guest = ctx.new_guest()
        ctx.create(guest)
        guest.wait_vm_boot()
        ctx.restart_daemon()
        expect_output(ctx.destroy(guest), f"Domain {guest.name} destroyed")


def huge_memory(config: HarnessConfig) -> None:
    with scenario_context(config, "huge_memory") as ctx:
        guest = ctx.new_guest()
        ctx.create(guest, memory_size=HUGE_RAM_SIZE)
        guest.wait_vm_boot()
        total = guest.get_total_memory()
        log("INFO", f"{guest.name} MemTotal: {total} kB")
        if total <= HUGE_MEMORY_MIN_KB:
            raise AssertionError(f"MemTotal {total} kB is not above {HUGE_MEMORY_MIN_KB} kB")


def multi_cpu(config: HarnessConfig) -> None:
    """Boot with 2 of 4 vCPUs, hotplug up to 4, then unplug down to 1."""
    with scenario_context(config, "multi_cpu") as ctx:
        guest = ctx.new_guest()
        ctx.create(guest, vcpus=VcpuConfig(boot=2, max=4))
        guest.wait_vm_boot()

        _expect_equal(guest.get_cpu_count(), 2, "vCPUs after boot")

        smp = SMP_BOOT_LINES.get(HOST_ARCH)
        if smp is not None:
            needle, expected = smp
            _expect_equal(guest.dmesg_line(needle), expected, "kernel SMP line")

        result = ctx.virsh.setvcpus(guest.name, 4)
        _expect_equal(result.exit_status, 0, "setvcpus 4 exit status")
        guest.online_cpu(2)
        guest.online_cpu(3)
        _expect_equal(guest.get_cpu_count(), 4, "vCPUs after hotplug")

        result = ctx.virsh.setvcpus(guest.name, 1)
        _expect_equal(result.exit_status, 0, "setvcpus 1 exit status")
        _expect_equal(guest.get_cpu_count(), 1, "vCPUs after unplug")


def uri(config: HarnessConfig) -> None:
    with scenario_context(config, "uri") as ctx:
        expect_exact(ctx.virsh.uri(), config.connect_uri)


SCENARIOS: Dict[str, Scenario] = {
    "create_vm": create_vm,
    "defines": defines,
    "libvirt_restart": libvirt_restart,
    "huge_memory": huge_memory,
    "multi_cpu": multi_cpu,
    "uri": uri,
}
