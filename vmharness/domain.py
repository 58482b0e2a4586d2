"""Domain XML generation for the libvirt ch driver."""

from __future__ import annotations

from pathlib import Path
from typing import Union
from xml.etree.ElementTree import Element, SubElement, tostring

from vmharness.constants import DOMAIN_GENID
from vmharness.exceptions import HarnessError
from vmharness.models import DiskType, GuestIdentity, GuestNetworkConfig, VcpuConfig
from vmharness.utils import log

# Target device names are fixed; scenarios and cloud-init rely on them.
_DISK_TARGETS = (
    (DiskType.OPERATING_SYSTEM, "vda"),
    (DiskType.CLOUD_INIT, "vdb"),
)


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def build_domain_xml(
    identity: GuestIdentity,
    network: GuestNetworkConfig,
    vcpus: VcpuConfig,
    memory_bytes: int,
    kernel_path: Union[str, Path],
    disk_config,
) -> str:
    """Render the domain definition consumed by ``virsh create`` and ``virsh define``.

    ``disk_config`` is anything with a ``disk(DiskType) -> Optional[str]`` method.
    The function performs no I/O and is deterministic for identical inputs.
    """
    if memory_bytes <= 0:
        raise HarnessError(f"Memory size must be positive (got {memory_bytes})")

    domain = Element("domain", type="ch")
    SubElement(domain, "name").text = identity.name
    SubElement(domain, "uuid").text = identity.uuid
    SubElement(domain, "genid").text = DOMAIN_GENID
    SubElement(domain, "title").text = f"Test VM {identity.name}"
    SubElement(domain, "description").text = f"Test VM {identity.name}"

    os_el = SubElement(domain, "os")
    SubElement(os_el, "type").text = "hvm"
    SubElement(os_el, "kernel").text = str(kernel_path)

    vcpu = SubElement(domain, "vcpu", current=str(vcpus.boot))
    vcpu.text = str(vcpus.max)
    mem = SubElement(domain, "memory", unit="b")
    mem.text = str(memory_bytes)

    devices = SubElement(domain, "devices")
    for disk_type, target in _DISK_TARGETS:
        path = disk_config.disk(disk_type)
        if not path:
            raise HarnessError(f"Disk config has no {disk_type.value} disk for {identity.name}")
        disk = SubElement(devices, "disk", type="file")
        SubElement(disk, "source", file=str(path))
        SubElement(disk, "target", dev=target, bus="virtio")

    console = SubElement(devices, "console", type="pty")
    SubElement(console, "target", type="virtio", port="0")

    iface = SubElement(devices, "interface", type="ethernet")
    SubElement(iface, "mac", address=network.guest_mac)
    SubElement(iface, "model", type="virtio")
    source = SubElement(iface, "source")
    SubElement(source, "ip", address=network.host_ip, prefix="24")

    return _element_to_str(domain)


def write_domain_xml(path: Path, xml: str) -> Path:
    path.write_text(xml + "\n", encoding="utf-8")
    log("DEBUG", f"Domain XML written to {path}:\n{xml}")
    return path
