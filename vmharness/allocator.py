"""Guest id allocation and per-guest network addressing."""

from __future__ import annotations

import threading
import uuid

from vmharness.constants import (
    DEFAULT_TCP_LISTENER_PORT,
    GUEST_MAC_PREFIX,
    L2_GUEST_MAC_PREFIXES,
    MAX_GUEST_ID,
    NETWORK_CLASS_RE,
)
from vmharness.exceptions import AllocatorExhausted, HarnessError
from vmharness.models import GuestIdentity, GuestNetworkConfig


class IdAllocator:
    """Hands out guest ids 1..255. Ids are never reused within the process."""

    def __init__(self, start: int = 1) -> None:
        self._lock = threading.Lock()
        self._next = start

    def next_id(self) -> int:
        with self._lock:
            value = self._next
            if value > MAX_GUEST_ID:
                raise AllocatorExhausted(
                    f"All {MAX_GUEST_ID} guest ids are used up; the /24 addressing scheme cannot isolate more guests"
                )
            self._next = value + 1
        return value


_ALLOCATOR = IdAllocator()


def next_id() -> int:
    return _ALLOCATOR.next_id()


def new_identity(guest_id: int) -> GuestIdentity:
    return GuestIdentity(id=guest_id, name=f"vm-{guest_id}", uuid=str(uuid.uuid4()))


def derive_network(net_class: str, guest_id: int) -> GuestNetworkConfig:
    """Derive the addressing for a guest. Same inputs always give the same result."""
    if not NETWORK_CLASS_RE.match(net_class):
        raise HarnessError(f"Invalid network class '{net_class}'. Expected two dotted octets, e.g. '192.168'")
    if not 1 <= guest_id <= MAX_GUEST_ID:
        raise HarnessError(f"Guest id must be within 1..{MAX_GUEST_ID} (got {guest_id})")

    subnet = f"{net_class}.{guest_id}"
    low = f"{guest_id:02x}"
    mac1, mac2, mac3 = (f"{prefix}:{low}" for prefix in L2_GUEST_MAC_PREFIXES)
    return GuestNetworkConfig(
        host_ip=f"{subnet}.1",
        guest_ip=f"{subnet}.2",
        l2_guest_ip1=f"{subnet}.3",
        l2_guest_ip2=f"{subnet}.4",
        l2_guest_ip3=f"{subnet}.5",
        guest_mac=f"{GUEST_MAC_PREFIX}:{low}",
        l2_guest_mac1=mac1,
        l2_guest_mac2=mac2,
        l2_guest_mac3=mac3,
        tcp_listener_port=DEFAULT_TCP_LISTENER_PORT + guest_id,
    )
