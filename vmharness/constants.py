"""Global constants and path configuration for vmharness."""

from __future__ import annotations

import os
import platform
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(os.environ.get("VMHARNESS_CONFIG", "/etc/vmharness/harness.yaml"))

CONNECT_URI = "ch:///system"
LIBVIRTD_BIN = "libvirtd"
VIRSH_BIN = "virsh"

# Directories the daemon persists into. Removing them gives a clean slate.
LIBVIRT_PERSISTENT_DIRS = (Path("/etc/libvirt/ch"),)
LIBVIRT_RUNTIME_DIRS = (Path("/var/lib/libvirt"), Path("/var/run/libvirt"))
LIBVIRTD_PID_FILE = Path("/var/run/libvirtd.pid")
LIBVIRT_SOCKET = Path("/var/run/libvirt/libvirt-sock")

DEFAULT_WORKLOADS_DIR = Path.home() / "workloads"
FOCAL_IMAGE_NAME = "focal-server-cloudimg-amd64.raw"
KERNEL_NAMES = {
    "x86_64": "hypervisor-fw",
    "aarch64": "Image",
}
HOST_ARCH = platform.machine()

DEFAULT_NETWORK_CLASS = "192.168"
DEFAULT_TCP_LISTENER_PORT = 8000
MAX_GUEST_ID = 255
GUEST_MAC_PREFIX = "12:34:56:78:90"
L2_GUEST_MAC_PREFIXES = ("de:ad:be:ef:12", "de:ad:be:ef:34", "de:ad:be:ef:56")
NETWORK_CLASS_RE = re.compile(r"^\d{1,3}\.\d{1,3}$")

DEFAULT_RAM_SIZE = 1 << 30
HUGE_RAM_SIZE = 128 << 30
DOMAIN_GENID = "43dc0cf8-809b-4adb-9bea-a9abb5f3d90e"
DOMAIN_XML_NAME = "domain.xml"

DEFAULT_SETTLE_DELAY = 5
DEFAULT_BOOT_TIMEOUT = 120
DEFAULT_SSH_RETRIES = 6
DEFAULT_SSH_TIMEOUT = 10
DEFAULT_SSH_USER = "cloud"
DEFAULT_SSH_PASSWORD = "cloud123"
DEFAULT_TMP_PREFIX = "/tmp/ch"

READY_PROBES = {"settle", "socket", "libvirt"}
BOOT_PROBES = {"ssh", "listener"}

TRUTHY = {"1", "true", "yes", "on"}
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

_SENSITIVE_FIELDS = {"ssh_password"}
