"""Configuration loading and environment variable parsing for vmharness."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmharness.constants import (
    BOOT_PROBES,
    CONNECT_URI,
    DEFAULT_BOOT_TIMEOUT,
    DEFAULT_CONFIG_PATH,
    DEFAULT_NETWORK_CLASS,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_SSH_PASSWORD,
    DEFAULT_SSH_RETRIES,
    DEFAULT_SSH_TIMEOUT,
    DEFAULT_SSH_USER,
    DEFAULT_TMP_PREFIX,
    DEFAULT_WORKLOADS_DIR,
    FOCAL_IMAGE_NAME,
    HOST_ARCH,
    KERNEL_NAMES,
    LIBVIRTD_BIN,
    NETWORK_CLASS_RE,
    READY_PROBES,
    VIRSH_BIN,
)
from vmharness.exceptions import HarnessError
from vmharness.models import HarnessConfig
from vmharness.utils import get_env, log, parse_int_env

# Keys accepted in the YAML file; each maps onto the environment variable of the same name.
CONFIG_KEYS = (
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
)


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, str]:
    """Read optional YAML overrides. A missing file is not an error."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise HarnessError(f"{config_path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise HarnessError(f"{config_path} must contain a YAML mapping, got {type(data).__name__}")
    unknown = sorted(str(key) for key in data if str(key).upper() not in CONFIG_KEYS)
    if unknown:
        log("WARN", f"Ignoring unknown keys in {config_path}: {', '.join(unknown)}")
    log("INFO", f"Loaded harness settings from {config_path}")
    return {str(key).upper(): str(value) for key, value in data.items() if str(key).upper() in CONFIG_KEYS}


def _choice(name: str, default: str, choices) -> str:
    value = (get_env(name, default) or default).strip().lower()
    if value not in choices:
        supported = ", ".join(sorted(choices))
        raise HarnessError(f"Unsupported {name} '{value}'. Supported: {supported}")
    return value


def _resolve_kernel(workloads_dir: Path, defaults: Dict[str, str]) -> Path:
    explicit = get_env("KERNEL_PATH", defaults.get("KERNEL_PATH"))
    if explicit and explicit.strip():
        return Path(explicit.strip()).expanduser()
    kernel_name = get_env("KERNEL_NAME", defaults.get("KERNEL_NAME")) or KERNEL_NAMES.get(HOST_ARCH)
    if not kernel_name:
        supported = ", ".join(sorted(KERNEL_NAMES))
        raise HarnessError(
            f"No default kernel for host arch '{HOST_ARCH}' (supported: {supported}). Set KERNEL_NAME or KERNEL_PATH."
        )
    return workloads_dir / kernel_name.strip()


def parse_env(config_path: Optional[Path] = None) -> HarnessConfig:
    # Values from the YAML file only fill in what the environment leaves unset.
    defaults = load_config_file(config_path)

    def setting(name: str, default: object) -> str:
        return (get_env(name, defaults.get(name, str(default))) or str(default)).strip()

    workloads_dir = Path(setting("WORKLOADS_DIR", DEFAULT_WORKLOADS_DIR)).expanduser()

    network_class = setting("NETWORK_CLASS", DEFAULT_NETWORK_CLASS)
    if not NETWORK_CLASS_RE.match(network_class):
        raise HarnessError(f"Invalid NETWORK_CLASS '{network_class}'. Use two dotted octets, e.g. '192.168'")
    if any(int(octet) > 255 for octet in network_class.split(".")):
        raise HarnessError(f"NETWORK_CLASS '{network_class}' has an octet above 255")

    connect_uri = setting("CONNECT_URI", CONNECT_URI)
    if "://" not in connect_uri:
        raise HarnessError(f"CONNECT_URI '{connect_uri}' is not a libvirt URI (e.g. ch:///system)")

    return HarnessConfig(
        connect_uri=connect_uri,
        libvirtd_bin=setting("LIBVIRTD_BIN", LIBVIRTD_BIN),
        virsh_bin=setting("VIRSH_BIN", VIRSH_BIN),
        workloads_dir=workloads_dir,
        kernel_path=_resolve_kernel(workloads_dir, defaults),
        os_image=setting("OS_IMAGE", FOCAL_IMAGE_NAME),
        network_class=network_class,
        settle_delay=parse_int_env(
            "SETTLE_DELAY", defaults.get("SETTLE_DELAY", str(DEFAULT_SETTLE_DELAY)), min_val=0, max_val=300
        ),
        ready_probe=_choice("READY_PROBE", defaults.get("READY_PROBE", "settle"), READY_PROBES),
        boot_timeout=parse_int_env("BOOT_TIMEOUT", defaults.get("BOOT_TIMEOUT", str(DEFAULT_BOOT_TIMEOUT))),
        boot_probe=_choice("BOOT_PROBE", defaults.get("BOOT_PROBE", "ssh"), BOOT_PROBES),
        ssh_retries=parse_int_env("SSH_RETRIES", defaults.get("SSH_RETRIES", str(DEFAULT_SSH_RETRIES))),
        ssh_timeout=parse_int_env("SSH_TIMEOUT", defaults.get("SSH_TIMEOUT", str(DEFAULT_SSH_TIMEOUT))),
        ssh_user=setting("SSH_USER", DEFAULT_SSH_USER),
        ssh_password=get_env("SSH_PASSWORD", defaults.get("SSH_PASSWORD", DEFAULT_SSH_PASSWORD)) or DEFAULT_SSH_PASSWORD,
        tmp_prefix=setting("TMP_PREFIX", DEFAULT_TMP_PREFIX) or DEFAULT_TMP_PREFIX,
    )
