"""Disk preparation for test guests: OS image copy plus a cloud-init seed."""

from __future__ import annotations

import shutil
import tempfile
import textwrap
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmharness.constants import DEFAULT_SSH_PASSWORD, DEFAULT_SSH_USER, DEFAULT_WORKLOADS_DIR
from vmharness.exceptions import HarnessError
from vmharness.models import DiskType, GuestNetworkConfig
from vmharness.utils import hash_password, log, run


class DiskConfig(ABC):
    """Prepares the disks of one guest and resolves them by role."""

    @abstractmethod
    def prepare_files(self, tmp_dir: Path, network: GuestNetworkConfig) -> None:
        ...

    @abstractmethod
    def disk(self, disk_type: DiskType) -> Optional[str]:
        ...


class UbuntuDiskConfig(DiskConfig):
    def __init__(
        self,
        image_name: str,
        workloads_dir: Path = DEFAULT_WORKLOADS_DIR,
        user: str = DEFAULT_SSH_USER,
        password: str = DEFAULT_SSH_PASSWORD,
    ) -> None:
        self.image_name = image_name
        self.workloads_dir = Path(workloads_dir)
        self.user = user
        self.password = password
        self._disks: Dict[DiskType, str] = {}

    def disk(self, disk_type: DiskType) -> Optional[str]:
        return self._disks.get(disk_type)

    def prepare_files(self, tmp_dir: Path, network: GuestNetworkConfig) -> None:
        source = self.workloads_dir / self.image_name
        if not source.is_file():
            raise HarnessError(
                f"OS image not found: {source}\n"
                "Download the workload image into WORKLOADS_DIR before running the scenarios."
            )
        os_disk = tmp_dir / "osdisk.img"
        log("DEBUG", f"Copying {source} -> {os_disk}")
        shutil.copyfile(source, os_disk)
        self._disks[DiskType.OPERATING_SYSTEM] = str(os_disk)

        seed = tmp_dir / "cloudinit"
        self._write_seed(seed, network)
        self._disks[DiskType.CLOUD_INIT] = str(seed)

    def user_data(self, network: GuestNetworkConfig) -> str:
        announce = f"echo -n booted > /dev/tcp/{network.host_ip}/{network.tcp_listener_port}"
        cfg = {
            "users": [
                {
                    "name": self.user,
                    "lock_passwd": False,
                    "sudo": "ALL=(ALL) NOPASSWD:ALL",
                    "shell": "/bin/bash",
                    "passwd": hash_password(self.password),
                }
            ],
            "chpasswd": {"expire": False},
            "ssh_pwauth": True,
            "runcmd": [["bash", "-c", announce]],
        }
        return "#cloud-config\n" + yaml.safe_dump(cfg, sort_keys=False, default_flow_style=False)

    @staticmethod
    def network_config(network: GuestNetworkConfig) -> str:
        cfg = {
            "version": 1,
            "config": [
                {
                    "type": "physical",
                    "name": "eth0",
                    "mac_address": network.guest_mac,
                    "subnets": [
                        {
                            "type": "static",
                            "address": f"{network.guest_ip}/24",
                            "gateway": network.host_ip,
                        }
                    ],
                }
            ],
        }
        return yaml.safe_dump(cfg, sort_keys=False, default_flow_style=False)

    def _write_seed(self, seed: Path, network: GuestNetworkConfig) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            meta_data = (
                textwrap.dedent(
                    f"""
                instance-id: iid-{network.guest_ip}
                local-hostname: cloud
                """
                ).strip()
                + "\n"
            )
            (tmp / "meta-data").write_text(meta_data, encoding="utf-8")
            (tmp / "user-data").write_text(self.user_data(network), encoding="utf-8")
            (tmp / "network-config").write_text(self.network_config(network), encoding="utf-8")

            cmd = [
                "genisoimage",
                "-output",
                str(seed),
                "-volid",
                "cidata",
                "-joliet",
                "-rock",
                str(tmp / "meta-data"),
                str(tmp / "user-data"),
                str(tmp / "network-config"),
            ]
            run(cmd, capture_output=True)
