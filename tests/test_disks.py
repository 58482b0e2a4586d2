"""Tests for vmharness.disks module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import bcrypt
import pytest
import yaml

from vmharness.allocator import derive_network
from vmharness.disks import UbuntuDiskConfig
from vmharness.exceptions import HarnessError
from vmharness.models import DiskType

NETWORK = derive_network("192.168", 4)


@pytest.fixture
def workloads(tmp_path):
    wl = tmp_path / "workloads"
    wl.mkdir()
    (wl / "focal.raw").write_bytes(b"\xeb\x63\x90" + b"\0" * 509)
    return wl


class TestUserData:
    def test_cloud_config_user(self):
        disks = UbuntuDiskConfig("focal.raw", user="cloud", password="cloud123")
        text = disks.user_data(NETWORK)
        assert text.startswith("#cloud-config\n")
        cfg = yaml.safe_load(text)
        user = cfg["users"][0]
        assert user["name"] == "cloud"
        assert user["lock_passwd"] is False
        assert bcrypt.checkpw(b"cloud123", user["passwd"].encode())
        assert cfg["ssh_pwauth"] is True

    def test_boot_announcement(self):
        cfg = yaml.safe_load(UbuntuDiskConfig("focal.raw").user_data(NETWORK))
        assert cfg["runcmd"] == [["bash", "-c", "echo -n booted > /dev/tcp/192.168.4.1/8004"]]


class TestNetworkConfig:
    def test_static_address(self):
        cfg = yaml.safe_load(UbuntuDiskConfig.network_config(NETWORK))
        iface = cfg["config"][0]
        assert cfg["version"] == 1
        assert iface["mac_address"] == "12:34:56:78:90:04"
        assert iface["subnets"] == [{"type": "static", "address": "192.168.4.2/24", "gateway": "192.168.4.1"}]


class TestPrepareFiles:
    def test_copies_image_and_builds_seed(self, workloads, tmp_path):
        scratch = tmp_path / "ch1"
        scratch.mkdir()
        disks = UbuntuDiskConfig("focal.raw", workloads_dir=workloads)
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen["files"] = dict(zip(("meta", "user", "net"), (Path(p).read_text() for p in cmd[-3:])))

        with patch("vmharness.disks.run", side_effect=fake_run):
            disks.prepare_files(scratch, NETWORK)

        assert (scratch / "osdisk.img").read_bytes() == (workloads / "focal.raw").read_bytes()
        assert disks.disk(DiskType.OPERATING_SYSTEM) == str(scratch / "osdisk.img")
        assert disks.disk(DiskType.CLOUD_INIT) == str(scratch / "cloudinit")

        cmd = seen["cmd"]
        assert cmd[0] == "genisoimage"
        assert cmd[cmd.index("-output") + 1] == str(scratch / "cloudinit")
        assert cmd[cmd.index("-volid") + 1] == "cidata"
        assert "instance-id: iid-192.168.4.2" in seen["files"]["meta"]
        assert seen["files"]["user"].startswith("#cloud-config")
        assert "192.168.4.2/24" in seen["files"]["net"]

    def test_missing_image(self, tmp_path):
        disks = UbuntuDiskConfig("absent.raw", workloads_dir=tmp_path)
        with patch("vmharness.disks.run") as mock_run:
            with pytest.raises(HarnessError, match="OS image not found"):
                disks.prepare_files(tmp_path, NETWORK)
        mock_run.assert_not_called()
        assert disks.disk(DiskType.OPERATING_SYSTEM) is None

    def test_seed_failure_propagates(self, workloads, tmp_path):
        disks = UbuntuDiskConfig("focal.raw", workloads_dir=workloads)
        with patch("vmharness.disks.run", side_effect=FileNotFoundError("genisoimage")):
            with pytest.raises(FileNotFoundError):
                disks.prepare_files(tmp_path, NETWORK)
        assert disks.disk(DiskType.CLOUD_INIT) is None
