"""Tests for vmharness.cli module."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

from vmharness import cli
from vmharness.exceptions import HarnessError


@pytest.fixture
def fake_scenarios():
    calls = []

    def passing(cfg):
        """Always passes."""
        calls.append(("passing", threading.current_thread().name))

    def failing(cfg):
        calls.append(("failing", threading.current_thread().name))
        raise AssertionError("Expected output starting with 'Domain vm-1 created'")

    registry = {"passing": passing, "failing": failing}
    with patch.dict(cli.SCENARIOS, registry, clear=True):
        yield calls


class TestListScenarios:
    def test_prints_names_and_summaries(self, fake_scenarios, capsys):
        cli.list_scenarios()
        out = capsys.readouterr().out.splitlines()
        assert out[0].split() == ["passing", "Always", "passes."]
        assert out[1].strip() == "failing"


class TestShowConfig:
    def test_masks_sensitive_fields(self, harness_config, capsys):
        harness_config.ssh_password = "s3cret"
        cli.show_config(harness_config)
        out = capsys.readouterr().out
        assert "s3cret" not in out
        assert "ssh_password: ********" in out
        assert "ssh_user: cloud" in out
        assert "connect_uri: ch:///system" in out


class TestCheckEnvironment:
    def test_everything_present(self, harness_config):
        harness_config.kernel_path.parent.mkdir(parents=True)
        harness_config.kernel_path.write_bytes(b"fw")
        (harness_config.workloads_dir / harness_config.os_image).write_bytes(b"img")
        with patch("vmharness.cli.shutil.which", return_value="/usr/bin/x"):
            assert cli.check_environment(harness_config) == []

    def test_reports_each_problem(self, harness_config):
        with patch("vmharness.cli.shutil.which", return_value=None):
            problems = cli.check_environment(harness_config)
        assert "libvirtd not found in PATH" in problems
        assert "virsh not found in PATH" in problems
        assert "genisoimage not found in PATH" in problems
        assert any(p.startswith("kernel not found") for p in problems)
        assert any(p.startswith("OS image not found") for p in problems)


class TestRunScenarios:
    def test_outcomes_in_request_order(self, harness_config, fake_scenarios):
        outcomes = cli.run_scenarios(["failing", "passing"], harness_config)
        assert [(name, passed) for name, passed, _, _ in outcomes] == [("failing", False), ("passing", True)]
        assert "AssertionError: Expected output" in outcomes[0][3]
        assert outcomes[1][3] == ""

    def test_jobs_run_on_worker_threads(self, harness_config, fake_scenarios):
        outcomes = cli.run_scenarios(["passing", "failing"], harness_config, jobs=2)
        assert [name for name, _, _, _ in outcomes] == ["passing", "failing"]
        assert all(thread.startswith("scenario") for _, thread in fake_scenarios)

    def test_print_summary(self, capsys):
        cli.print_summary([("uri", True, 0.4, ""), ("defines", False, 6.1, "AssertionError: boom")])
        out = capsys.readouterr().out
        assert "PASS uri" in out
        assert "FAIL defines (6.1s): AssertionError: boom" in out
        assert "1 passed, 1 failed" in out


class TestMain:
    def test_list(self, fake_scenarios, capsys):
        assert cli.main(["--list"]) == 0
        assert "passing" in capsys.readouterr().out

    def test_unknown_scenario(self, fake_scenarios):
        with patch("vmharness.cli.parse_env") as mock_parse:
            assert cli.main(["nope"]) == 2
        mock_parse.assert_not_called()

    def test_bad_jobs(self, fake_scenarios):
        assert cli.main(["--jobs", "0"]) == 2

    def test_config_error(self, fake_scenarios):
        with patch("vmharness.cli.parse_env", side_effect=HarnessError("Invalid NETWORK_CLASS '10'")):
            with patch("vmharness.cli.log") as mock_log:
                assert cli.main([]) == 1
        mock_log.assert_called_once_with("ERROR", "Invalid NETWORK_CLASS '10'")

    def test_show_config(self, harness_config, fake_scenarios, capsys):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            assert cli.main(["--show-config"]) == 0
        assert "ssh_password: ********" in capsys.readouterr().out
        assert fake_scenarios == []

    def test_dry_run_problems(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            with patch("vmharness.cli.check_environment", return_value=["virsh not found in PATH"]):
                assert cli.main(["--dry-run"]) == 1
        assert fake_scenarios == []

    def test_dry_run_clean(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            with patch("vmharness.cli.check_environment", return_value=[]):
                assert cli.main(["--dry-run"]) == 0

    def test_runs_selected_scenarios(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            assert cli.main(["passing"]) == 0
        assert [name for name, _ in fake_scenarios] == ["passing"]

    def test_any_failure_exits_one(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            assert cli.main([]) == 1
        assert sorted(name for name, _ in fake_scenarios) == ["failing", "passing"]

    def test_jobs_forwarded(self, harness_config, fake_scenarios):
        runner = MagicMock(return_value=[("passing", True, 0.1, "")])
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            with patch("vmharness.cli.run_scenarios", runner):
                assert cli.main(["-j", "3", "passing"]) == 0
        runner.assert_called_once_with(["passing"], harness_config, jobs=3)

    def test_concurrent_jobs_warn_about_shared_daemon(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            with patch("vmharness.cli.log") as mock_log:
                cli.main(["-j", "2", "passing"])
        warnings = [msg for level, msg in (c.args for c in mock_log.call_args_list) if level == "WARN"]
        assert len(warnings) == 1
        assert "libvirtd" in warnings[0]

    def test_single_job_does_not_warn(self, harness_config, fake_scenarios):
        with patch("vmharness.cli.parse_env", return_value=harness_config):
            with patch("vmharness.cli.log") as mock_log:
                cli.main(["passing"])
        assert all(c.args[0] != "WARN" for c in mock_log.call_args_list)
