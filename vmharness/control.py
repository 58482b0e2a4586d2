"""Control-plane processes: the libvirtd daemon and one-shot virsh invocations."""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from vmharness.constants import (
    CONNECT_URI,
    LIBVIRT_PERSISTENT_DIRS,
    LIBVIRT_RUNTIME_DIRS,
    LIBVIRT_SOCKET,
    LIBVIRTD_BIN,
    LIBVIRTD_PID_FILE,
    VIRSH_BIN,
)
from vmharness.exceptions import HarnessError, SpawnError
from vmharness.models import CommandResult
from vmharness.utils import decode_output, log, remove_path, wait_for_path


class DaemonController:
    """Starts, probes and kills the management daemon."""

    def __init__(
        self,
        binary: str = LIBVIRTD_BIN,
        connect_uri: str = CONNECT_URI,
        settle_delay: float = 5,
        ready_probe: str = "settle",
        socket_path: Path = LIBVIRT_SOCKET,
    ) -> None:
        self.binary = binary
        self.connect_uri = connect_uri
        self.settle_delay = settle_delay
        self.ready_probe = ready_probe
        self.socket_path = socket_path
        self.process: Optional[subprocess.Popen] = None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def spawn(self) -> subprocess.Popen:
        if self.running:
            raise HarnessError(f"{self.binary} is already running (pid {self.process.pid})")
        log("DEBUG", f"Running: {self.binary}")
        try:
            self.process = subprocess.Popen(
                [self.binary],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to launch {self.binary}: {exc}") from exc
        log("INFO", f"{self.binary} spawned (pid {self.process.pid})")
        return self.process

    def wait_ready(self) -> None:
        if self.ready_probe == "settle":
            time.sleep(self.settle_delay)
        elif self.ready_probe == "socket":
            if not wait_for_path(self.socket_path, timeout=self.settle_delay * 3):
                self._not_ready(f"control socket {self.socket_path} did not appear")
        elif self.ready_probe == "libvirt":
            self._wait_for_connection()
        else:
            raise HarnessError(f"Unknown daemon readiness probe '{self.ready_probe}'")
        if self.process is not None and self.process.poll() is not None:
            self._not_ready(f"exited prematurely (code {self.process.returncode})")

    def _wait_for_connection(self) -> None:
        try:
            import libvirt  # type: ignore
        except ImportError as exc:
            raise HarnessError(
                "READY_PROBE=libvirt needs the libvirt python bindings (pip install 'vmharness[libvirt]')"
            ) from exc

        deadline = time.time() + self.settle_delay * 3
        last_error = ""
        while time.time() < deadline:
            try:
                conn = libvirt.open(self.connect_uri)
            except libvirt.libvirtError as exc:
                last_error = str(exc)
            else:
                if conn is not None:
                    conn.close()
                    return
            time.sleep(0.5)
        self._not_ready(f"no connection to {self.connect_uri} ({last_error or 'timed out'})")

    def _not_ready(self, reason: str) -> None:
        stdout, stderr = self.terminate()
        raise HarnessError(
            f"{self.binary} is not ready: {reason}\n"
            f"  {self.binary} stdout:\n{stdout}\n"
            f"  {self.binary} stderr:\n{stderr}"
        )

    def terminate(self) -> Tuple[str, str]:
        """Kill the daemon and return whatever it printed."""
        proc = self.process
        if proc is None:
            return "", ""
        self.process = None
        if proc.poll() is None:
            proc.kill()
        stdout, stderr = proc.communicate()
        stdout_text, stderr_text = decode_output(stdout), decode_output(stderr)
        log("INFO", f"{self.binary} (pid {proc.pid}) stopped with code {proc.returncode}")
        if stdout_text:
            log("DEBUG", f"{self.binary} stdout:\n{stdout_text}")
        if stderr_text:
            log("DEBUG", f"{self.binary} stderr:\n{stderr_text}")
        return stdout_text, stderr_text

    @staticmethod
    def clear_state(persistent: bool = True) -> List[Path]:
        """Remove daemon state so the next start begins with no guests defined."""
        targets: List[Path] = []
        if persistent:
            targets.extend(LIBVIRT_PERSISTENT_DIRS)
        targets.extend(LIBVIRT_RUNTIME_DIRS)
        targets.append(LIBVIRTD_PID_FILE)
        removed = []
        for target in targets:
            try:
                if remove_path(target):
                    removed.append(target)
            except OSError as exc:
                raise HarnessError(f"Cannot clear daemon state at {target}: {exc}") from exc
        if removed:
            log("DEBUG", f"Removed daemon state: {', '.join(str(p) for p in removed)}")
        return removed


class VirshClient:
    """One-shot ``virsh`` invocations against a fixed connection URI."""

    def __init__(self, binary: str = VIRSH_BIN, connect_uri: str = CONNECT_URI) -> None:
        self.binary = binary
        self.connect_uri = connect_uri

    def invoke(self, args: Sequence[str]) -> CommandResult:
        cmd = [self.binary, "-c", self.connect_uri, *args]
        log("DEBUG", f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.run(cmd, capture_output=True)
        except OSError as exc:
            raise SpawnError(f"Failed to launch {self.binary}: {exc}") from exc
        result = CommandResult(proc.returncode, decode_output(proc.stdout), decode_output(proc.stderr))
        label = args[0] if args else self.binary
        log("DEBUG", f"{label} exit={result.exit_status}\n{label} stdout:\n{result.stdout}\n{label} stderr:\n{result.stderr}")
        return result

    def create(self, domain_path: Path) -> CommandResult:
        return self.invoke(["create", str(domain_path)])

    def define(self, domain_path: Path) -> CommandResult:
        return self.invoke(["define", str(domain_path)])

    def destroy(self, name: str) -> CommandResult:
        return self.invoke(["destroy", name])

    def undefine(self, name: str) -> CommandResult:
        return self.invoke(["undefine", name])

    def list_all(self) -> CommandResult:
        return self.invoke(["list", "--all"])

    def setvcpus(self, name: str, count: int) -> CommandResult:
        return self.invoke(["setvcpus", name, str(count)])

    def uri(self) -> CommandResult:
        return self.invoke(["uri"])


def _describe(result: CommandResult) -> str:
    return f"exit={result.exit_status}\nstdout:\n{result.stdout}\nstderr:\n{result.stderr}"


def expect_output(result: CommandResult, prefix: str) -> CommandResult:
    """Assert the trimmed stdout starts with ``prefix``."""
    if not result.starts_with(prefix):
        raise AssertionError(f"Expected output starting with '{prefix}'\n{_describe(result)}")
    return result


def expect_exact(result: CommandResult, expected: str) -> CommandResult:
    if result.stdout_text != expected:
        raise AssertionError(f"Expected output '{expected}'\n{_describe(result)}")
    return result


def listing_pattern(name: str, state: str) -> "re.Pattern[str]":
    return re.compile(rf"\s+-\s+{re.escape(name)}\s+{re.escape(state)}")


def is_listed(result: CommandResult, name: str) -> bool:
    """True if ``virsh list --all`` output has a row for ``name``."""
    return re.search(rf"\s{re.escape(name)}(\s|$)", result.stdout) is not None


def expect_listed(result: CommandResult, name: str, state: str) -> CommandResult:
    if not listing_pattern(name, state).search(result.stdout.strip()):
        raise AssertionError(f"Expected '{name}' listed as '{state}'\n{_describe(result)}")
    return result


def expect_not_listed(result: CommandResult, name: str) -> CommandResult:
    if is_listed(result, name):
        raise AssertionError(f"Expected '{name}' to be absent from the listing\n{_describe(result)}")
    return result
