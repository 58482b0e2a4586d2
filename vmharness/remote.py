"""Remote command execution inside guests, with retries and boot detection."""

from __future__ import annotations

import re
import socket
import time
from typing import Callable, Optional

try:
    import paramiko  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("paramiko is required but not installed") from exc

from vmharness.constants import (
    DEFAULT_BOOT_TIMEOUT,
    DEFAULT_SSH_PASSWORD,
    DEFAULT_SSH_RETRIES,
    DEFAULT_SSH_TIMEOUT,
    DEFAULT_SSH_USER,
)
from vmharness.exceptions import BootTimeout, CommandError, HarnessError, ParseError
from vmharness.utils import log

BootProbe = Callable[[str, float], None]

_INTEGER_RE = re.compile(r"\d+")


class RemoteExitError(Exception):
    """The command ran but exited non-zero."""

    def __init__(self, status: int, stderr: str) -> None:
        super().__init__(f"exit status {status}: {stderr.strip()}")
        self.status = status
        self.stderr = stderr


class RemoteChannel:
    """Runs shell commands on a guest over SSH."""

    def __init__(
        self,
        user: str = DEFAULT_SSH_USER,
        password: str = DEFAULT_SSH_PASSWORD,
        port: int = 22,
        retries: int = DEFAULT_SSH_RETRIES,
        timeout: float = DEFAULT_SSH_TIMEOUT,
        retry_interval: float = 1.0,
        boot_poll_interval: float = 1.0,
    ) -> None:
        self.user = user
        self.password = password
        self.port = port
        self.retries = retries
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.boot_poll_interval = boot_poll_interval

    def _exec(self, command: str, ip: str, timeout: float) -> str:
        # ``timeout`` bounds the whole attempt: connect, banner and auth share
        # it in thirds and the command gets whatever is left.
        deadline = time.monotonic() + timeout
        stage = max(timeout / 3, 0.001)
        cli = paramiko.SSHClient()
        cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            cli.connect(
                ip,
                port=self.port,
                username=self.user,
                password=self.password,
                timeout=stage,
                banner_timeout=stage,
                auth_timeout=stage,
                look_for_keys=False,
                allow_agent=False,
            )
            remaining = max(deadline - time.monotonic(), 0.001)
            _, stdout, stderr = cli.exec_command(command, timeout=remaining)
            output = stdout.read().decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
            if status != 0:
                raise RemoteExitError(status, stderr.read().decode("utf-8", errors="replace"))
            return output
        finally:
            cli.close()

    def run(
        self,
        command: str,
        ip: str,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Run ``command`` on ``ip``; each failure is retried until ``retries`` attempts are spent."""
        attempts = max(1, self.retries if retries is None else retries)
        per_attempt = self.timeout if timeout is None else timeout
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                return self._exec(command, ip, per_attempt)
            except (paramiko.SSHException, OSError, RemoteExitError) as exc:
                last_error = str(exc) or type(exc).__name__
                log("DEBUG", f"ssh {ip} '{command}' attempt {attempt}/{attempts} failed: {last_error}")
            if attempt < attempts:
                time.sleep(self.retry_interval)
        raise CommandError(command, ip, attempts, last_error)

    def ssh_probe(self, ip: str, timeout: float) -> None:
        self.run("true", ip, retries=1, timeout=timeout)

    def wait_boot(
        self,
        ip: str,
        max_wait: Optional[float] = None,
        probe: Optional[BootProbe] = None,
    ) -> float:
        """Poll ``probe`` until it succeeds; returns the seconds it took.

        The probe is attempted at least once. Raises ``BootTimeout`` once
        ``max_wait`` (default 120s) has elapsed without a success.
        Each attempt gets no more than the time left before the deadline.
        """
        limit = DEFAULT_BOOT_TIMEOUT if max_wait is None else max_wait
        probe = probe or self.ssh_probe
        start = time.monotonic()
        deadline = start + limit
        last_error = ""
        while True:
            remaining = max(deadline - time.monotonic(), 0.0)
            try:
                probe(ip, min(self.timeout, remaining))
            except HarnessError as exc:
                last_error = str(exc)
            else:
                elapsed = time.monotonic() - start
                log("SUCCESS", f"Guest {ip} is up ({elapsed:.1f}s)")
                return elapsed
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BootTimeout(ip, limit, last_error)
            time.sleep(min(self.boot_poll_interval, remaining))

    def query_numeric(
        self,
        command: str,
        ip: str,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> int:
        output = self.run(command, ip, retries=retries, timeout=timeout)
        numbers = _INTEGER_RE.findall(output.strip())
        if len(numbers) != 1:
            raise ParseError(command, output)
        return int(numbers[0])


class BootListener:
    """Waits for a booted guest to connect back and announce itself.

    The guest's cloud-init sends a short message to ``host_ip:port`` exactly
    once, at the end of its first boot. The socket stays bound for the whole
    wait.
    """

    def __init__(self, host_ip: str, port: int) -> None:
        self.host_ip = host_ip
        self.port = port

    def wait(self, timeout: float, ip: str = "") -> str:
        target = ip or self.host_ip
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                server.bind((self.host_ip, self.port))
            except OSError as exc:
                raise HarnessError(f"Cannot listen on {self.host_ip}:{self.port}: {exc}") from exc
            server.listen(1)
            server.settimeout(max(timeout, 0.001))
            try:
                conn, _ = server.accept()
            except socket.timeout as exc:
                raise BootTimeout(target, timeout, "no boot announcement received") from exc
            with conn:
                conn.settimeout(max(timeout, 0.001))
                try:
                    message = conn.recv(1024).decode("utf-8", errors="replace")
                except socket.timeout as exc:
                    raise BootTimeout(target, timeout, "boot announcement was empty") from exc
        log("DEBUG", f"Boot announcement from {target}: {message!r}")
        return message
