"""Custom exceptions for vmharness."""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class AllocatorExhausted(HarnessError):
    """Raised when no guest id is left in the 1..255 range."""


class SpawnError(HarnessError):
    """An external process (daemon or CLI client) could not be launched."""


class CommandError(HarnessError):
    """A remote command kept failing after all retries were used up."""

    def __init__(self, command: str, ip: str, attempts: int, reason: str) -> None:
        super().__init__(f"Command '{command}' on {ip} failed after {attempts} attempt(s): {reason}")
        self.command = command
        self.ip = ip
        self.attempts = attempts
        self.reason = reason


class BootTimeout(HarnessError):
    """The guest never became reachable before the boot deadline."""

    def __init__(self, ip: str, timeout: float, reason: str = "") -> None:
        message = f"Guest {ip} did not boot within {timeout:g}s"
        if reason:
            message += f" (last error: {reason})"
        super().__init__(message)
        self.ip = ip
        self.timeout = timeout


class ParseError(HarnessError):
    """The guest answered, but not with the number we asked for."""

    def __init__(self, command: str, output: str) -> None:
        super().__init__(f"Could not parse integer from '{command}' output: {output!r}")
        self.command = command
        self.output = output
