"""Utility functions for vmharness."""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Iterator, List, Optional

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

from vmharness.constants import _LOG_VERBOSE
from vmharness.exceptions import HarnessError

_log_context = threading.local()


def log(level: str, message: str) -> None:
    """Lightweight structured logging, tagged with the current scenario when one is active."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    tag = getattr(_log_context, "tag", None)
    prefix = f"[{tag}] " if tag else ""
    print(f"{colour}[{level}]{reset} {prefix}{message}", flush=True)


@contextlib.contextmanager
def log_tag(tag: str) -> Iterator[None]:
    """Prefix every log line emitted from this thread with ``tag``."""
    previous = getattr(_log_context, "tag", None)
    _log_context.tag = tag
    try:
        yield
    finally:
        _log_context.tag = previous


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise HarnessError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise HarnessError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise HarnessError(f"{name} must be <= {max_val} (got {value})")
    return value


def wait_for_path(path: Path, timeout: float = 10.0, interval: float = 0.1) -> bool:
    """Poll for a filesystem path to show up (e.g., libvirt socket)."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if path.exists():
            return True
        time.sleep(interval)
    return False


def remove_path(path: Path) -> bool:
    """Remove a file or directory tree. Returns False when nothing was there."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def hash_password(password: str) -> str:
    """Generate a bcrypt hash for cloud-init."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def decode_output(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
