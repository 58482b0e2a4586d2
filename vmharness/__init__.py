"""vmharness package."""

__all__ = [
    "allocator",
    "cli",
    "config",
    "constants",
    "control",
    "disks",
    "domain",
    "exceptions",
    "guest",
    "models",
    "remote",
    "scenario",
    "scenarios",
    "utils",
]
