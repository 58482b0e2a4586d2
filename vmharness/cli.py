"""CLI entry points for vmharness."""

from __future__ import annotations

import argparse
import dataclasses
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from vmharness.config import parse_env
from vmharness.constants import _SENSITIVE_FIELDS
from vmharness.exceptions import HarnessError
from vmharness.models import HarnessConfig
from vmharness.scenarios import SCENARIOS
from vmharness.utils import log

ScenarioOutcome = Tuple[str, bool, float, str]


def list_scenarios() -> None:
    max_key = max(len(k) for k in SCENARIOS)
    for key, func in SCENARIOS.items():
        doc = (func.__doc__ or "").strip().splitlines()
        summary = doc[0] if doc else ""
        print(f"  {key:<{max_key}}  {summary}".rstrip())


def show_config(cfg: HarnessConfig) -> None:
    """Print the resolved harness configuration and exit."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if field.name in _SENSITIVE_FIELDS:
            print(f"  {field.name}: ********")
        else:
            print(f"  {field.name}: {value}")


def check_environment(cfg: HarnessConfig) -> List[str]:
    """Return the problems that would stop the scenarios from running."""
    problems: List[str] = []
    for binary in (cfg.libvirtd_bin, cfg.virsh_bin, "genisoimage"):
        if shutil.which(binary) is None:
            problems.append(f"{binary} not found in PATH")
    if not cfg.kernel_path.is_file():
        problems.append(f"kernel not found: {cfg.kernel_path}")
    image = cfg.workloads_dir / cfg.os_image
    if not image.is_file():
        problems.append(f"OS image not found: {image}")
    return problems


def run_scenario(name: str, cfg: HarnessConfig) -> ScenarioOutcome:
    start = time.monotonic()
    try:
        SCENARIOS[name](cfg)
    except Exception as exc:
        return name, False, time.monotonic() - start, f"{type(exc).__name__}: {exc}"
    return name, True, time.monotonic() - start, ""


def run_scenarios(names: List[str], cfg: HarnessConfig, jobs: int = 1) -> List[ScenarioOutcome]:
    """Run scenarios, ``jobs`` at a time; each one runs start to finish on its own thread."""
    if jobs <= 1:
        return [run_scenario(name, cfg) for name in names]
    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="scenario") as pool:
        futures = [pool.submit(run_scenario, name, cfg) for name in names]
        return [future.result() for future in futures]


def print_summary(outcomes: List[ScenarioOutcome]) -> None:
    for name, passed, elapsed, error in outcomes:
        if passed:
            log("SUCCESS", f"PASS {name} ({elapsed:.1f}s)")
        else:
            log("ERROR", f"FAIL {name} ({elapsed:.1f}s): {error}")
    failed = sum(1 for _, passed, _, _ in outcomes if not passed)
    log("INFO", f"{len(outcomes) - failed} passed, {failed} failed")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Exercise the libvirt ch driver through virsh")
    parser.add_argument("scenarios", nargs="*", metavar="SCENARIO", help="Scenarios to run (default: all)")
    parser.add_argument("--list", action="store_true", help="List available scenarios and exit")
    parser.add_argument("--show-config", action="store_true", help="Show resolved harness configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate config and environment, then exit")
    parser.add_argument(
        "--jobs",
        "-j",
        type=int,
        default=1,
        help="Number of scenarios to run concurrently (each one restarts the shared daemon)",
    )
    args = parser.parse_args(argv)

    if args.list:
        list_scenarios()
        return 0

    unknown = [name for name in args.scenarios if name not in SCENARIOS]
    if unknown:
        log("ERROR", f"Unknown scenario(s): {', '.join(unknown)}. Use --list to see them.")
        return 2
    if args.jobs < 1:
        log("ERROR", f"--jobs must be >= 1 (got {args.jobs})")
        return 2

    try:
        cfg = parse_env()
    except HarnessError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    if args.dry_run:
        problems = check_environment(cfg)
        for problem in problems:
            log("ERROR", problem)
        if problems:
            return 1
        log("SUCCESS", "Dry run complete: configuration and environment look good")
        return 0

    names = args.scenarios or list(SCENARIOS)
    if args.jobs > 1:
        log(
            "WARN",
            f"--jobs {args.jobs}: every scenario restarts the shared {cfg.libvirtd_bin} and clears its state, "
            "so concurrent scenarios can kill each other's daemon",
        )
    log("INFO", f"Running {len(names)} scenario(s) against {cfg.connect_uri}")
    outcomes = run_scenarios(names, cfg, jobs=args.jobs)
    print_summary(outcomes)
    return 0 if all(passed for _, passed, _, _ in outcomes) else 1
