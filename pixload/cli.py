"""Command-line entry point.

Usage:
    pixload --profile baseline
    pixload --profile baseline --vus 10 --duration 60
    pixload --profile stress --max-vus 200 --output results/stress.json
    BASE_URL=http://wallet:8080 FAIL_SAMPLE_PCT=10 python -m pixload --profile stress

Exit codes: 0 all thresholds passed, 1 a threshold failed, 2 scenario setup
failed and no load was generated.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import Any

import structlog

from pixload.config import Settings
from pixload.engine.errors import SetupFailure
from pixload.runner import LoadRun
from pixload.scenarios import PROFILES, Scenario, baseline, stress
from pixload.shared.logging import bind_run_context, setup_logging

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_SETUP_FAILED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Synthetic PIX transfer load against the wallet service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--profile",
        choices=list(PROFILES.keys()),
        required=True,
        help="Load shape to run.",
    )
    parser.add_argument("--base-url", type=str, default=None, help="Overrides BASE_URL.")
    parser.add_argument(
        "--vus", type=int, default=None, help="Baseline worker count (default: 30)."
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Baseline duration in seconds (default: 300).",
    )
    parser.add_argument(
        "--max-vus", type=int, default=None, help="Stress pool maximum (default: 500)."
    )
    parser.add_argument(
        "--output", type=str, default=None, help="Write JSON results to this file path."
    )
    parser.add_argument(
        "--log-format", choices=["console", "json"], default=None, help="Overrides LOG_FORMAT."
    )
    return parser


_BASELINE_ONLY = ("vus", "duration")
_STRESS_ONLY = ("max_vus",)


def parse_args(argv: list[str] | None = None) -> tuple[argparse.Namespace, Scenario]:
    """Parse the command line and build the scenario, reporting bad input via argparse."""
    parser = build_parser()
    args = parser.parse_args(argv)
    inapplicable = _STRESS_ONLY if args.profile == "baseline" else _BASELINE_ONLY
    given = [
        f"--{name.replace('_', '-')}" for name in inapplicable if getattr(args, name) is not None
    ]
    if given:
        parser.error(f"{', '.join(given)} not applicable to --profile {args.profile}")
    try:
        scenario = build_scenario(args)
    except ValueError as exc:
        parser.error(str(exc))
    return args, scenario


def build_scenario(args: argparse.Namespace) -> Scenario:
    if args.profile == "baseline":
        kwargs: dict[str, Any] = {}
        if args.vus is not None:
            kwargs["workers"] = args.vus
        if args.duration is not None:
            kwargs["duration"] = args.duration
        return baseline(**kwargs)
    if args.max_vus is not None:
        return stress(max_workers=args.max_vus)
    return stress()


def build_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.log_format:
        overrides["log_format"] = args.log_format
    settings = Settings(**overrides)
    if settings.scenario_name == "unspecified":
        settings = settings.model_copy(update={"scenario_name": args.profile})
    return settings


async def async_main(args: argparse.Namespace, scenario: Scenario | None = None) -> int:
    settings = build_settings(args)
    setup_logging(settings.log_level, settings.log_format)
    bind_run_context(settings.run_id, settings.scenario_name)

    run = LoadRun(settings, scenario or build_scenario(args))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, run.stop)

    try:
        results = await run.run()
    except SetupFailure as exc:
        logger.error("run_aborted", reason=str(exc), step=exc.step, status=exc.status)
        return EXIT_SETUP_FAILED

    _print_summary(results)

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(results, indent=2, default=str))
        logger.info("results_written", path=str(path))
    else:
        print(json.dumps(results, indent=2, default=str))

    return EXIT_OK if results["overall_pass"] else EXIT_THRESHOLDS_FAILED


def _print_summary(results: dict[str, Any]) -> None:
    """Human-readable summary printed to stderr."""
    line = "-" * 60
    print(f"\n{line}", file=sys.stderr)
    print("  LOAD TEST RESULTS SUMMARY", file=sys.stderr)
    print(f"{line}", file=sys.stderr)

    summary = results.get("summary", {})
    print(f"  Iterations:     {summary.get('completed', 0)}", file=sys.stderr)
    print(f"  Crashed:        {summary.get('crashed', 0)}", file=sys.stderr)
    print(f"  Dropped:        {summary.get('dropped', 0)}", file=sys.stderr)
    print(f"  Samples logged: {summary.get('samples_emitted', 0)}", file=sys.stderr)

    metrics = results.get("metrics", {})
    trends = {k: v for k, v in metrics.items() if v.get("type") == "trend"}
    if trends:
        print(f"\n  {'Trend':<25} {'p95 (ms)':>10} {'avg (ms)':>10} {'Count':>8}", file=sys.stderr)
        print(f"  {'-'*25} {'-'*10} {'-'*10} {'-'*8}", file=sys.stderr)
        for name, data in trends.items():
            print(
                f"  {name:<25} {data['p95']:>10} {data['avg']:>10} {data['count']:>8}",
                file=sys.stderr,
            )

    thresholds = results.get("thresholds", [])
    if thresholds:
        status = "PASS" if results.get("overall_pass") else "FAIL"
        print(f"\n  Thresholds: {status}", file=sys.stderr)
        for t in thresholds:
            mark = "PASS" if t["pass"] else "FAIL"
            print(
                f"    [{mark}] {t['metric']}: {t['expression']} (actual={t['actual']})",
                file=sys.stderr,
            )

    print(f"{line}\n", file=sys.stderr)


def main() -> None:
    args, scenario = parse_args()
    sys.exit(asyncio.run(async_main(args, scenario)))
