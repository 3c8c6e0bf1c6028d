#!/usr/bin/env python3
"""Run the IPTV auto-update pipeline.

Subcommands:
- run: execute checkout, provisioning, collector, change detection,
  commit/push and artifact publication once
- next-run: print the next scheduled run time (UTC) and its cron expression
- artifacts list / artifacts extract: inspect retained artifact bundles
- history: list recorded runs

Exit code behavior:
- 0 when the run succeeded or the trigger does not start a run
- 1 when the run failed
- 2 for usage errors
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional


ROOT_DIR = Path(__file__).resolve().parents[1]
root_str = str(ROOT_DIR)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from src.utils.env_file import load_env_file_lenient  # noqa: E402

load_env_file_lenient()

from loguru import logger  # noqa: E402

from src.config import ARTIFACTS, TRIGGERS, PipelineSettings, get_git_token  # noqa: E402


def _configure_logging(level: str, log_file: Optional[str]) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5, encoding="utf-8")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IPTV auto-update pipeline")
    parser.add_argument("--log-level", default=os.getenv("IPTV_LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the pipeline once")
    run.add_argument("--checkout-dir", default=".", help="Repository checkout (default: current directory)")
    run.add_argument("--source", default=None, help="Clone this repository URL/path instead of using the checkout in place")
    run.add_argument("--revision", default=None, help="Revision to check out")
    run.add_argument("--branch", default=None, help="Branch to check out and push to")
    run.add_argument(
        "--trigger",
        default=os.getenv("GITHUB_EVENT_NAME", "workflow_dispatch"),
        help="schedule, workflow_dispatch or push (default: $GITHUB_EVENT_NAME)",
    )
    run.add_argument("--ref", default=os.getenv("GITHUB_REF"), help="Triggering ref (default: $GITHUB_REF)")
    run.add_argument("--timeout-minutes", type=float, default=None)
    run.add_argument("--python-version", default=None)
    run.add_argument("--dependency", default=None)
    run.add_argument("--state-dir", default=None)
    run.add_argument("--artifact-dir", default=None)
    run.add_argument("--retention-days", type=int, default=None)
    run.add_argument("--report", default=None, help="Also write the run report JSON to this path")

    nxt = sub.add_parser("next-run", help="Show the next scheduled run")
    nxt.add_argument("--schedule", default=TRIGGERS.SCHEDULE_UTC, help="Daily time as HH:MM UTC")

    artifacts = sub.add_parser("artifacts", help="Inspect published artifacts")
    artifacts.add_argument("--checkout-dir", default=".")
    artifacts.add_argument("--artifact-dir", default=None, help="Default: next to the checkout")
    art_sub = artifacts.add_subparsers(dest="artifacts_command", required=True)
    art_list = art_sub.add_parser("list", help="List retained artifacts")
    art_list.add_argument("--all", action="store_true", help="Include expired artifacts")
    art_extract = art_sub.add_parser("extract", help="Extract an artifact bundle")
    art_extract.add_argument("dest", help="Destination directory")
    art_extract.add_argument("--run-id", default=None, help="Run id (default: latest)")
    art_extract.add_argument("--name", default=ARTIFACTS.NAME)

    history = sub.add_parser("history", help="List recorded runs")
    history.add_argument("--checkout-dir", default=".")
    history.add_argument("--state-dir", default=None, help="Default: next to the checkout")
    history.add_argument("--limit", type=int, default=10)

    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    from src.pipeline.runner import run_pipeline
    from src.pipeline.triggers import TriggerEvent, TriggerKind, accepts

    try:
        trigger = TriggerEvent(
            kind=TriggerKind.parse(args.trigger),
            ref=args.ref,
            revision=args.revision or os.getenv("GITHUB_SHA"),
        )
        settings = PipelineSettings(checkout_dir=Path(args.checkout_dir), token=get_git_token()).with_overrides(
            source=args.source,
            revision=args.revision,
            branch=args.branch,
            timeout_seconds=args.timeout_minutes * 60 if args.timeout_minutes is not None else None,
            python_version=args.python_version,
            dependency=args.dependency,
            state_dir=Path(args.state_dir) if args.state_dir else None,
            artifact_dir=Path(args.artifact_dir) if args.artifact_dir else None,
            artifact_retention_days=args.retention_days,
        )
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    if not accepts(trigger):
        logger.info("Not triggered: {} on {} is not a watched branch", trigger.kind.value, trigger.ref)
        return 0

    ctx = run_pipeline(settings, trigger)

    if args.report:
        ctx.write_json(Path(args.report).expanduser())

    print("=" * 60)
    print(f"Run: {ctx.run_id}")
    print(f"Success: {ctx.success}")
    print(f"Changes present: {ctx.changes_present}")
    print(f"Commit: {ctx.commit_sha or '-'}")
    if ctx.artifact:
        print(f"Artifact: {ctx.artifact.get('bundle_path') or '(no files)'}")
    if ctx.errors:
        print("Errors:")
        for e in ctx.errors:
            print(f"  - {e}")
    print("=" * 60)

    return 0 if ctx.success else 1


def _cmd_next_run(args: argparse.Namespace) -> int:
    from src.pipeline.triggers import DailySchedule

    try:
        schedule = DailySchedule.parse(args.schedule)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    print(f"cron: {schedule.cron}")
    print(f"next_run_utc: {schedule.next_run_after().isoformat()}")
    return 0


def _cmd_artifacts(args: argparse.Namespace) -> int:
    from src.artifacts import ArtifactStore, extract_artifact

    settings = PipelineSettings(
        checkout_dir=Path(args.checkout_dir),
        artifact_dir=Path(args.artifact_dir) if args.artifact_dir else None,
    )
    store = ArtifactStore(settings.resolved_artifact_dir)

    if args.artifacts_command == "list":
        for record in store.iter_records(include_expired=bool(args.all)):
            members = ", ".join(record.members) or "-"
            print(f"{record.run_id}  {record.name}  expires {record.expires_at}  [{members}]")
        return 0

    record = None
    if args.run_id:
        record = next((r for r in store.iter_records() if r.run_id == args.run_id and r.name == args.name), None)
    else:
        record = store.latest(args.name)
    bundle = store.resolve_bundle(record) if record else None
    if bundle is None or not bundle.exists():
        print("No matching artifact bundle", file=sys.stderr)
        return 1

    result = extract_artifact(bundle, Path(args.dest))
    for path in result.extracted_paths:
        print(path)
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    from src.pipeline.history import RunHistory

    settings = PipelineSettings(
        checkout_dir=Path(args.checkout_dir),
        state_dir=Path(args.state_dir) if args.state_dir else None,
    )
    runs: List[dict] = list(RunHistory(settings.resolved_state_dir).iter_runs())
    for report in runs[-max(1, args.limit):]:
        status = "ok" if report.get("success") else f"failed at {report.get('failed_step')} ({report.get('failure_kind')})"
        print(f"{report.get('created_at')}  {report.get('run_id')}  {report['trigger']['kind']}  {status}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level, args.log_file)

    if args.command == "run":
        return _cmd_run(args)
    if args.command == "next-run":
        return _cmd_next_run(args)
    if args.command == "artifacts":
        return _cmd_artifacts(args)
    if args.command == "history":
        return _cmd_history(args)
    parser.error(f"unknown command {args.command!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
