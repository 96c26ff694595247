from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys

from gitrelay.action_outputs import error_annotation, set_output
from gitrelay.config import ConfigError, load_pipeline_config, load_tool_server_config
from gitrelay.observability import configure_logging
from gitrelay.pipeline import PipelineOutcome, TriggerPipeline
from gitrelay.tool_server import run_tool_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitrelay")
    subparsers = parser.add_subparsers(dest="command", required=True)

    prepare_parser = subparsers.add_parser(
        "prepare",
        help="Check trigger gates, post the tracking comment and resolve the working branch",
    )
    prepare_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional TOML file with [trigger] and [tool_server] settings",
    )
    prepare_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every runtime event to stderr",
    )

    serve_parser = subparsers.add_parser(
        "serve-tools",
        help="Run the repository file-operations tool server over stdio",
    )
    serve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every runtime event to stderr",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging("high" if getattr(args, "verbose", False) else "low")

    if args.command == "prepare":
        sys.exit(_cmd_prepare(config_path=args.config))
    if args.command == "serve-tools":
        _cmd_serve_tools()
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_prepare(*, config_path: Path | None) -> int:
    try:
        config = load_pipeline_config(os.environ, config_path=config_path)
    except (ConfigError, OSError) as exc:
        error_annotation(f"Prepare step failed with error: {exc}")
        return 1

    try:
        outcome = TriggerPipeline(config).run()
    except Exception as exc:  # noqa: BLE001
        error_annotation(f"Prepare step failed with error: {type(exc).__name__}: {exc}")
        return 1
    return _report_outcome(outcome, output_path=config.output_path)


def _report_outcome(outcome: PipelineOutcome, *, output_path: Path | None) -> int:
    if outcome.status == "failed":
        error_annotation(f"Prepare step failed at {outcome.stage}: {outcome.detail}")
        return 1
    if outcome.status == "skipped":
        set_output(output_path, "contains_trigger", "false")
        print(outcome.detail or "No trigger found, skipping remaining steps")
        return 0
    comment = outcome.state.comment
    branch = outcome.state.branch
    if comment is not None and branch is not None:
        print(
            f"Prepared run on branch {branch.current_branch} "
            f"with tracking comment {comment.comment_id}"
        )
    return 0


def _cmd_serve_tools() -> None:
    try:
        config = load_tool_server_config(os.environ)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    run_tool_server(config)
