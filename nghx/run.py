from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional

import structlog

from . import __version__
from .config import BUILD_FAILURE_POLICIES, Settings, load_settings
from .errors import NghxError
from .logging import bind_context, clear_context, configure_logging
from .pipeline import PipelineContext, RunPipeline
from .urls import parse_github_url

logger = structlog.get_logger("nghx")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nghx",
        description="Run a package straight from a GitHub repository, branch or sub-directory.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--no-update",
        action="store_true",
        help="Reuse a cached checkout without contacting the remote.",
    )
    parser.add_argument("--cache-dir", default=None, help="Directory holding cached checkouts.")
    parser.add_argument("--config", default=None, help="YAML configuration file.")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Verbosity of the diagnostics written to stderr.",
    )
    parser.add_argument("--json-logs", action="store_true", default=None, help="Emit diagnostics as JSON lines.")
    parser.add_argument(
        "--build-failure",
        default=None,
        choices=BUILD_FAILURE_POLICIES,
        help="Abort (fatal) or keep going (continue) when the build script fails.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Prepare the checkout and print the resolved command instead of running it.",
    )
    parser.add_argument(
        "github_url",
        nargs="?",
        help="https://github.com/<owner>/<repo>[/tree/<branch>[/<path>]]",
    )
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed through to the program.")
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    return settings.override(
        cache_root=args.cache_dir,
        log_level=args.log_level,
        json_logs=args.json_logs,
        build_failure=args.build_failure,
    )


def _print_dry_run(pipeline: RunPipeline) -> None:
    context = pipeline.context
    payload: dict[str, Any] = {
        "target": context.target.to_dict(),
        "execution_dir": str(context.execution_dir),
        "plan": context.plan.to_dict() if context.plan else None,
        "stages": [result.to_dict() for result in pipeline.results],
    }
    print(json.dumps(payload, indent=2))


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.github_url:
        parser.print_usage(sys.stderr)
        print("nghx: error: a GitHub repository URL is required", file=sys.stderr)
        return 1

    try:
        settings = _settings_from_args(args)
    except NghxError as exc:
        print(f"nghx: error: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level, settings.json_logs)
    clear_context()
    try:
        target = parse_github_url(args.github_url)
        bind_context(repo=f"{target.owner}/{target.name}", branch=target.branch)
        logger.info("target", sub_path=target.sub_path or "(root)", cache_root=str(settings.cache_root))

        context = PipelineContext(
            target=target,
            settings=settings,
            arguments=tuple(args.args),
            no_update=args.no_update,
        )
        pipeline = RunPipeline(context)
        if args.dry_run:
            pipeline.prepare()
            _print_dry_run(pipeline)
            return 0
        return pipeline.run()
    except (NghxError, OSError) as exc:
        retryable = isinstance(exc, NghxError) and exc.retryable
        logger.error("invocation_failed", error=str(exc), error_type=type(exc).__name__, retryable=retryable)
        print(f"nghx: error: {exc}", file=sys.stderr)
        if retryable:
            print("nghx: the failure may be transient; try again", file=sys.stderr)
        return 1
    finally:
        clear_context()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
