"""
fix-patches CLI
===============
Command-line entry point for the Orchestrator.

    fix-patches --project kubernetes/autoscaler --pr 1234 --max-attempts 3 -v

Exit codes:
    0 — every patch applies (fixed or already clean)
    1 — a patch could not be fixed (exhausted / skipped)
    2 — fatal error (configuration, checkout, revert)
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from fixpatches.agents.orchestrator import Orchestrator
from fixpatches.core.config import BUILD_TOOLING_ROOT, MAX_ATTEMPTS, RESULTS_PATH
from fixpatches.llm.client import OracleClient
from fixpatches.models.run_result import FixRunResult
from fixpatches.utils.logging_config import setup_logging, verbosity_to_level

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNFIXED = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="fix-patches",
        description="Repair vendored patches that no longer apply to a newer upstream version",
    )
    parser.add_argument("--project", required=True, help="Project as <org>/<repo>")
    parser.add_argument("--pr", dest="change_request", default="",
                        help="Change request / PR number the upgrade belongs to")
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=MAX_ATTEMPTS,
        help=f"Fix attempts per patch (default: {MAX_ATTEMPTS})",
    )
    parser.add_argument(
        "--root",
        default=BUILD_TOOLING_ROOT,
        help="Build-tooling root holding projects/ (default: BUILD_TOOLING_ROOT or cwd)",
    )
    parser.add_argument(
        "--results",
        default=RESULTS_PATH,
        help=f"Where to write the run results (default: {RESULTS_PATH})",
    )
    parser.add_argument("-v", "--verbosity", action="count", default=1,
                        help="Increase log verbosity (-v info, -vv debug)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only")
    parser.add_argument("--output-json", action="store_true", help="Print the run result as JSON")
    return parser


def exit_code_for(result: FixRunResult) -> int:
    if result.status == "success":
        return EXIT_SUCCESS
    if result.status == "error":
        return EXIT_ERROR
    return EXIT_UNFIXED


async def _run(args: argparse.Namespace) -> FixRunResult:
    oracle = OracleClient()
    try:
        orchestrator = Orchestrator(
            oracle=oracle,
            max_attempts=args.max_attempts,
            root=args.root,
            results_path=args.results,
        )
        return await orchestrator.run(args.project, args.change_request, args.max_attempts)
    finally:
        await oracle.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING if args.quiet else verbosity_to_level(args.verbosity)
    setup_logging(level=level)

    if args.max_attempts < 1:
        print("Error: --max-attempts must be at least 1", file=sys.stderr)
        return EXIT_ERROR

    result = asyncio.run(_run(args))

    if args.output_json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        print(f"{result.project}: {result.status}")
        if result.summary:
            print(result.summary)
        if result.error:
            print(f"Error: {result.error}", file=sys.stderr)
        for patch in result.patches:
            line = f"  {patch.patch_name}: {patch.status}"
            if patch.failing_files:
                line += f" (failing: {', '.join(patch.failing_files)})"
            print(line)
    return exit_code_for(result)


if __name__ == "__main__":
    sys.exit(main())
