from __future__ import annotations

import argparse
import sys

from ..core import *  # noqa: F401,F403
from .common import print_skipped, settings_from_args

# an artifact whose metadata could not be read fails the run like an unreadable one
EXIT_ARTIFACT_FAILED = 2


def command_generate(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    out_dir = Path(args.out_dir).resolve()
    paths = [Path(item).resolve() for item in args.artifacts]
    result = generate_bindings_for_artifacts(paths, settings, source_file=args.output_name)
    summary = result.summary()

    exit_code = 0
    if summary["failed_artifacts"] < summary["artifacts"]:
        if write_if_changed(out_dir / args.output_name, result.generation.text, check=args.check, dry_run=args.dry_run):
            exit_code = 1
        if result.project_text is not None:
            project_path = out_dir / project_file_name(result.project_name)
            if write_if_changed(project_path, result.project_text, check=args.check, dry_run=args.dry_run):
                exit_code = 1

    for outcome in result.outcomes:
        if outcome.failed:
            print(f"[{outcome.artifact}] generate: failed ({outcome.error})")
            print(f"{TOOL_NAME} error: {outcome.artifact}: {outcome.error}", file=sys.stderr)
            continue
        bindings = outcome.bindings
        metadata = "found" if outcome.extraction is not None and outcome.extraction.metadata_found else "none"
        print(
            f"[{outcome.artifact}] generate: metadata={metadata} "
            f"generated={len(bindings.symbols)} skipped={len(bindings.skipped)}"
        )
        print_skipped(bindings.skipped)

    print(
        f"generated={summary['generated']} skipped={summary['skipped']} "
        f"failed_artifacts={summary['failed_artifacts']}"
    )
    if summary["failed_artifacts"]:
        return EXIT_ARTIFACT_FAILED
    return exit_code
