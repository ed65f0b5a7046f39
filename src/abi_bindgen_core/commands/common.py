from __future__ import annotations

import argparse

from ..core import *  # noqa: F401,F403


def settings_from_args(args: argparse.Namespace) -> GenerationSettings:
    config = load_generation_config(Path(args.config).resolve() if args.config else None)
    overrides = {
        "namespace": args.namespace,
        "class_name": args.class_name,
        "library_name": args.library_name,
        "strict": True if args.strict else None,
        "calling_convention": args.calling_convention,
        "pointer_size": args.pointer_size,
        "emit_project": True if args.project else None,
        "target_framework": args.target_framework,
        "check_exports": True if args.check_exports else None,
        "require_exports": True if args.require_exports else None,
        "jobs": args.jobs,
    }
    return resolve_generation_settings(config, overrides)


def print_skipped(skipped: tuple[SkippedRecord, ...]) -> None:
    for item in skipped:
        print(f"  skipped {item.symbol}: {item.reason}")
