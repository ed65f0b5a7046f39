from __future__ import annotations

import argparse

from ..core import *  # noqa: F401,F403


def command_inspect(args: argparse.Namespace) -> int:
    report = inspect_artifact(Path(args.artifact).resolve(), pointer_size=args.pointer_size)
    if not args.output:
        print(json.dumps(report, indent=2, sort_keys=True))
        return 0
    write_json(Path(args.output).resolve(), report)
    status = "found" if report["metadata_found"] else "none"
    print(
        f"[{report['artifact']}] inspect: format={report['format']} metadata={status} "
        f"records={len(report['registry']['functions'])}"
    )
    return 0
