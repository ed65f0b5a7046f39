from __future__ import annotations

import argparse

from ..core import *  # noqa: F401,F403


def command_embed(args: argparse.Namespace) -> int:
    records = load_records_document(load_json(Path(args.records).resolve()))
    unit = args.unit or Path(args.records).stem
    builder = RegistryBuilder(unit)
    builder.extend(records)
    frame = builder.finalize()
    artifact = Path(args.artifact).resolve() if args.artifact else None
    content = render_embedding(frame, args.format, unit, artifact=artifact)

    out_path = Path(args.out).resolve()
    exit_code = write_if_changed(out_path, content, check=args.check, dry_run=args.dry_run)
    print(f"[{unit}] embed: records={len(records)} frame_bytes={len(frame)} format={args.format} -> {out_path}")
    return exit_code
