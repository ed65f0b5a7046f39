from __future__ import annotations

import argparse
import logging
import sys

from .core import (
    CALLING_CONVENTIONS,
    DEFAULT_COFF_SECTION_NAME,
    DEFAULT_SECTION_NAME,
    EMBED_FORMATS,
    TOOL_NAME,
    TOOL_VERSION,
    AbiBindgenError,
)
from .commands import command_embed, command_generate, command_inspect


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abi-bindgen",
        description="Recover embedded export metadata from native artifacts and generate C# P/Invoke bindings.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging on stderr.")
    parser.add_argument("--version", action="version", version=f"{TOOL_NAME} {TOOL_VERSION}")

    sub = parser.add_subparsers(dest="command", required=True)

    inspect = sub.add_parser("inspect", help="Extract the metadata registry and ABI layouts from an artifact.")
    inspect.add_argument("artifact", help="Shared library, object file or static archive.")
    inspect.add_argument("--output", help="Write the report JSON to path instead of stdout.")
    inspect.add_argument("--pointer-size", type=int, choices=(4, 8), help="Override the artifact's pointer size.")
    inspect.set_defaults(func=command_inspect)

    generate = sub.add_parser("generate", help="Generate C# bindings for one or more artifacts.")
    generate.add_argument("artifacts", nargs="+", help="Artifacts to generate bindings for.")
    generate.add_argument("--out-dir", required=True, help="Directory for the generated files.")
    generate.add_argument("--output-name", default="Bindings.cs", help="Generated source file name (default: Bindings.cs).")
    generate.add_argument("--config", help="Path to generation config JSON.")
    generate.add_argument("--namespace", help="Root C# namespace.")
    generate.add_argument("--class-name", help="Static class name (single artifact only).")
    generate.add_argument("--library-name", help="DllImport library name (single artifact only).")
    generate.add_argument("--calling-convention", choices=CALLING_CONVENTIONS, help="P/Invoke calling convention.")
    generate.add_argument("--pointer-size", type=int, choices=(4, 8), help="Override the artifact's pointer size.")
    generate.add_argument("--target-framework", help="Target framework for the generated project.")
    generate.add_argument("--strict", action="store_true", help="Fail on the first unrepresentable record or artifact.")
    generate.add_argument("--project", action="store_true", help="Also write an SDK-style .csproj.")
    generate.add_argument("--check-exports", action="store_true", help="Warn about records missing from the export table.")
    generate.add_argument("--require-exports", action="store_true", help="Fail when records are missing from the export table.")
    generate.add_argument("--jobs", type=int, help="Number of artifacts processed in parallel.")
    generate.add_argument("--check", action="store_true", help="Fail if generated files would change.")
    generate.add_argument("--dry-run", action="store_true", help="Compute output without writing files.")
    generate.set_defaults(func=command_generate)

    embed = sub.add_parser("embed", help="Encode a records JSON document as an embeddable registry.")
    embed.add_argument("records", help="Records JSON document.")
    embed.add_argument("--out", required=True, help="Output file.")
    embed.add_argument("--format", choices=EMBED_FORMATS, default="c", help="Output format (default: c).")
    embed.add_argument("--unit", help="Compilation unit name (default: records file stem).")
    embed.add_argument(
        "--artifact",
        help=f"ELF or PE image to copy into --out with the registry added as a section ({DEFAULT_SECTION_NAME} on ELF, {DEFAULT_COFF_SECTION_NAME} on PE) for --format inject.",
    )
    embed.add_argument("--check", action="store_true", help="Fail if the output file would change.")
    embed.add_argument("--dry-run", action="store_true", help="Compute output without writing files.")
    embed.set_defaults(func=command_embed)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return int(args.func(args))
    except AbiBindgenError as exc:
        print(f"{TOOL_NAME} error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
