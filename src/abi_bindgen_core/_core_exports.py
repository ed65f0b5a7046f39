from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Callable, Iterator

from ._core_base import *  # noqa: F401,F403
from ._core_extract import ExtractionResult

logger = logging.getLogger(__name__)


READELF_BINDINGS = frozenset({"GLOBAL", "WEAK", "GNU_UNIQUE", "UNIQUE"})
DUMPBIN_EXPORT_LINE = re.compile(r"^\s+\d+\s+[0-9A-Fa-f]+\s+[0-9A-Fa-f]+\s+(\S+)")
HEX_ADDRESS = re.compile(r"[0-9A-Fa-f]+")


def iter_nm_symbols(output: str) -> Iterator[str]:
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or line.rstrip().endswith(":"):
            continue
        code, symbol = parts[-2], parts[-1]
        # uppercase codes are global; "u" is a GNU unique global
        if len(code) == 1 and code != "U" and (code.isupper() or code == "u"):
            yield symbol


def iter_dumpbin_symbols(output: str) -> Iterator[str]:
    for line in output.splitlines():
        match = DUMPBIN_EXPORT_LINE.match(line.rstrip())
        if match:
            yield match.group(1)


def iter_readelf_symbols(output: str) -> Iterator[str]:
    # Num: Value Size Type Bind Vis Ndx Name
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 8 or not parts[0].endswith(":") or not parts[0][:-1].isdigit():
            continue
        bind, visibility, index, name = parts[4].upper(), parts[5].upper(), parts[6].upper(), parts[7]
        if index == "UND" or bind not in READELF_BINDINGS or visibility in ("HIDDEN", "INTERNAL"):
            continue
        if name != "0":
            yield name


def iter_objdump_symbols(output: str) -> Iterator[str]:
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 7 or not HEX_ADDRESS.fullmatch(parts[0]):
            continue
        if parts[1].lower() in ("g", "w", "u") and parts[3] != "*UND*" and parts[-1] != "*UND*":
            yield parts[-1]


EXPORT_PARSERS: dict[str, Callable[[str], Iterator[str]]] = {
    "nm": iter_nm_symbols,
    "dumpbin": iter_dumpbin_symbols,
    "readelf": iter_readelf_symbols,
    "objdump": iter_objdump_symbols,
}


def canonical_export_names(symbol: str, container_format: str) -> set[str]:
    names = {symbol}
    base = symbol
    if "@" in base:
        # ELF symbol versions (foo@@V1) and stdcall decorations (foo@12)
        base = base.split("@", 1)[0]
        names.add(base)
    if container_format in ("macho", "macho-fat", "pe", "coff") and base.startswith("_"):
        names.add(base[1:])
    return names


def build_export_command_specs(binary_path: Path, container_format: str) -> list[tuple[str, list[str], str]]:
    path = str(binary_path)
    if container_format == "elf":
        return [
            ("nm", ["nm", "-D", "--defined-only", path], "nm"),
            ("llvm-nm", ["llvm-nm", "-D", "--defined-only", path], "nm"),
            ("readelf", ["readelf", "-Ws", "--dyn-syms", path], "readelf"),
            ("objdump", ["objdump", "-T", path], "objdump"),
        ]
    if container_format in ("macho", "macho-fat"):
        return [
            ("nm", ["nm", "-gU", path], "nm"),
            ("llvm-nm", ["llvm-nm", "-gU", path], "nm"),
        ]
    if container_format == "pe":
        return [
            ("dumpbin", ["dumpbin", "/exports", path], "dumpbin"),
            ("llvm-nm", ["llvm-nm", "--defined-only", path], "nm"),
            ("nm", ["nm", "--defined-only", path], "nm"),
        ]
    return [
        ("nm", ["nm", "--defined-only", path], "nm"),
        ("llvm-nm", ["llvm-nm", "--defined-only", path], "nm"),
    ]


def list_artifact_exports(binary_path: Path, container_format: str) -> set[str]:
    tool_errors: list[str] = []
    for tool_name, command, parse_format in build_export_command_specs(binary_path, container_format):
        if shutil.which(command[0]) is None:
            continue
        try:
            proc = subprocess.run(command, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as exc:
            message = exc.stderr.strip() or exc.stdout.strip() or "unknown command failure"
            tool_errors.append(f"{' '.join(command)}: {message}")
            continue
        logger.debug("%s: export table listed with %s", binary_path, tool_name)
        # first tool that runs wins; listings from different tools are never merged
        exports: set[str] = set()
        for raw in EXPORT_PARSERS[parse_format](proc.stdout):
            exports |= canonical_export_names(raw, container_format)
        return exports
    if tool_errors:
        raise AbiBindgenError("Failed to query binary exports. " + " | ".join(tool_errors))
    raise AbiBindgenError("No export listing tool found. Install one of: nm, llvm-nm, readelf, objdump, dumpbin.")


def check_record_exports(result: ExtractionResult, require: bool) -> list[str]:
    exports = list_artifact_exports(Path(result.artifact), result.format)
    missing = [symbol for symbol in result.registry.symbols if symbol not in exports]
    for symbol in missing:
        logger.warning("%s: record symbol '%s' is not in the artifact's export table", result.artifact, symbol)
    if missing and require:
        raise AbiBindgenError(
            f"{result.artifact}: {len(missing)} record symbols are not exported: {', '.join(missing)}"
        )
    return missing
