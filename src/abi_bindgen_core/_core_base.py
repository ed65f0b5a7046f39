from __future__ import annotations

import difflib
import json
import logging
import re
import struct
import sys
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

TOOL_NAME = "abi_bindgen"
TOOL_VERSION = "1.0.0"

FRAME_MAGIC = b"\xabBINDGEN"
FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSIONS = (1,)
FRAME_HEADER = struct.Struct("<8sHII")
MAX_PAYLOAD_LENGTH = 0xFFFFFFFF
MAX_TYPE_DEPTH = 32

DEFAULT_SECTION_NAME = ".abi_bindgen"
DEFAULT_MACHO_SECTION = ("__DATA", "__abi_bindgen")
DEFAULT_COFF_SECTION_NAME = ".abibg"
DEFAULT_NAMESPACE = "Bindings.Generated"
DEFAULT_TARGET_FRAMEWORK = "net8.0"
CALLING_CONVENTIONS = ("Cdecl", "StdCall", "Winapi")


class AbiBindgenError(Exception):
    pass


class ArtifactUnreadable(AbiBindgenError):
    pass


class MetadataCorruption(AbiBindgenError):
    pass


class UnsupportedVersion(AbiBindgenError):
    pass


class UnrepresentableType(AbiBindgenError):
    pass


class EmbedError(AbiBindgenError):
    pass


class BindingConflict(AbiBindgenError):
    pass


@dataclass(frozen=True)
class FrameLocation:
    section: str
    offset: int
    file_offset: int

    def describe(self) -> str:
        return f"{self.section}+0x{self.offset:x}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "section": self.section,
            "offset": self.offset,
            "file_offset": self.file_offset,
        }


class DuplicateSymbol(AbiBindgenError):
    def __init__(
        self,
        symbol: str,
        first: FrameLocation | None = None,
        second: FrameLocation | None = None,
        context: str | None = None,
    ) -> None:
        self.symbol = symbol
        self.first = first
        self.second = second
        if first is None or second is None:
            super().__init__(f"Export symbol '{symbol}' is declared twice in {context or 'one compilation unit'}")
        else:
            super().__init__(
                f"Export symbol '{symbol}' is declared twice: at {first.describe()} and at {second.describe()}"
            )


def payload_checksum(payload: bytes) -> int:
    return zlib.crc32(payload) & 0xFFFFFFFF


def load_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise AbiBindgenError(f"Unable to read JSON file '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise AbiBindgenError(f"Invalid JSON in '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise AbiBindgenError(f"JSON root in '{path}' must be an object")
    return payload


def write_json(path: Path, value: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(value, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def get_schema_path(kind: str) -> Path:
    base = Path(__file__).resolve().parent / "schemas"
    mapping = {
        "config": base / "config.schema.json",
        "records": base / "records.schema.json",
    }
    if kind not in mapping:
        raise AbiBindgenError(f"Unknown schema kind: {kind}")
    return mapping[kind]


def validate_with_schema(kind: str, payload: dict[str, Any]) -> None:
    import jsonschema

    schema_payload = load_json(get_schema_path(kind))
    try:
        jsonschema.validate(payload, schema_payload)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise AbiBindgenError(f"{kind} failed JSON schema validation at {location}: {exc.message}") from exc


def write_if_changed(path: Path, content: str | bytes, check: bool, dry_run: bool) -> int:
    if isinstance(content, bytes):
        existing_bytes = path.read_bytes() if path.exists() else b""
        if existing_bytes == content:
            return 0
        if check:
            print(f"{path}: binary content differs")
            return 1
        if not dry_run:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        return 0

    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    if existing == content:
        return 0
    if check:
        diff = difflib.unified_diff(
            existing.splitlines(),
            content.splitlines(),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            lineterm="",
        )
        print("\n".join(diff))
        return 1
    if not dry_run:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return 0


def library_base_name(path: Path) -> str:
    name = path.name
    for suffix in (".dylib", ".dll", ".so", ".a", ".lib", ".o", ".obj"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    # versioned ELF sonames: libfoo.so.1.2
    name = re.sub(r"\.so(\.\d+)*$", "", name)
    if name.startswith("lib") and len(name) > 3:
        name = name[3:]
    return name
