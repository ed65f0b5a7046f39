from __future__ import annotations

import io
import logging
import tempfile

import lief

from ._core_base import *  # noqa: F401,F403
from ._core_record import *  # noqa: F401,F403
from ._core_container import sniff_format

logger = logging.getLogger(__name__)

EMBED_FORMATS = ("raw", "c", "asm", "inject")

# IMAGE_SCN_CNT_INITIALIZED_DATA | IMAGE_SCN_MEM_READ
PE_READONLY_DATA = 0x40000040


class RegistryBuilder:
    """Accumulates the records of one compilation unit and serializes them once."""

    def __init__(self, unit: str = "unit") -> None:
        self.unit = unit
        self._records: list[FunctionRecord] = []
        self._symbols: set[str] = set()
        self._frame: bytes | None = None

    @property
    def records(self) -> tuple[FunctionRecord, ...]:
        return tuple(self._records)

    @property
    def finalized(self) -> bool:
        return self._frame is not None

    def add(self, record: FunctionRecord) -> None:
        if self._frame is not None:
            raise EmbedError(f"Registry for unit '{self.unit}' was already finalized")
        validate_record(record)
        if record.symbol in self._symbols:
            raise DuplicateSymbol(record.symbol, context=f"unit '{self.unit}'")
        self._symbols.add(record.symbol)
        self._records.append(record)

    def extend(self, records: list[FunctionRecord]) -> None:
        for record in records:
            self.add(record)

    def finalize(self) -> bytes:
        if self._frame is not None:
            raise EmbedError(f"Registry for unit '{self.unit}' was already finalized")
        self._frame = encode_frame(self._records)
        return self._frame


def c_identifier(value: str) -> str:
    ident = re.sub(r"[^A-Za-z0-9_]", "_", value)
    if not ident or ident[0].isdigit():
        ident = f"_{ident}"
    return ident


def _byte_rows(data: bytes, per_row: int = 12) -> list[str]:
    rows = []
    for start in range(0, len(data), per_row):
        rows.append(", ".join(f"0x{b:02x}" for b in data[start:start + per_row]))
    return rows


def render_c_source(frame: bytes, unit: str, section_name: str = DEFAULT_SECTION_NAME) -> str:
    symbol = f"abi_bindgen_registry_{c_identifier(unit)}"
    macho_segment, macho_section = DEFAULT_MACHO_SECTION
    # an empty array is not valid C, the frame header is always present anyway
    size = max(len(frame), 1)
    lines = [
        "/* <auto-generated /> */",
        f"/* Generated by {TOOL_NAME} {TOOL_VERSION}: function registry for unit '{unit}'. */",
        "#include <stdint.h>",
        "",
        "#if defined(__has_attribute)",
        "#if __has_attribute(retain)",
        "#define ABI_BINDGEN_RETAIN __attribute__((retain))",
        "#endif",
        "#endif",
        "#ifndef ABI_BINDGEN_RETAIN",
        "#define ABI_BINDGEN_RETAIN",
        "#endif",
        "",
        "#if defined(_MSC_VER)",
        f'#pragma section("{DEFAULT_COFF_SECTION_NAME}", read)',
        f'__declspec(allocate("{DEFAULT_COFF_SECTION_NAME}"))',
        "#elif defined(__APPLE__)",
        f'__attribute__((used, section("{macho_segment},{macho_section}")))',
        "#else",
        f'__attribute__((used, section("{section_name}"))) ABI_BINDGEN_RETAIN',
        "#endif",
        f"const uint8_t {symbol}[{size}] = {{",
    ]
    for row in _byte_rows(frame):
        lines.append(f"    {row},")
    lines.append("};")
    lines.append("")
    # 32-bit x86 decorates C symbols with a leading underscore
    lines.append("#if defined(_MSC_VER)")
    lines.append("#if defined(_M_IX86)")
    lines.append(f'#pragma comment(linker, "/INCLUDE:_{symbol}")')
    lines.append("#else")
    lines.append(f'#pragma comment(linker, "/INCLUDE:{symbol}")')
    lines.append("#endif")
    lines.append("#endif")
    return "\n".join(lines) + "\n"


def render_asm_source(frame: bytes, unit: str, section_name: str = DEFAULT_SECTION_NAME, flavor: str = "elf") -> str:
    label = f"abi_bindgen_registry_{c_identifier(unit)}"
    lines = [
        "/* <auto-generated /> */",
        f"/* Generated by {TOOL_NAME} {TOOL_VERSION}: function registry for unit '{unit}'. */",
    ]
    if flavor == "macho":
        segment, section = DEFAULT_MACHO_SECTION
        lines.append(f"    .section {segment},{section}")
        lines.append(f"    .no_dead_strip _{label}")
        lines.append(f"_{label}:")
    elif flavor == "elf":
        # no "a" flag: the region is kept by the linker but never mapped at load time
        lines.append(f'    .section {section_name},"",%progbits')
        lines.append(f"{label}:")
    else:
        raise EmbedError(f"Unknown assembler flavor '{flavor}'")
    for row in _byte_rows(frame, per_row=16):
        lines.append(f"    .byte {row}")
    return "\n".join(lines) + "\n"


def inject_frame(frame: bytes, artifact: Path) -> bytes:
    """Return a copy of ``artifact`` carrying ``frame`` in a non-loaded data section.

    Only ELF and PE images can be rewritten; Mach-O and archives have to be
    relinked with the C or assembler rendition instead.
    """
    try:
        data = artifact.read_bytes()
    except OSError as exc:
        raise ArtifactUnreadable(f"Unable to read artifact '{artifact}': {exc}") from exc
    fmt = sniff_format(data)
    if fmt == "elf":
        binary = lief.ELF.parse(io.BytesIO(data))
        section_name = DEFAULT_SECTION_NAME
    elif fmt == "pe":
        binary = lief.PE.parse(io.BytesIO(data))
        section_name = DEFAULT_COFF_SECTION_NAME
    else:
        raise EmbedError(
            f"Cannot inject a registry into '{artifact}' ({fmt or 'unrecognized'} artifact); "
            "use --format c or asm and link it in"
        )
    if binary is None:
        raise ArtifactUnreadable(f"'{artifact}' could not be parsed as a {fmt} image")
    if binary.has_section(section_name):
        raise EmbedError(f"'{artifact}' already has a '{section_name}' section")

    if fmt == "elf":
        section = lief.ELF.Section(section_name)
        section.type = lief.ELF.Section.TYPE.PROGBITS
        section.alignment = 1
        section.content = list(frame)
        binary.add(section, loaded=False)
    else:
        section = lief.PE.Section(section_name)
        section.content = list(frame)
        section.characteristics = PE_READONLY_DATA
        binary.add_section(section)

    with tempfile.TemporaryDirectory() as temp_dir:
        out_path = Path(temp_dir) / artifact.name
        binary.write(str(out_path))
        rewritten = out_path.read_bytes()
    logger.info("%s: injected %d byte registry into section %s", artifact, len(frame), section_name)
    return rewritten


def render_embedding(frame: bytes, fmt: str, unit: str, artifact: Path | None = None) -> str | bytes:
    if fmt == "raw":
        return frame
    if fmt == "c":
        return render_c_source(frame, unit)
    if fmt == "asm":
        return render_asm_source(frame, unit)
    if fmt == "inject":
        if artifact is None:
            raise EmbedError("--format inject needs the artifact to rewrite (--artifact)")
        return inject_frame(frame, artifact)
    raise EmbedError(f"Unknown embed format '{fmt}'. Known formats: {', '.join(EMBED_FORMATS)}")
