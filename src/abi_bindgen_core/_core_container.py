from __future__ import annotations

import io
import logging

import lief

from ._core_base import *  # noqa: F401,F403

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
ARCHIVE_MAGIC = b"!<arch>\n"
MACHO_MAGICS = (b"\xce\xfa\xed\xfe", b"\xcf\xfa\xed\xfe", b"\xfe\xed\xfa\xce", b"\xfe\xed\xfa\xcf")
FAT_MAGICS = {b"\xca\xfe\xba\xbe": False, b"\xca\xfe\xba\xbf": True}

ELF_MACHINE_NAMES = {3: "x86", 8: "mips", 20: "ppc", 21: "ppc64", 40: "arm", 62: "x86_64", 183: "aarch64", 243: "riscv"}
COFF_MACHINE_NAMES = {0x14C: "x86", 0x1C4: "arm", 0x8664: "x86_64", 0xAA64: "aarch64"}
MACHO_CPU_NAMES = {7: "x86", 0x01000007: "x86_64", 12: "arm", 0x0100000C: "aarch64"}
MACHO_CPU_ABI64 = 0x01000000

ELF_SKIPPED_TYPES = (lief.ELF.Section.TYPE.SHT_NULL_, lief.ELF.Section.TYPE.NOBITS)
MACHO_ZEROFILL_TYPES = (
    lief.MachO.Section.TYPE.ZEROFILL,
    lief.MachO.Section.TYPE.GB_ZEROFILL,
    lief.MachO.Section.TYPE.THREAD_LOCAL_ZEROFILL,
)


@dataclass(frozen=True)
class Section:
    name: str
    file_offset: int
    data: bytes


@dataclass(frozen=True)
class Container:
    path: str
    format: str
    machine: str | None
    pointer_size: int
    sections: tuple[Section, ...]


def sniff_format(data: bytes) -> str | None:
    if data[:4] == ELF_MAGIC:
        return "elf"
    if data[:8] == ARCHIVE_MAGIC:
        return "archive"
    if data[:4] in MACHO_MAGICS:
        return "macho"
    if data[:4] in FAT_MAGICS and len(data) >= 8:
        nfat = struct.unpack_from(">I", data, 4)[0]
        # Java class files share the fat magic; they never have this few "architectures"
        if 0 < nfat < 30:
            return "macho-fat"
    if data[:2] == b"MZ":
        return "pe"
    if len(data) >= 20:
        machine, _, _, _, _, opt_size, _ = struct.unpack_from("<HHIIIHH", data, 0)
        if machine in COFF_MACHINE_NAMES and opt_size == 0:
            return "coff"
    return None


def _section(name: str, file_offset: int, size: int, content: Any) -> Section:
    body = bytes(content)
    if len(body) != size:
        raise ArtifactUnreadable(f"section '{name}' spans 0x{file_offset:x}..0x{file_offset + size:x}, past the end of the file")
    return Section(name, file_offset, body)


def _parse_elf(data: bytes, label: str) -> Container:
    binary = lief.ELF.parse(io.BytesIO(data))
    if binary is None:
        raise ArtifactUnreadable(f"'{label}' has an ELF magic but is not a readable ELF image")
    header = binary.header
    is64 = header.identity_class == lief.ELF.Header.CLASS.ELF64
    machine = ELF_MACHINE_NAMES.get(header.machine_type.value)
    if machine == "riscv":
        machine = "riscv64" if is64 else "riscv32"
    pointer_size = 8 if is64 else 4

    if header.section_header_offset == 0 or header.numberof_sections == 0:
        logger.info("%s: no ELF section headers, scanning the whole file", label)
        return Container(label, "elf", machine, pointer_size, (Section("<file>", 0, data),))
    if len(binary.sections) < header.numberof_sections:
        raise ArtifactUnreadable(
            f"'{label}' declares {header.numberof_sections} ELF sections but only {len(binary.sections)} could be read"
        )

    sections: list[Section] = []
    for index, item in enumerate(binary.sections):
        if item.type in ELF_SKIPPED_TYPES:
            continue
        name = item.name or f"section[{index}]"
        sections.append(_section(name, item.offset, item.size, item.content))
    return Container(label, "elf", machine, pointer_size, tuple(sections))


def _coff_section_name(binary: Any, item: Any, index: int) -> str:
    name = item.name
    if name.startswith("/") and name[1:].isdigit():
        found = binary.find_string(int(name[1:]))
        if found is not None:
            name = found.string
    return name or f"section[{index}]"


def _parse_coff(data: bytes, label: str) -> Container:
    binary = lief.COFF.parse(io.BytesIO(data))
    if binary is None:
        raise ArtifactUnreadable(f"'{label}' is not a readable COFF object")
    machine = binary.header.machine.value
    sections: list[Section] = []
    for index, item in enumerate(binary.sections):
        if item.pointerto_raw_data == 0 or item.sizeof_raw_data == 0:
            continue
        name = _coff_section_name(binary, item, index)
        sections.append(_section(name, item.pointerto_raw_data, item.sizeof_raw_data, item.content))
    pointer_size = 4 if machine in (0x14C, 0x1C4) else 8
    return Container(label, "coff", COFF_MACHINE_NAMES.get(machine), pointer_size, tuple(sections))


def _parse_pe(data: bytes, label: str) -> Container:
    binary = lief.PE.parse(io.BytesIO(data))
    if binary is None:
        raise ArtifactUnreadable(f"'{label}' has an MZ stub but no valid PE image")
    sections: list[Section] = []
    for index, item in enumerate(binary.sections):
        if item.pointerto_raw_data == 0 or item.sizeof_raw_data == 0:
            continue
        name = item.name or f"section[{index}]"
        sections.append(_section(name, item.pointerto_raw_data, item.sizeof_raw_data, item.content))
    pointer_size = 8 if binary.optional_header.magic == lief.PE.PE_TYPE.PE32_PLUS else 4
    return Container(label, "pe", COFF_MACHINE_NAMES.get(binary.header.machine.value), pointer_size, tuple(sections))


def _fat_first_slice(data: bytes, label: str) -> tuple[int, int]:
    is64 = FAT_MAGICS[data[:4]]
    arch = struct.Struct(">iiQQII" if is64 else ">iiIII")
    if len(data) < 8 + arch.size:
        raise ArtifactUnreadable(f"'{label}' has a truncated fat Mach-O architecture table")
    nfat = struct.unpack_from(">I", data, 4)[0]
    _, _, offset, size, *_rest = arch.unpack_from(data, 8)
    return nfat, offset


def _parse_macho(data: bytes, label: str) -> Container:
    base = 0
    if data[:4] in FAT_MAGICS:
        nfat, base = _fat_first_slice(data, label)
        if nfat > 1:
            logger.info("%s: fat Mach-O with %d slices, reading the first slice only", label, nfat)
    fat = lief.MachO.parse(io.BytesIO(data), config=lief.MachO.ParserConfig.quick)
    if fat is None or fat.size == 0:
        raise ArtifactUnreadable(f"'{label}' has a Mach-O magic but is not a readable Mach-O image")
    binary = fat.at(0)
    header = binary.header
    if len(binary.commands) < header.nb_cmds:
        raise ArtifactUnreadable(f"'{label}' declares {header.nb_cmds} Mach-O load commands but only {len(binary.commands)} could be read")

    sections: list[Section] = []
    for item in binary.sections:
        if item.type in MACHO_ZEROFILL_TYPES or item.size == 0:
            continue
        name = f"{item.segment_name},{item.name}"
        section = _section(name, item.offset, item.size, item.content)
        sections.append(Section(name, base + section.file_offset, section.data))
    cputype = header.cpu_type.value
    pointer_size = 8 if cputype & MACHO_CPU_ABI64 else 4
    return Container(label, "macho", MACHO_CPU_NAMES.get(cputype), pointer_size, tuple(sections))


def _parse_archive(data: bytes, label: str) -> Container:
    sections: list[Section] = []
    machine: str | None = None
    pointer_size = 8
    long_names = b""
    pos = len(ARCHIVE_MAGIC)
    while pos + 60 <= len(data):
        header = data[pos:pos + 60]
        if header[58:60] != b"`\n":
            raise ArtifactUnreadable(f"'{label}' has a malformed archive member header at 0x{pos:x}")
        raw_name = header[0:16].decode("utf-8", errors="replace").rstrip()
        try:
            size = int(header[48:58].decode("ascii").strip())
        except ValueError as exc:
            raise ArtifactUnreadable(f"'{label}' has an invalid archive member size at 0x{pos:x}") from exc
        body_offset = pos + 60
        if body_offset + size > len(data):
            raise ArtifactUnreadable(f"'{label}' has an archive member at 0x{pos:x} running past the end of the file")
        body = data[body_offset:body_offset + size]
        pos = body_offset + size + (size & 1)

        if raw_name in ("/", "/SYM64/", "__.SYMDEF", "__.SYMDEF SORTED"):
            continue
        if raw_name == "//":
            long_names = body
            continue
        if raw_name.startswith("#1/"):
            name_len = int(raw_name[3:])
            member = body[:name_len].rstrip(b"\0").decode("utf-8", errors="replace")
            body = body[name_len:]
            body_offset += name_len
        elif raw_name.startswith("/") and raw_name[1:].isdigit():
            start = int(raw_name[1:])
            end = long_names.find(b"/\n", start)
            member = long_names[start:end if end >= 0 else len(long_names)].decode("utf-8", errors="replace")
        else:
            member = raw_name.rstrip("/")

        if sniff_format(body) in (None, "archive"):
            logger.debug("%s: skipping archive member '%s'", label, member)
            continue
        parsed = parse_container(body, f"{label}({member})")
        if machine is None:
            machine, pointer_size = parsed.machine, parsed.pointer_size
        for item in parsed.sections:
            sections.append(Section(f"{member}({item.name})", body_offset + item.file_offset, item.data))
    return Container(label, "archive", machine, pointer_size, tuple(sections))


CONTAINER_PARSERS = {
    "elf": _parse_elf,
    "pe": _parse_pe,
    "coff": _parse_coff,
    "macho": _parse_macho,
    "macho-fat": _parse_macho,
    "archive": _parse_archive,
}


def parse_container(data: bytes, label: str) -> Container:
    fmt = sniff_format(data)
    if fmt is None:
        raise ArtifactUnreadable(f"'{label}' is not a recognized artifact (expected ELF, PE/COFF, Mach-O or ar archive)")
    try:
        return CONTAINER_PARSERS[fmt](data, label)
    except (struct.error, ValueError) as exc:
        raise ArtifactUnreadable(f"'{label}' is a truncated or malformed {fmt} container: {exc}") from exc


def read_artifact(path: Path) -> Container:
    try:
        with path.open("rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise ArtifactUnreadable(f"Unable to read artifact '{path}': {exc}") from exc
    container = parse_container(data, str(path))
    logger.info("%s: %s container, %d data sections", path, container.format, len(container.sections))
    return container
