from __future__ import annotations

import struct

ELF_MACHINE_X86_64 = 62
ELF_MACHINE_AARCH64 = 183
ET_REL = 1
ET_DYN = 3
PE_MACHINE_X64 = 0x8664
PE_MACHINE_I386 = 0x14C
MACHO_CPU_X86_64 = 0x01000007
MACHO_CPU_ARM64 = 0x0100000C
MACHO_ZEROFILL = 0x1

_COFF_HEADER = struct.Struct("<HHIIIHH")
_COFF_SECTION = struct.Struct("<8sIIIIIIHHI")
_ELF64_HEADER = struct.Struct("<16sHHIQQQIHHHHHH")
_ELF64_SECTION = struct.Struct("<IIQQQQIIQQ")


def _pad(blob: bytearray, alignment: int) -> None:
    while len(blob) % alignment:
        blob.append(0)


def build_elf(sections: list[tuple[str, bytes]], machine: int = ELF_MACHINE_X86_64, file_type: int = ET_REL) -> bytes:
    """Little-endian ELF64 with PROGBITS data sections, an empty symbol table and no program headers."""
    names = [name for name, _ in sections] + [".symtab", ".strtab", ".shstrtab"]
    shstrtab = bytearray(b"\0")
    name_offsets: list[int] = []
    for name in names:
        name_offsets.append(len(shstrtab))
        shstrtab += name.encode("utf-8") + b"\0"
    bodies = [data for _, data in sections] + [bytes(24), b"\0", bytes(shstrtab)]

    blob = bytearray(_ELF64_HEADER.size)
    offsets: list[int] = []
    for body in bodies:
        _pad(blob, 8)
        offsets.append(len(blob))
        blob += body
    _pad(blob, 8)
    shoff = len(blob)

    count = len(sections)
    blob += bytes(_ELF64_SECTION.size)
    for index, body in enumerate(bodies):
        if index < count:
            fields = (1, 0, 0, 1, 0)
        elif index == count:
            # .symtab links to .strtab and holds only the null symbol
            fields = (2, count + 2, 1, 8, 24)
        else:
            fields = (3, 0, 0, 1, 0)
        sh_type, link, info, align, entsize = fields
        blob += _ELF64_SECTION.pack(name_offsets[index], sh_type, 0, 0, offsets[index], len(body), link, info, align, entsize)

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    _ELF64_HEADER.pack_into(
        blob, 0, ident, file_type, machine, 1, 0, 0, shoff, 0, _ELF64_HEADER.size, 0, 0, _ELF64_SECTION.size, count + 4, count + 3
    )
    return bytes(blob)


def build_coff(sections: list[tuple[str, bytes]], machine: int = PE_MACHINE_X64) -> bytes:
    """Bare COFF object; names longer than 8 bytes go through the string table."""
    string_table = bytearray(4)
    raw_names: list[bytes] = []
    for name, _ in sections:
        encoded = name.encode("utf-8")
        if len(encoded) <= 8:
            raw_names.append(encoded)
            continue
        raw_names.append(f"/{len(string_table)}".encode("ascii"))
        string_table += encoded + b"\0"
    struct.pack_into("<I", string_table, 0, len(string_table))

    table_offset = _COFF_HEADER.size
    data_offset = table_offset + _COFF_SECTION.size * len(sections)
    blob = bytearray(data_offset)
    pointers: list[int] = []
    for _, data in sections:
        _pad(blob, 4)
        pointers.append(len(blob))
        blob += data
    _pad(blob, 4)
    symbol_table = len(blob)
    blob += string_table

    _COFF_HEADER.pack_into(blob, 0, machine, len(sections), 0, symbol_table, 0, 0, 0)
    for index, ((_, data), raw_name, pointer) in enumerate(zip(sections, raw_names, pointers)):
        _COFF_SECTION.pack_into(
            blob,
            table_offset + index * _COFF_SECTION.size,
            raw_name,
            len(data),
            0,
            len(data),
            pointer,
            0,
            0,
            0,
            0,
            0x40000040,
        )
    return bytes(blob)


def build_pe(sections: list[tuple[str, bytes]], machine: int = PE_MACHINE_X64) -> bytes:
    """Minimal PE image: DOS stub, PE signature, COFF header, optional header, section table."""
    is64 = machine != PE_MACHINE_I386
    optional_size = 240 if is64 else 224
    optional = bytearray(optional_size)
    struct.pack_into("<H", optional, 0, 0x20B if is64 else 0x10B)
    # SectionAlignment, FileAlignment, then SizeOfImage and SizeOfHeaders
    struct.pack_into("<II", optional, 32, 0x1000, 0x200)
    struct.pack_into("<II", optional, 56, 0x1000 * (len(sections) + 1), 0x200)
    struct.pack_into("<H", optional, 68, 3)
    struct.pack_into("<I", optional, 108 if is64 else 92, 16)

    dos = bytearray(0x40)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, 0x40)

    table_offset = len(dos) + 4 + _COFF_HEADER.size + optional_size
    blob = bytearray(table_offset + _COFF_SECTION.size * len(sections))
    blob[0:len(dos)] = dos
    blob[0x40:0x44] = b"PE\0\0"
    _COFF_HEADER.pack_into(blob, 0x44, machine, len(sections), 0, 0, 0, optional_size, 0x2022)
    blob[0x44 + _COFF_HEADER.size:table_offset] = optional

    pointers: list[int] = []
    for _, data in sections:
        _pad(blob, 0x200)
        pointers.append(len(blob))
        blob += data
    _pad(blob, 0x200)
    for index, ((name, data), pointer) in enumerate(zip(sections, pointers)):
        _COFF_SECTION.pack_into(
            blob,
            table_offset + index * _COFF_SECTION.size,
            name.encode("utf-8")[:8],
            len(data),
            0x1000 * (index + 1),
            len(data),
            pointer,
            0,
            0,
            0,
            0,
            0x40000040,
        )
    return bytes(blob)


def build_macho(
    sections: list[tuple[str, str, bytes]],
    cputype: int = MACHO_CPU_X86_64,
    zerofill: set[str] | None = None,
) -> bytes:
    """Little-endian 64-bit Mach-O dylib with one segment command holding every section.

    ``sections`` are ``(segment, section, data)`` triples; names listed in
    ``zerofill`` are emitted as S_ZEROFILL sections with no file contents.
    """
    zerofill = zerofill or set()
    header = struct.Struct("<IiiIIIII")
    segment = struct.Struct("<II16sQQQQiiII")
    section = struct.Struct("<16s16sQQIIIIIIII")
    cmdsize = segment.size + section.size * len(sections)
    data_start = header.size + cmdsize

    blob = bytearray(data_start)
    offsets: list[int] = []
    for _, sectname, data in sections:
        _pad(blob, 16)
        if sectname in zerofill:
            offsets.append(0)
            continue
        offsets.append(len(blob))
        blob += data

    header.pack_into(blob, 0, 0xFEEDFACF, cputype, 3, 6, 1, cmdsize, 0, 0)
    segname = sections[0][0] if sections else "__DATA"
    segment.pack_into(
        blob,
        header.size,
        0x19,
        cmdsize,
        segname.encode("utf-8"),
        0,
        0,
        data_start,
        len(blob) - data_start,
        3,
        3,
        len(sections),
        0,
    )
    cursor = header.size + segment.size
    for (segname, sectname, data), offset in zip(sections, offsets):
        flags = MACHO_ZEROFILL if sectname in zerofill else 0
        section.pack_into(
            blob,
            cursor,
            sectname.encode("utf-8"),
            segname.encode("utf-8"),
            0,
            len(data),
            offset,
            0,
            0,
            0,
            flags,
            0,
            0,
            0,
        )
        cursor += section.size
    return bytes(blob)


def build_fat_macho(slices: list[tuple[int, bytes]]) -> bytes:
    arch = struct.Struct(">iiIII")
    blob = bytearray(struct.pack(">II", 0xCAFEBABE, len(slices)))
    blob += bytes(arch.size * len(slices))
    for index, (cputype, body) in enumerate(slices):
        _pad(blob, 0x1000)
        offset = len(blob)
        blob += body
        arch.pack_into(blob, 8 + index * arch.size, cputype, 3, offset, len(body), 12)
    return bytes(blob)


def _ar_header(name: str, size: int) -> bytes:
    return (
        f"{name:<16}{0:<12}{0:<6}{0:<6}{644:<8}{size:<10}".encode("ascii") + b"`\n"
    )


def build_archive(members: list[tuple[str, bytes]], bsd_names: bool = False) -> bytes:
    """Unix ``ar`` archive with GNU (``//`` table) or BSD (``#1/len``) long member names."""
    blob = bytearray(b"!<arch>\n")

    def append(name: str, body: bytes) -> None:
        blob.extend(_ar_header(name, len(body)))
        blob.extend(body)
        if len(body) % 2:
            blob.extend(b"\n")

    append("/", struct.pack(">I", 0))
    if bsd_names:
        for name, data in members:
            encoded = name.encode("utf-8")
            append(f"#1/{len(encoded)}", encoded + data)
        return bytes(blob)

    long_names = bytearray()
    headers: list[str] = []
    for name, _ in members:
        if len(name) < 16:
            headers.append(f"{name}/")
            continue
        headers.append(f"/{len(long_names)}")
        long_names += name.encode("utf-8") + b"/\n"
    if long_names:
        append("//", bytes(long_names))
    for header, (_, data) in zip(headers, members):
        append(header, data)
    return bytes(blob)
