from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_types import *  # noqa: F401,F403

TAG_NONE = 0x00
TAG_SLICE = 0x10
TAG_STRING = 0x11
TAG_STRUCT = 0x12
TAG_OPTION = 0x13
PRIMITIVE_TAGS: dict[str, int] = {
    "int8": 0x01,
    "int16": 0x02,
    "int32": 0x03,
    "int64": 0x04,
    "uint8": 0x05,
    "uint16": 0x06,
    "uint32": 0x07,
    "uint64": 0x08,
    "float32": 0x09,
    "float64": 0x0A,
    "bool": 0x0B,
}
TAG_PRIMITIVES = {tag: name for name, tag in PRIMITIVE_TAGS.items()}

_U32 = struct.Struct("<I")


@dataclass(frozen=True)
class Parameter:
    name: str
    type: TypeNode


@dataclass(frozen=True)
class FunctionRecord:
    symbol: str
    name: str
    parameters: tuple[Parameter, ...] = ()
    returns: TypeNode | None = None


@dataclass(frozen=True)
class Registry:
    records: tuple[FunctionRecord, ...] = ()
    version: int = FORMAT_VERSION

    @property
    def symbols(self) -> list[str]:
        return [record.symbol for record in self.records]

    def __len__(self) -> int:
        return len(self.records)


def validate_record(record: FunctionRecord) -> None:
    if not record.symbol:
        raise UnrepresentableType("Function record has an empty export symbol")
    if not record.name:
        raise UnrepresentableType(f"Function record '{record.symbol}' has an empty declared name")
    seen: set[str] = set()
    for index, param in enumerate(record.parameters):
        label = f"{record.symbol}: parameter #{index}"
        if not param.name:
            raise UnrepresentableType(f"{label} has an empty name")
        if param.name in seen:
            raise UnrepresentableType(f"{record.symbol}: parameter '{param.name}' is declared twice")
        seen.add(param.name)
        validate_type(param.type, f"{record.symbol}: parameter '{param.name}'")
    if record.returns is not None:
        validate_type(record.returns, f"{record.symbol}: return type")


class _PayloadWriter:
    def __init__(self) -> None:
        self.buffer = bytearray()

    def u8(self, value: int) -> None:
        self.buffer.append(value)

    def u32(self, value: int) -> None:
        self.buffer += _U32.pack(value)

    def text(self, value: str) -> None:
        raw = value.encode("utf-8")
        self.u32(len(raw))
        self.buffer += raw

    def type(self, node: TypeNode | None) -> None:
        if node is None:
            self.u8(TAG_NONE)
        elif isinstance(node, Primitive):
            self.u8(PRIMITIVE_TAGS[node.kind])
        elif isinstance(node, String):
            self.u8(TAG_STRING)
        elif isinstance(node, Slice):
            self.u8(TAG_SLICE)
            self.type(node.element)
        elif isinstance(node, Option):
            self.u8(TAG_OPTION)
            self.type(node.inner)
        elif isinstance(node, Struct):
            self.u8(TAG_STRUCT)
            self.text(node.name)
            self.u32(len(node.fields))
            for item in node.fields:
                self.text(item.name)
                self.type(item.type)
        else:
            raise UnrepresentableType(f"Unrecognized type node {type(node).__name__}")


class _PayloadReader:
    def __init__(self, payload: bytes, version: int) -> None:
        self.payload = payload
        self.version = version
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.payload) - self.pos

    def _take(self, size: int, what: str) -> bytes:
        if size > self.remaining:
            raise MetadataCorruption(
                f"Truncated payload: {what} needs {size} bytes at offset {self.pos}, {self.remaining} left"
            )
        chunk = self.payload[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def u8(self, what: str) -> int:
        return self._take(1, what)[0]

    def u32(self, what: str) -> int:
        return _U32.unpack(self._take(4, what))[0]

    def count(self, what: str, min_item_size: int) -> int:
        value = self.u32(what)
        if value * min_item_size > self.remaining:
            raise MetadataCorruption(f"Implausible {what} {value} at offset {self.pos - 4}")
        return value

    def text(self, what: str) -> str:
        size = self.u32(f"{what} length")
        raw = self._take(size, what)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MetadataCorruption(f"{what} is not valid UTF-8: {exc}") from exc

    def type(self, depth: int = 1) -> TypeNode | None:
        if depth > MAX_TYPE_DEPTH:
            raise MetadataCorruption(f"Type nesting exceeds the limit of {MAX_TYPE_DEPTH} levels at offset {self.pos}")
        tag_offset = self.pos
        tag = self.u8("type tag")
        if tag == TAG_NONE:
            return None
        if tag in TAG_PRIMITIVES:
            return Primitive(TAG_PRIMITIVES[tag])
        if tag == TAG_STRING:
            return String()
        if tag == TAG_SLICE:
            return Slice(self._required_type(depth + 1, "slice element"))
        if tag == TAG_OPTION:
            return Option(self._required_type(depth + 1, "option payload"))
        if tag == TAG_STRUCT:
            name = self.text("struct name")
            field_count = self.count("struct field count", 5)
            fields = []
            for _ in range(field_count):
                field_name = self.text("field name")
                fields.append(Field(field_name, self._required_type(depth + 1, f"field '{field_name}'")))
            return Struct(name, tuple(fields))
        raise UnsupportedVersion(
            f"Unknown type tag 0x{tag:02x} at payload offset {tag_offset} (format version {self.version})"
        )

    def _required_type(self, depth: int, what: str) -> TypeNode:
        node = self.type(depth)
        if node is None:
            raise MetadataCorruption(f"{what} uses the 'none' tag, which is only valid as a return type")
        return node


def encode_payload(records: list[FunctionRecord] | tuple[FunctionRecord, ...]) -> bytes:
    writer = _PayloadWriter()
    for record in records:
        validate_record(record)
        writer.text(record.symbol)
        writer.text(record.name)
        writer.u32(len(record.parameters))
        for param in record.parameters:
            writer.text(param.name)
            writer.type(param.type)
        writer.type(record.returns)
    return bytes(writer.buffer)


def decode_payload(payload: bytes, version: int = FORMAT_VERSION) -> list[FunctionRecord]:
    if version not in SUPPORTED_FORMAT_VERSIONS:
        raise UnsupportedVersion(f"Unsupported registry format version {version}")
    reader = _PayloadReader(payload, version)
    records: list[FunctionRecord] = []
    while reader.remaining:
        symbol = reader.text("export symbol")
        name = reader.text("declared name")
        param_count = reader.count("parameter count", 5)
        params = []
        for _ in range(param_count):
            param_name = reader.text("parameter name")
            params.append(Parameter(param_name, reader._required_type(1, f"parameter '{param_name}'")))
        returns = reader.type()
        record = FunctionRecord(symbol=symbol, name=name, parameters=tuple(params), returns=returns)
        try:
            validate_record(record)
        except UnrepresentableType as exc:
            raise MetadataCorruption(f"Decoded record is malformed: {exc}") from exc
        records.append(record)
    return records


def encode_frame(records: list[FunctionRecord] | tuple[FunctionRecord, ...], version: int = FORMAT_VERSION) -> bytes:
    payload = encode_payload(records)
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise EmbedError(f"Registry payload of {len(payload)} bytes exceeds the frame length limit of {MAX_PAYLOAD_LENGTH}")
    return FRAME_HEADER.pack(FRAME_MAGIC, version, len(payload), payload_checksum(payload)) + payload


def decode_frame(data: bytes) -> Registry:
    if len(data) < FRAME_HEADER.size or data[:len(FRAME_MAGIC)] != FRAME_MAGIC:
        raise MetadataCorruption("Data does not start with a registry frame")
    _, version, length, checksum = FRAME_HEADER.unpack_from(data, 0)
    payload = data[FRAME_HEADER.size:FRAME_HEADER.size + length]
    if len(payload) != length:
        raise MetadataCorruption(f"Frame declares {length} payload bytes but only {len(payload)} are present")
    if payload_checksum(payload) != checksum:
        raise MetadataCorruption("Frame checksum mismatch")
    return Registry(records=tuple(decode_payload(payload, version)), version=version)


def record_to_dict(record: FunctionRecord) -> dict[str, Any]:
    return {
        "symbol": record.symbol,
        "name": record.name,
        "parameters": [{"name": p.name, "type": type_to_dict(p.type)} for p in record.parameters],
        "returns": type_to_dict(record.returns) if record.returns is not None else None,
    }


def registry_to_dict(registry: Registry) -> dict[str, Any]:
    return {
        "format_version": registry.version,
        "functions": [record_to_dict(record) for record in registry.records],
    }


def record_from_dict(payload: dict[str, Any], arena: TypeArena) -> FunctionRecord:
    symbol = str(payload.get("symbol") or "")
    label = symbol or "<unnamed>"
    params = []
    for index, item in enumerate(payload.get("parameters") or []):
        param_name = str(item.get("name") or "")
        params.append(Parameter(param_name, arena.resolve(item.get("type"), f"{label}: parameter #{index}")))
    returns_spec = payload.get("returns")
    returns = arena.resolve(returns_spec, f"{label}: return type") if returns_spec is not None else None
    record = FunctionRecord(
        symbol=symbol,
        name=str(payload.get("name") or symbol),
        parameters=tuple(params),
        returns=returns,
    )
    validate_record(record)
    return record


def load_records_document(payload: dict[str, Any]) -> list[FunctionRecord]:
    validate_with_schema("records", payload)
    version = int(payload.get("format_version", FORMAT_VERSION))
    if version not in SUPPORTED_FORMAT_VERSIONS:
        raise UnsupportedVersion(f"Records document uses unsupported format version {version}")
    arena = TypeArena()
    for name, fields in (payload.get("structs") or {}).items():
        arena.declare_struct(name, fields)
    return [record_from_dict(item, arena) for item in payload.get("functions") or []]
