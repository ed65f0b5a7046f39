from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_types import *  # noqa: F401,F403
from ._core_naming import to_pascal_case

# primitive kind -> (C# keyword, identifier fragment)
PRIMITIVE_CSHARP: dict[str, tuple[str, str]] = {
    "int8": ("sbyte", "Int8"),
    "int16": ("short", "Int16"),
    "int32": ("int", "Int32"),
    "int64": ("long", "Int64"),
    "uint8": ("byte", "UInt8"),
    "uint16": ("ushort", "UInt16"),
    "uint32": ("uint", "UInt32"),
    "uint64": ("ulong", "UInt64"),
    "float32": ("float", "Float32"),
    "float64": ("double", "Float64"),
    "bool": ("bool", "Bool"),
}

SLICE_ABI_TYPE = "SliceAbi"
SLICE_LENGTH_SIZE = 8

# 32-bit targets whose C ABI still aligns 8-byte scalars to 8
EIGHT_BYTE_ALIGNED_32BIT_MACHINES = frozenset({"arm", "mips", "ppc", "riscv32"})


@dataclass(frozen=True)
class NativeLayout:
    size: int
    alignment: int
    fields: tuple[tuple[str, int], ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "alignment": self.alignment,
            "fields": [{"name": name, "offset": offset} for name, offset in self.fields],
        }


@dataclass(frozen=True)
class AbiMapping:
    """Native shape, C# shape and conversion fragments for one type.

    ``to_abi`` is an expression template over ``{value}`` (the host value)
    and ``{scope}`` (the ``PinScope`` that keeps managed memory fixed for the
    duration of the call). ``from_abi`` is a template over ``{value}`` (the
    ABI value) producing the host value.
    """

    type: TypeNode
    ident: str
    abi_type: str
    host_type: str
    host_kind: str
    layout: NativeLayout
    identity: bool
    pins: bool
    to_abi: str
    from_abi: str
    children: tuple[AbiMapping, ...] = ()
    field_names: tuple[str, ...] = ()

    def render_to_abi(self, value: str, scope: str = "scope") -> str:
        return self.to_abi.replace("{scope}", scope).replace("{value}", value)

    def render_from_abi(self, value: str) -> str:
        return self.from_abi.replace("{value}", value)

    def walk(self) -> list[AbiMapping]:
        """Every mapping reachable from this one, dependencies first."""
        ordered: list[AbiMapping] = []
        stack: list[tuple[AbiMapping, bool]] = [(self, False)]
        while stack:
            current, expanded = stack.pop()
            if expanded:
                ordered.append(current)
                continue
            stack.append((current, True))
            for child in reversed(current.children):
                stack.append((child, False))
        return ordered

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": describe_type(self.type),
            "abi_type": self.abi_type,
            "host_type": self.host_type,
            "layout": self.layout.as_dict(),
            "identity": self.identity,
            "pins": self.pins,
        }
        if isinstance(self.type, Struct):
            payload["fields"] = [
                {"name": name, "mapping": child.as_dict()} for name, child in zip(self.field_names, self.children)
            ]
        elif self.children:
            payload["element"] = self.children[0].as_dict()
        return payload


def _align(offset: int, alignment: int) -> int:
    return (offset + alignment - 1) // alignment * alignment


def sequential_layout(members: list[tuple[str, NativeLayout]]) -> NativeLayout:
    offset = 0
    alignment = 1
    placed: list[tuple[str, int]] = []
    for name, layout in members:
        offset = _align(offset, layout.alignment)
        placed.append((name, offset))
        offset += layout.size
        alignment = max(alignment, layout.alignment)
    return NativeLayout(size=_align(offset, alignment), alignment=alignment, fields=tuple(placed))


def scalar_alignment(pointer_size: int, container_format: str | None = None, machine: str | None = None) -> int:
    """Largest alignment the target C ABI gives a primitive scalar.

    i386 System V places 8-byte scalars on 4-byte boundaries; Windows and
    the other 32-bit ABIs keep them 8-aligned.
    """
    if pointer_size == 8:
        return 8
    if container_format in ("pe", "coff") or machine in EIGHT_BYTE_ALIGNED_32BIT_MACHINES:
        return 8
    return 4


class AbiMapper:
    def __init__(self, pointer_size: int = 8, max_alignment: int | None = None) -> None:
        if pointer_size not in (4, 8):
            raise AbiBindgenError(f"Unsupported pointer size {pointer_size}")
        self.pointer_size = pointer_size
        self.max_alignment = max_alignment or scalar_alignment(pointer_size)
        self._cache: dict[TypeNode, AbiMapping] = {}

    def slice_layout(self) -> NativeLayout:
        pointer = NativeLayout(self.pointer_size, self.pointer_size)
        length = self._scalar_layout(SLICE_LENGTH_SIZE)
        return sequential_layout([("Ptr", pointer), ("Len", length)])

    def _scalar_layout(self, size: int) -> NativeLayout:
        return NativeLayout(size, min(size, self.max_alignment))

    def map_type(self, node: TypeNode) -> AbiMapping:
        validate_type(node, describe_type(node))
        return self._map(node)

    def _map(self, node: TypeNode) -> AbiMapping:
        cached = self._cache.get(node)
        if cached is not None:
            return cached
        if isinstance(node, Primitive):
            mapping = self._map_primitive(node)
        elif isinstance(node, Slice):
            mapping = self._map_slice(node)
        elif isinstance(node, String):
            mapping = self._map_string(node)
        elif isinstance(node, Struct):
            mapping = self._map_struct(node)
        elif isinstance(node, Option):
            mapping = self._map_option(node)
        else:
            raise UnrepresentableType(f"No ABI mapping for type node {type(node).__name__}")
        self._cache[node] = mapping
        return mapping

    def _map_primitive(self, node: Primitive) -> AbiMapping:
        if node.kind not in PRIMITIVE_CSHARP:
            raise UnrepresentableType(f"No ABI mapping for primitive '{node.kind}'")
        keyword, ident = PRIMITIVE_CSHARP[node.kind]
        layout = self._scalar_layout(node.size)
        if node.kind == "bool":
            # crosses as a single byte: C# would otherwise marshal bool as a 4-byte BOOL
            return AbiMapping(
                type=node,
                ident=ident,
                abi_type="byte",
                host_type="bool",
                host_kind="value",
                layout=layout,
                identity=False,
                pins=False,
                to_abi="({value} ? (byte)1 : (byte)0)",
                from_abi="({value} != 0)",
            )
        return AbiMapping(
            type=node,
            ident=ident,
            abi_type=keyword,
            host_type=keyword,
            host_kind="value",
            layout=layout,
            identity=True,
            pins=False,
            to_abi="{value}",
            from_abi="{value}",
        )

    def _map_slice(self, node: Slice) -> AbiMapping:
        element = self._map(node.element)
        var = f"__x{type_depth(node)}"
        if element.identity:
            to_abi = "{scope}.Pin({value})"
            from_abi = f"{SLICE_ABI_TYPE}.ToArray<{element.abi_type}>({{value}})"
        else:
            to_abi = f"{{scope}}.Pin({{value}}, {var} => {element.render_to_abi(var, '{scope}')})"
            from_abi = (
                f"{SLICE_ABI_TYPE}.ToArray<{element.abi_type}, {element.host_type}>"
                f"({{value}}, {var} => {element.render_from_abi(var)})"
            )
        return AbiMapping(
            type=node,
            ident=f"SliceOf{element.ident}",
            abi_type=SLICE_ABI_TYPE,
            host_type=f"{element.host_type}[]",
            host_kind="reference",
            layout=self.slice_layout(),
            identity=False,
            pins=True,
            to_abi=to_abi,
            from_abi=from_abi,
            children=(element,),
        )

    def _map_string(self, node: String) -> AbiMapping:
        return AbiMapping(
            type=node,
            ident="String",
            abi_type=SLICE_ABI_TYPE,
            host_type="string",
            host_kind="reference",
            layout=self.slice_layout(),
            identity=False,
            pins=True,
            to_abi="{scope}.PinUtf8({value})",
            from_abi=f"{SLICE_ABI_TYPE}.ToUtf8String({{value}})",
        )

    def _map_struct(self, node: Struct) -> AbiMapping:
        if not node.fields:
            raise UnrepresentableType(f"Struct '{node.name}' has no fields; empty structs have no portable layout")
        host_name = to_pascal_case(node.name)
        children = tuple(self._map(item.type) for item in node.fields)
        field_names: list[str] = []
        for item in node.fields:
            name = to_pascal_case(item.name)
            if name == host_name:
                name = f"{name}Value"
            if name in field_names:
                raise BindingConflict(f"Struct '{node.name}': fields collide on the C# name '{name}'")
            field_names.append(name)
        layout = sequential_layout([(name, child.layout) for name, child in zip(field_names, children)])
        identity = all(child.identity for child in children)
        pins = any(child.pins for child in children)
        if identity:
            return AbiMapping(
                type=node,
                ident=host_name,
                abi_type=host_name,
                host_type=host_name,
                host_kind="value",
                layout=layout,
                identity=True,
                pins=False,
                to_abi="{value}",
                from_abi="{value}",
                children=children,
                field_names=tuple(field_names),
            )
        scope_arg = ", {scope}" if pins else ""
        return AbiMapping(
            type=node,
            ident=host_name,
            abi_type=f"{host_name}Abi",
            host_type=host_name,
            host_kind="value",
            layout=layout,
            identity=False,
            pins=pins,
            to_abi=f"{host_name}ToAbi({{value}}{scope_arg})",
            from_abi=f"{host_name}FromAbi({{value}})",
            children=children,
            field_names=tuple(field_names),
        )

    def _map_option(self, node: Option) -> AbiMapping:
        inner = self._map(node.inner)
        ident = f"Option{inner.ident}"
        if inner.host_kind == "nullable":
            host_type = f"Optional<{inner.host_type}>"
        else:
            host_type = f"{inner.host_type}?"
        layout = sequential_layout([("HasValue", NativeLayout(1, 1)), ("Value", inner.layout)])
        scope_arg = ", {scope}" if inner.pins else ""
        return AbiMapping(
            type=node,
            ident=ident,
            abi_type=f"{ident}Abi",
            host_type=host_type,
            host_kind="nullable",
            layout=layout,
            identity=False,
            pins=inner.pins,
            to_abi=f"{ident}ToAbi({{value}}{scope_arg})",
            from_abi=f"{ident}FromAbi({{value}})",
            children=(inner,),
            field_names=("HasValue", "Value"),
        )
