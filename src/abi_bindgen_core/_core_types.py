from __future__ import annotations

from typing import Iterator, Union

from ._core_base import *  # noqa: F401,F403

# name -> (size in bytes, is_signed, is_float)
PRIMITIVE_KINDS: dict[str, tuple[int, bool, bool]] = {
    "int8": (1, True, False),
    "int16": (2, True, False),
    "int32": (4, True, False),
    "int64": (8, True, False),
    "uint8": (1, False, False),
    "uint16": (2, False, False),
    "uint32": (4, False, False),
    "uint64": (8, False, False),
    "float32": (4, True, True),
    "float64": (8, True, True),
    "bool": (1, False, False),
}


@dataclass(frozen=True)
class Primitive:
    kind: str

    def __post_init__(self) -> None:
        if self.kind not in PRIMITIVE_KINDS:
            raise UnrepresentableType(f"Unknown primitive kind '{self.kind}'")

    @property
    def size(self) -> int:
        return PRIMITIVE_KINDS[self.kind][0]


@dataclass(frozen=True)
class Slice:
    element: TypeNode


@dataclass(frozen=True)
class String:
    pass


@dataclass(frozen=True)
class Field:
    name: str
    type: TypeNode


@dataclass(frozen=True)
class Struct:
    name: str
    fields: tuple[Field, ...]


@dataclass(frozen=True)
class Option:
    inner: TypeNode


TypeNode = Union[Primitive, Slice, String, Struct, Option]


def children_of(node: TypeNode) -> tuple[TypeNode, ...]:
    if isinstance(node, (Primitive, String)):
        return ()
    if isinstance(node, (Slice,)):
        return (node.element,)
    if isinstance(node, Option):
        return (node.inner,)
    if isinstance(node, Struct):
        return tuple(f.type for f in node.fields)
    raise UnrepresentableType(f"Unrecognized type node {type(node).__name__}")


def type_depth(node: TypeNode) -> int:
    deepest = 0
    stack: list[tuple[TypeNode, int]] = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        deepest = max(deepest, depth)
        if depth > MAX_TYPE_DEPTH:
            break
        for child in children_of(current):
            stack.append((child, depth + 1))
    return deepest


def describe_type(node: TypeNode | None) -> str:
    if node is None:
        return "none"
    if isinstance(node, Primitive):
        return node.kind
    if isinstance(node, String):
        return "string"
    if isinstance(node, Slice):
        return f"slice<{describe_type(node.element)}>"
    if isinstance(node, Option):
        return f"option<{describe_type(node.inner)}>"
    if isinstance(node, Struct):
        return f"struct {node.name}"
    raise UnrepresentableType(f"Unrecognized type node {type(node).__name__}")


def iter_structs(node: TypeNode) -> Iterator[Struct]:
    """Yield every struct reachable from ``node``, dependencies before dependents."""
    stack: list[tuple[TypeNode, bool]] = [(node, False)]
    while stack:
        current, expanded = stack.pop()
        if expanded:
            if isinstance(current, Struct):
                yield current
            continue
        stack.append((current, True))
        for child in reversed(children_of(current)):
            stack.append((child, False))


def validate_type(node: TypeNode, label: str) -> None:
    depth = type_depth(node)
    if depth > MAX_TYPE_DEPTH:
        raise UnrepresentableType(f"{label}: type nesting exceeds the limit of {MAX_TYPE_DEPTH} levels")
    for struct_node in iter_structs(node):
        if not struct_node.name:
            raise UnrepresentableType(f"{label}: struct name must be non-empty")
        seen: set[str] = set()
        for item in struct_node.fields:
            if not item.name:
                raise UnrepresentableType(f"{label}: struct '{struct_node.name}' has a field with an empty name")
            if item.name in seen:
                raise UnrepresentableType(f"{label}: struct '{struct_node.name}' declares field '{item.name}' twice")
            seen.add(item.name)


def type_to_dict(node: TypeNode) -> dict[str, Any]:
    if isinstance(node, Primitive):
        return {"kind": "primitive", "name": node.kind}
    if isinstance(node, String):
        return {"kind": "string"}
    if isinstance(node, Slice):
        return {"kind": "slice", "element": type_to_dict(node.element)}
    if isinstance(node, Option):
        return {"kind": "option", "inner": type_to_dict(node.inner)}
    if isinstance(node, Struct):
        return {
            "kind": "struct",
            "name": node.name,
            "fields": [{"name": f.name, "type": type_to_dict(f.type)} for f in node.fields],
        }
    raise UnrepresentableType(f"Unrecognized type node {type(node).__name__}")


def _referenced_struct_names(spec: Any, out: list[str]) -> None:
    if not isinstance(spec, dict):
        return
    kind = spec.get("kind")
    if kind == "struct":
        fields = spec.get("fields")
        if fields is None:
            out.append(str(spec.get("name") or ""))
            return
        for item in fields:
            if isinstance(item, dict):
                _referenced_struct_names(item.get("type"), out)
    elif kind == "slice":
        _referenced_struct_names(spec.get("element"), out)
    elif kind == "option":
        _referenced_struct_names(spec.get("inner"), out)


class TypeArena:
    """Named struct declarations, resolved into immutable type trees.

    Structs are stored by name and referenced by name, so a declaration table
    can describe a non-terminating graph. ``resolve`` walks the reference graph
    with an explicit visiting set and reports the exact cycle instead of
    recursing forever.
    """

    def __init__(self) -> None:
        self._declared: dict[str, list[dict[str, Any]]] = {}
        self._resolved: dict[str, Struct] = {}
        self._checked = False

    def declare_struct(self, name: str, fields: list[dict[str, Any]]) -> None:
        if not name:
            raise UnrepresentableType("Struct declarations need a non-empty name")
        if name in self._declared:
            raise UnrepresentableType(f"Struct '{name}' is declared twice")
        self._declared[name] = list(fields)
        self._checked = False
        self._resolved.clear()

    def _edges(self, name: str) -> list[str]:
        refs: list[str] = []
        for item in self._declared[name]:
            if isinstance(item, dict):
                _referenced_struct_names(item.get("type"), refs)
        for ref in refs:
            if ref not in self._declared:
                raise UnrepresentableType(f"Struct '{name}' references undeclared struct '{ref}'")
        return refs

    def topological_order(self) -> list[str]:
        order: list[str] = []
        done: set[str] = set()
        for root in self._declared:
            if root in done:
                continue
            visiting: list[str] = [root]
            visiting_set: set[str] = {root}
            iterators = [iter(self._edges(root))]
            while iterators:
                advanced = False
                for ref in iterators[-1]:
                    if ref in done:
                        continue
                    if ref in visiting_set:
                        cycle = visiting[visiting.index(ref):] + [ref]
                        raise UnrepresentableType(f"Cyclic struct definition: {' -> '.join(cycle)}")
                    visiting.append(ref)
                    visiting_set.add(ref)
                    iterators.append(iter(self._edges(ref)))
                    advanced = True
                    break
                if not advanced:
                    iterators.pop()
                    finished = visiting.pop()
                    visiting_set.discard(finished)
                    done.add(finished)
                    order.append(finished)
        return order

    def _ensure_resolved(self) -> None:
        if self._checked:
            return
        for name in self.topological_order():
            self._resolved[name] = self._build_struct(name, self._declared[name], depth=1)
        self._checked = True

    def _build_struct(self, name: str, fields: list[dict[str, Any]], depth: int) -> Struct:
        built: list[Field] = []
        for index, item in enumerate(fields):
            if not isinstance(item, dict):
                raise UnrepresentableType(f"Struct '{name}' field #{index} must be an object")
            field_name = str(item.get("name") or "")
            built.append(Field(name=field_name, type=self._build(item.get("type"), depth + 1)))
        return Struct(name=name, fields=tuple(built))

    def _build(self, spec: Any, depth: int) -> TypeNode:
        if depth > MAX_TYPE_DEPTH:
            raise UnrepresentableType(f"Type nesting exceeds the limit of {MAX_TYPE_DEPTH} levels")
        if not isinstance(spec, dict):
            raise UnrepresentableType(f"Type description must be an object, got {spec!r}")
        kind = spec.get("kind")
        if kind == "primitive":
            return Primitive(str(spec.get("name") or ""))
        if kind == "string":
            return String()
        if kind == "slice":
            return Slice(self._build(spec.get("element"), depth + 1))
        if kind == "option":
            return Option(self._build(spec.get("inner"), depth + 1))
        if kind == "struct":
            name = str(spec.get("name") or "")
            fields = spec.get("fields")
            if fields is None:
                if name not in self._resolved:
                    raise UnrepresentableType(f"Reference to undeclared struct '{name}'")
                return self._resolved[name]
            if not isinstance(fields, list):
                raise UnrepresentableType(f"Struct '{name}' fields must be an array")
            return self._build_struct(name, fields, depth)
        raise UnrepresentableType(f"Unknown type kind {kind!r}")

    def resolve(self, spec: Any, label: str = "type") -> TypeNode:
        self._ensure_resolved()
        node = self._build(spec, depth=1)
        validate_type(node, label)
        return node

    def struct(self, name: str) -> Struct:
        self._ensure_resolved()
        if name not in self._resolved:
            raise UnrepresentableType(f"Reference to undeclared struct '{name}'")
        return self._resolved[name]
