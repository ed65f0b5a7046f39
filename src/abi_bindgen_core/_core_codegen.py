from __future__ import annotations

import logging

from ._core_base import *  # noqa: F401,F403
from ._core_record import *  # noqa: F401,F403
from ._core_abi import *  # noqa: F401,F403
from ._core_naming import escape_keyword, csharp_identifier, csharp_string_literal, to_camel_case, to_pascal_case

logger = logging.getLogger(__name__)

PRELUDE_TYPE_NAMES = frozenset({"SliceAbi", "PinScope", "Optional"})
SCOPE_LOCAL = "__scope"
NAMESPACE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class GeneratorOptions:
    namespace: str = DEFAULT_NAMESPACE
    class_name: str | None = None
    library_name: str | None = None
    strict: bool = False
    calling_convention: str = "Cdecl"
    pointer_size: int | None = None

    def validate(self) -> None:
        if not NAMESPACE_PATTERN.match(self.namespace):
            raise AbiBindgenError(f"Invalid C# namespace '{self.namespace}'")
        if self.class_name is not None and not IDENTIFIER_PATTERN.match(self.class_name):
            raise AbiBindgenError(f"Invalid C# class name '{self.class_name}'")
        if self.calling_convention not in CALLING_CONVENTIONS:
            raise AbiBindgenError(
                f"Unsupported calling convention '{self.calling_convention}' (expected one of {', '.join(CALLING_CONVENTIONS)})"
            )


@dataclass(frozen=True)
class SkippedRecord:
    symbol: str
    reason: str


@dataclass(frozen=True)
class ArtifactBindings:
    artifact: str
    namespace: str
    class_name: str
    library_name: str
    lines: tuple[str, ...]
    symbols: tuple[str, ...]
    skipped: tuple[SkippedRecord, ...]


@dataclass(frozen=True)
class GenerationResult:
    text: str
    symbols: tuple[str, ...]
    skipped: tuple[SkippedRecord, ...]
    blocks: tuple[ArtifactBindings, ...] = ()

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def render_file_header() -> list[str]:
    return [
        "// <auto-generated />",
        f"// Generated by {TOOL_NAME} {TOOL_VERSION}",
        "#nullable enable",
        "using System;",
        "using System.Collections.Generic;",
        "using System.Runtime.InteropServices;",
        "using System.Text;",
        "",
    ]


def render_prelude(namespace: str) -> list[str]:
    body = """\
[StructLayout(LayoutKind.Sequential)]
public struct SliceAbi
{
    public IntPtr Ptr;
    public ulong Len;

    public static unsafe T[] ToArray<T>(SliceAbi value) where T : unmanaged
    {
        if (value.Len == 0)
        {
            return Array.Empty<T>();
        }
        if (value.Ptr == IntPtr.Zero)
        {
            throw new InvalidOperationException("Native slice has a length but no data pointer.");
        }
        var result = new T[checked((int)value.Len)];
        new ReadOnlySpan<T>((void*)value.Ptr, result.Length).CopyTo(result);
        return result;
    }

    public static TOut[] ToArray<TAbi, TOut>(SliceAbi value, Func<TAbi, TOut> convert) where TAbi : unmanaged
    {
        var raw = ToArray<TAbi>(value);
        var result = new TOut[raw.Length];
        for (var i = 0; i < raw.Length; i++)
        {
            result[i] = convert(raw[i]);
        }
        return result;
    }

    public static unsafe string ToUtf8String(SliceAbi value)
    {
        if (value.Len == 0)
        {
            return string.Empty;
        }
        if (value.Ptr == IntPtr.Zero)
        {
            throw new InvalidOperationException("Native string has a length but no data pointer.");
        }
        return Encoding.UTF8.GetString((byte*)value.Ptr, checked((int)value.Len));
    }
}

public sealed class PinScope : IDisposable
{
    private readonly List<GCHandle> _handles = new List<GCHandle>();

    public SliceAbi Pin<T>(T[]? array) where T : unmanaged
    {
        if (array == null || array.Length == 0)
        {
            return new SliceAbi { Ptr = IntPtr.Zero, Len = 0 };
        }
        var handle = GCHandle.Alloc(array, GCHandleType.Pinned);
        _handles.Add(handle);
        return new SliceAbi { Ptr = handle.AddrOfPinnedObject(), Len = (ulong)array.Length };
    }

    public SliceAbi Pin<TIn, TAbi>(TIn[]? array, Func<TIn, TAbi> convert) where TAbi : unmanaged
    {
        if (array == null)
        {
            return Pin<TAbi>(null);
        }
        var converted = new TAbi[array.Length];
        for (var i = 0; i < array.Length; i++)
        {
            converted[i] = convert(array[i]);
        }
        return Pin(converted);
    }

    public SliceAbi PinUtf8(string? value)
    {
        if (value == null)
        {
            return Pin<byte>(null);
        }
        return Pin(Encoding.UTF8.GetBytes(value));
    }

    public void Dispose()
    {
        foreach (var handle in _handles)
        {
            if (handle.IsAllocated)
            {
                handle.Free();
            }
        }
        _handles.Clear();
    }
}

public readonly struct Optional<T>
{
    public Optional(T value)
    {
        HasValue = true;
        Value = value;
    }

    public bool HasValue { get; }

    public T Value { get; }
}"""
    lines = [f"namespace {namespace}", "{"]
    for line in body.splitlines():
        lines.append(f"    {line}" if line else "")
    lines.append("}")
    lines.append("")
    return lines


def _indent(lines: list[str], levels: int = 1) -> list[str]:
    pad = "    " * levels
    return [f"{pad}{line}" if line else "" for line in lines]


def render_struct_declarations(mapping: AbiMapping) -> list[str]:
    lines: list[str] = []
    fields = list(zip(mapping.field_names, mapping.children))
    if mapping.identity:
        lines.append("[StructLayout(LayoutKind.Sequential)]")
        lines.append(f"public struct {mapping.host_type}")
        lines.append("{")
        for name, child in fields:
            lines.append(f"    public {child.abi_type} {name};")
        lines.append("}")
        lines.append("")
        return lines
    lines.append(f"public struct {mapping.host_type}")
    lines.append("{")
    for name, child in fields:
        lines.append(f"    public {child.host_type} {name};")
    lines.append("}")
    lines.append("")
    lines.append("[StructLayout(LayoutKind.Sequential)]")
    lines.append(f"public struct {mapping.abi_type}")
    lines.append("{")
    for name, child in fields:
        lines.append(f"    public {child.abi_type} {name};")
    lines.append("}")
    lines.append("")
    return lines


def render_option_declaration(mapping: AbiMapping) -> list[str]:
    inner = mapping.children[0]
    return [
        "[StructLayout(LayoutKind.Sequential)]",
        f"public struct {mapping.abi_type}",
        "{",
        "    public byte HasValue;",
        f"    public {inner.abi_type} Value;",
        "}",
        "",
    ]


def render_struct_converters(mapping: AbiMapping) -> list[str]:
    if mapping.identity:
        return []
    fields = list(zip(mapping.field_names, mapping.children))
    scope_param = ", PinScope scope" if mapping.pins else ""
    lines = [
        f"private static {mapping.abi_type} {mapping.ident}ToAbi({mapping.host_type} value{scope_param})",
        "{",
        f"    return new {mapping.abi_type}",
        "    {",
    ]
    for name, child in fields:
        lines.append(f"        {name} = {child.render_to_abi(f'value.{name}', 'scope')},")
    lines.extend(["    };", "}", ""])
    lines.extend(
        [
            f"private static {mapping.host_type} {mapping.ident}FromAbi({mapping.abi_type} value)",
            "{",
            f"    return new {mapping.host_type}",
            "    {",
        ]
    )
    for name, child in fields:
        lines.append(f"        {name} = {child.render_from_abi(f'value.{name}')},")
    lines.extend(["    };", "}", ""])
    return lines


def render_option_converters(mapping: AbiMapping) -> list[str]:
    inner = mapping.children[0]
    scope_param = ", PinScope scope" if mapping.pins else ""
    if inner.host_kind == "reference":
        missing = "value is null"
        present = "value"
    else:
        missing = "!value.HasValue"
        present = "value.Value"
    if inner.host_kind == "nullable":
        wrap = f"new {mapping.host_type}({{expr}})"
    else:
        wrap = "{expr}"
    lines = [
        f"private static {mapping.abi_type} {mapping.ident}ToAbi({mapping.host_type} value{scope_param})",
        "{",
        f"    if ({missing})",
        "    {",
        f"        return new {mapping.abi_type} {{ HasValue = 0 }};",
        "    }",
        f"    return new {mapping.abi_type} {{ HasValue = 1, Value = {inner.render_to_abi(present, 'scope')} }};",
        "}",
        "",
        f"private static {mapping.host_type} {mapping.ident}FromAbi({mapping.abi_type} value)",
        "{",
        "    if (value.HasValue == 0)",
        "    {",
        "        return default;",
        "    }",
        f"    return {wrap.replace('{expr}', inner.render_from_abi('value.Value'))};",
        "}",
        "",
    ]
    return lines


def _declared_type_names(mapping: AbiMapping) -> list[str]:
    if isinstance(mapping.type, Struct):
        if mapping.identity:
            return [mapping.host_type]
        return [mapping.host_type, mapping.abi_type]
    if isinstance(mapping.type, Option):
        return [mapping.abi_type]
    return []


class ArtifactEmitter:
    """Builds the C# block for one artifact, one record at a time.

    Every record is staged against a copy of the declared type table and only
    committed once its extern, wrapper and every nested declaration rendered
    without conflict, so a skipped record leaves no partial output behind.
    """

    def __init__(self, class_name: str, library_name: str, options: GeneratorOptions, pointer_size: int) -> None:
        self.class_name = class_name
        self.library_name = library_name
        self.options = options
        self.mapper = AbiMapper(pointer_size)
        self.declared: dict[str, TypeNode] = {}
        self.declarations: list[AbiMapping] = []
        self.member_names: set[str] = {"LibraryName"}
        self.externs: list[str] = []
        self.wrappers: list[str] = []
        self.symbols: list[str] = []

    def _stage_declarations(self, mappings: list[AbiMapping]) -> tuple[dict[str, TypeNode], list[AbiMapping]]:
        declared = dict(self.declared)
        added: list[AbiMapping] = []
        reserved = PRELUDE_TYPE_NAMES | {self.class_name}
        for root in mappings:
            for mapping in root.walk():
                names = _declared_type_names(mapping)
                if not names:
                    continue
                if names[0] in declared and declared[names[0]] == mapping.type:
                    continue
                for name in names:
                    if name in reserved:
                        raise BindingConflict(f"Generated type name '{name}' collides with a reserved binding name")
                    if name in declared:
                        if isinstance(mapping.type, Struct) and isinstance(declared[name], Struct):
                            raise BindingConflict(
                                f"Struct '{mapping.type.name}' is defined two different ways "
                                f"({describe_type(declared[name])} and {describe_type(mapping.type)} map to '{name}')"
                            )
                        raise BindingConflict(f"Generated type name '{name}' is claimed by two different types")
                    declared[name] = mapping.type
                added.append(mapping)
        return declared, added

    def _converter_names(self, mappings: list[AbiMapping]) -> list[str]:
        names: list[str] = []
        for mapping in mappings:
            if isinstance(mapping.type, Struct) and mapping.identity:
                continue
            names.extend([f"{mapping.ident}ToAbi", f"{mapping.ident}FromAbi"])
        return names

    def emit(self, record: FunctionRecord) -> None:
        param_mappings = [self.mapper.map_type(param.type) for param in record.parameters]
        return_mapping = self.mapper.map_type(record.returns) if record.returns is not None else None
        roots = param_mappings + ([return_mapping] if return_mapping is not None else [])
        declared, added = self._stage_declarations(roots)

        wrapper_name = to_pascal_case(record.name)
        extern_name = f"{csharp_identifier(record.symbol)}_native"
        new_members = [wrapper_name, extern_name] + self._converter_names(added)
        if wrapper_name == self.class_name:
            raise BindingConflict(f"Wrapper '{wrapper_name}' would have the same name as its enclosing class")
        taken = set(self.member_names)
        for member in new_members:
            if member in taken:
                raise BindingConflict(f"Generated member '{member}' for '{record.symbol}' is already defined")
            taken.add(member)

        arg_names: list[str] = []
        for param in record.parameters:
            name = escape_keyword(to_camel_case(param.name))
            if name in arg_names or name == SCOPE_LOCAL:
                raise BindingConflict(f"{record.symbol}: parameter name '{name}' collides after case conversion")
            arg_names.append(name)

        extern_lines = self._render_extern(record, extern_name, param_mappings, return_mapping, arg_names)
        wrapper_lines = self._render_wrapper(wrapper_name, extern_name, param_mappings, return_mapping, arg_names)

        self.declared = declared
        self.declarations.extend(added)
        self.member_names = taken
        self.externs.extend(extern_lines)
        self.wrappers.extend(wrapper_lines)
        self.symbols.append(record.symbol)

    def _render_extern(
        self,
        record: FunctionRecord,
        extern_name: str,
        params: list[AbiMapping],
        returns: AbiMapping | None,
        arg_names: list[str],
    ) -> list[str]:
        ret = returns.abi_type if returns is not None else "void"
        signature = ", ".join(f"{mapping.abi_type} {name}" for mapping, name in zip(params, arg_names))
        return [
            f"[DllImport(LibraryName, EntryPoint = {csharp_string_literal(record.symbol)}, "
            f"CallingConvention = CallingConvention.{self.options.calling_convention}, ExactSpelling = true)]",
            f"private static extern {ret} {extern_name}({signature});",
            "",
        ]

    def _render_wrapper(
        self,
        wrapper_name: str,
        extern_name: str,
        params: list[AbiMapping],
        returns: AbiMapping | None,
        arg_names: list[str],
    ) -> list[str]:
        ret = returns.host_type if returns is not None else "void"
        signature = ", ".join(f"{mapping.host_type} {name}" for mapping, name in zip(params, arg_names))
        call_args = ", ".join(mapping.render_to_abi(name, SCOPE_LOCAL) for mapping, name in zip(params, arg_names))
        call = f"{extern_name}({call_args})"
        lines = [f"public static {ret} {wrapper_name}({signature})", "{"]
        if any(mapping.pins for mapping in params):
            lines.append(f"    using var {SCOPE_LOCAL} = new PinScope();")
        if returns is None:
            lines.append(f"    {call};")
        else:
            # the native result is copied into managed memory before the scope releases its pins
            lines.append(f"    return {returns.render_from_abi(call)};")
        lines.append("}")
        lines.append("")
        return lines

    def render(self, namespace: str) -> list[str]:
        types: list[str] = []
        converters: list[str] = []
        for mapping in self.declarations:
            if isinstance(mapping.type, Struct):
                types.extend(render_struct_declarations(mapping))
                converters.extend(render_struct_converters(mapping))
            else:
                types.extend(render_option_declaration(mapping))
                converters.extend(render_option_converters(mapping))

        members: list[str] = [f"public const string LibraryName = {csharp_string_literal(self.library_name)};", ""]
        members.extend(self.externs)
        members.extend(self.wrappers)
        members.extend(converters)
        while members and members[-1] == "":
            members.pop()

        body: list[str] = list(types)
        body.append(f"public static unsafe class {self.class_name}")
        body.append("{")
        body.extend(_indent(members))
        body.append("}")

        lines = [f"namespace {namespace}.{self.class_name}", "{"]
        lines.extend(_indent(body))
        lines.append("}")
        lines.append("")
        return lines


def generate_artifact_bindings(
    registry: Registry,
    artifact_name: str,
    options: GeneratorOptions | None = None,
    pointer_size: int | None = None,
) -> ArtifactBindings:
    options = options or GeneratorOptions()
    options.validate()
    base = library_base_name(Path(artifact_name))
    class_name = options.class_name or to_pascal_case(base)
    library_name = options.library_name or base
    emitter = ArtifactEmitter(class_name, library_name, options, options.pointer_size or pointer_size or 8)

    skipped: list[SkippedRecord] = []
    for record in registry.records:
        try:
            emitter.emit(record)
        except (UnrepresentableType, BindingConflict) as exc:
            if options.strict:
                raise type(exc)(f"{artifact_name}: {record.symbol}: {exc}") from exc
            logger.warning("%s: skipping '%s': %s", artifact_name, record.symbol, exc)
            skipped.append(SkippedRecord(record.symbol, str(exc)))

    logger.info("%s: generated %d wrappers, skipped %d", artifact_name, len(emitter.symbols), len(skipped))
    return ArtifactBindings(
        artifact=artifact_name,
        namespace=f"{options.namespace}.{class_name}",
        class_name=class_name,
        library_name=library_name,
        lines=tuple(emitter.render(options.namespace)),
        symbols=tuple(emitter.symbols),
        skipped=tuple(skipped),
    )


def render_bindings_file(blocks: list[ArtifactBindings], namespace: str = DEFAULT_NAMESPACE) -> GenerationResult:
    # builds of one library for several platforms yield identical blocks; emit those once
    seen: dict[str, ArtifactBindings] = {}
    unique: list[ArtifactBindings] = []
    for block in blocks:
        previous = seen.get(block.namespace)
        if previous is None:
            seen[block.namespace] = block
            unique.append(block)
            continue
        if previous.lines != block.lines:
            raise BindingConflict(
                f"Artifacts '{previous.artifact}' and '{block.artifact}' generate different bindings "
                f"for namespace '{block.namespace}'"
            )
        logger.debug("%s: same bindings as '%s', emitted once", block.artifact, previous.artifact)

    lines = render_file_header()
    lines.extend(render_prelude(namespace))
    for block in unique:
        lines.extend(block.lines)
    return GenerationResult(
        text="\n".join(lines).rstrip("\n") + "\n",
        symbols=tuple(symbol for block in unique for symbol in block.symbols),
        skipped=tuple(item for block in unique for item in block.skipped),
        blocks=tuple(unique),
    )


def generate_bindings(
    registry: Registry,
    artifact_name: str,
    options: GeneratorOptions | None = None,
    pointer_size: int | None = None,
) -> GenerationResult:
    options = options or GeneratorOptions()
    block = generate_artifact_bindings(registry, artifact_name, options, pointer_size)
    return render_bindings_file([block], options.namespace)
