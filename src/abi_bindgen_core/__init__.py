from .core import (
    AbiBindgenError,
    AbiMapper,
    ArtifactUnreadable,
    BindingConflict,
    DuplicateSymbol,
    EmbedError,
    Field,
    FunctionRecord,
    GenerationSettings,
    GeneratorOptions,
    MetadataCorruption,
    Option,
    Parameter,
    Primitive,
    Registry,
    RegistryBuilder,
    Slice,
    String,
    Struct,
    TypeArena,
    UnrepresentableType,
    UnsupportedVersion,
    decode_frame,
    encode_frame,
    extract_registry,
    generate_bindings,
    generate_bindings_for_artifacts,
)

__all__ = [
    "AbiBindgenError",
    "AbiMapper",
    "ArtifactUnreadable",
    "BindingConflict",
    "DuplicateSymbol",
    "EmbedError",
    "Field",
    "FunctionRecord",
    "GenerationSettings",
    "GeneratorOptions",
    "MetadataCorruption",
    "Option",
    "Parameter",
    "Primitive",
    "Registry",
    "RegistryBuilder",
    "Slice",
    "String",
    "Struct",
    "TypeArena",
    "UnrepresentableType",
    "UnsupportedVersion",
    "decode_frame",
    "encode_frame",
    "extract_registry",
    "generate_bindings",
    "generate_bindings_for_artifacts",
]
