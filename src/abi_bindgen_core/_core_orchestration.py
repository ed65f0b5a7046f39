from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from ._core_base import *  # noqa: F401,F403
from ._core_extract import *  # noqa: F401,F403
from ._core_exports import check_record_exports
from ._core_codegen import *  # noqa: F401,F403
from ._core_project import *  # noqa: F401,F403

logger = logging.getLogger(__name__)

SETTING_DEFAULTS: dict[str, Any] = {
    "namespace": DEFAULT_NAMESPACE,
    "class_name": None,
    "library_name": None,
    "strict": False,
    "calling_convention": "Cdecl",
    "pointer_size": None,
    "emit_project": False,
    "target_framework": DEFAULT_TARGET_FRAMEWORK,
    "check_exports": False,
    "require_exports": False,
    "jobs": 1,
}


@dataclass(frozen=True)
class GenerationSettings:
    namespace: str = DEFAULT_NAMESPACE
    class_name: str | None = None
    library_name: str | None = None
    strict: bool = False
    calling_convention: str = "Cdecl"
    pointer_size: int | None = None
    emit_project: bool = False
    target_framework: str = DEFAULT_TARGET_FRAMEWORK
    check_exports: bool = False
    require_exports: bool = False
    jobs: int = 1

    def generator_options(self) -> GeneratorOptions:
        return GeneratorOptions(
            namespace=self.namespace,
            class_name=self.class_name,
            library_name=self.library_name,
            strict=self.strict,
            calling_convention=self.calling_convention,
            pointer_size=self.pointer_size,
        )


@dataclass(frozen=True)
class ArtifactOutcome:
    artifact: str
    extraction: ExtractionResult | None = None
    bindings: ArtifactBindings | None = None
    runtime_identifier: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class BatchResult:
    generation: GenerationResult
    outcomes: tuple[ArtifactOutcome, ...]
    project_name: str
    project_text: str | None = None

    @property
    def failed_artifacts(self) -> list[ArtifactOutcome]:
        return [outcome for outcome in self.outcomes if outcome.failed]

    def summary(self) -> dict[str, int]:
        return {
            "artifacts": len(self.outcomes),
            "failed_artifacts": len(self.failed_artifacts),
            "generated": len(self.generation.symbols),
            "skipped": self.generation.skipped_count,
        }


def load_generation_config(path: Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    payload = load_json(path)
    validate_with_schema("config", payload)
    return payload


def resolve_generation_settings(config: dict[str, Any], overrides: dict[str, Any] | None = None) -> GenerationSettings:
    """Merge defaults, config file values and CLI overrides, in that order.

    An override of ``None`` means the flag was not given and leaves the
    config value in place.
    """
    merged = dict(SETTING_DEFAULTS)
    for key, value in config.items():
        if key in merged:
            merged[key] = value
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise AbiBindgenError(f"Unknown generation setting '{key}'")
        if value is not None:
            merged[key] = value
    if int(merged["jobs"]) < 1:
        raise AbiBindgenError(f"jobs must be at least 1, got {merged['jobs']}")
    if merged["pointer_size"] not in (None, 4, 8):
        raise AbiBindgenError(f"pointer_size must be 4 or 8, got {merged['pointer_size']}")
    settings = GenerationSettings(**merged)
    settings.generator_options().validate()
    return settings


def process_artifact(path: Path, settings: GenerationSettings) -> ArtifactOutcome:
    """Extraction through generation for one artifact; no state shared with other artifacts."""
    artifact = str(path)
    try:
        extraction = extract_registry(path)
        if settings.check_exports or settings.require_exports:
            check_record_exports(extraction, require=settings.require_exports)
        bindings = generate_artifact_bindings(
            extraction.registry,
            artifact,
            settings.generator_options(),
            pointer_size=extraction.pointer_size,
        )
    except ArtifactUnreadable:
        raise
    except AbiBindgenError as exc:
        if settings.strict:
            raise
        logger.warning("%s: skipping artifact: %s", artifact, exc)
        return ArtifactOutcome(artifact=artifact, error=str(exc))
    return ArtifactOutcome(
        artifact=artifact,
        extraction=extraction,
        bindings=bindings,
        runtime_identifier=runtime_identifier(extraction.format, extraction.machine),
    )


def _project_name(settings: GenerationSettings, blocks: list[ArtifactBindings]) -> str:
    if len(blocks) == 1:
        return blocks[0].class_name
    return settings.namespace.rsplit(".", 1)[-1]


def render_batch_project(outcomes: list[ArtifactOutcome], settings: GenerationSettings, source_file: str) -> str:
    binaries: list[NativeBinary] = []
    for outcome in outcomes:
        if outcome.failed:
            continue
        if outcome.runtime_identifier is None:
            logger.warning("%s: no .NET runtime identifier for this artifact, leaving it out of the project", outcome.artifact)
            continue
        binaries.append(NativeBinary(path=outcome.artifact, runtime_identifier=outcome.runtime_identifier))
    return render_project_file(binaries, target_framework=settings.target_framework, source_file=source_file)


def generate_bindings_for_artifacts(
    paths: list[Path],
    settings: GenerationSettings,
    source_file: str = "Bindings.cs",
) -> BatchResult:
    if not paths:
        raise AbiBindgenError("No artifacts given")
    if len(paths) > 1 and (settings.class_name or settings.library_name):
        raise AbiBindgenError("class_name and library_name can only be set when generating for a single artifact")

    workers = min(settings.jobs, len(paths))
    if workers == 1:
        outcomes = [process_artifact(path, settings) for path in paths]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(process_artifact, path, settings) for path in paths]
            # input order, not completion order
            outcomes = [future.result() for future in futures]

    blocks = [outcome.bindings for outcome in outcomes if outcome.bindings is not None]
    generation = render_bindings_file(blocks, settings.namespace)
    project_text = render_batch_project(outcomes, settings, source_file) if settings.emit_project else None
    return BatchResult(
        generation=generation,
        outcomes=tuple(outcomes),
        project_name=_project_name(settings, list(generation.blocks)),
        project_text=project_text,
    )


def inspect_artifact(path: Path, pointer_size: int | None = None) -> dict[str, Any]:
    """Extraction report plus the native layout of every parameter and return type."""
    extraction = extract_registry(path)
    pointer_size = pointer_size or extraction.pointer_size
    mapper = AbiMapper(pointer_size, scalar_alignment(pointer_size, extraction.format, extraction.machine))
    layouts: list[dict[str, Any]] = []
    for record in extraction.registry.records:
        entry: dict[str, Any] = {"symbol": record.symbol, "parameters": []}
        try:
            for param in record.parameters:
                entry["parameters"].append({"name": param.name, "abi": mapper.map_type(param.type).as_dict()})
            entry["returns"] = mapper.map_type(record.returns).as_dict() if record.returns is not None else None
        except (UnrepresentableType, BindingConflict) as exc:
            entry["error"] = str(exc)
        layouts.append(entry)
    payload = extraction.as_dict()
    payload["locations"] = {symbol: location.describe() for symbol, location in extraction.locations.items()}
    payload["abi"] = layouts
    return payload
