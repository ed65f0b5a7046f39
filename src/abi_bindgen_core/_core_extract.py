from __future__ import annotations

import logging

from ._core_base import *  # noqa: F401,F403
from ._core_record import *  # noqa: F401,F403
from ._core_container import *  # noqa: F401,F403

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedFrame:
    location: FrameLocation
    version: int
    records: tuple[FunctionRecord, ...]


@dataclass(frozen=True)
class ExtractionResult:
    artifact: str
    format: str
    machine: str | None
    pointer_size: int
    registry: Registry
    frames: tuple[ExtractedFrame, ...]
    locations: dict[str, FrameLocation] = field(default_factory=dict)

    @property
    def metadata_found(self) -> bool:
        return len(self.registry) > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "artifact": self.artifact,
            "format": self.format,
            "machine": self.machine,
            "pointer_size": self.pointer_size,
            "metadata_found": self.metadata_found,
            "frames": [
                {**frame.location.as_dict(), "version": frame.version, "record_count": len(frame.records)}
                for frame in self.frames
            ],
            "registry": registry_to_dict(self.registry),
        }


def scan_section(section: Section) -> list[ExtractedFrame]:
    frames: list[ExtractedFrame] = []
    data = section.data
    pos = 0
    while True:
        start = data.find(FRAME_MAGIC, pos)
        if start < 0:
            break
        location = FrameLocation(section=section.name, offset=start, file_offset=section.file_offset + start)
        where = location.describe()
        header_end = start + FRAME_HEADER.size
        if header_end > len(data):
            raise MetadataCorruption(f"{where}: registry marker found but the frame header is truncated")
        _, version, length, checksum = FRAME_HEADER.unpack_from(data, start)
        remaining = len(data) - header_end
        # length is checked before the checksum
        if length > remaining:
            raise MetadataCorruption(
                f"{where}: frame declares {length} payload bytes but only {remaining} remain in the section"
            )
        payload = data[header_end:header_end + length]
        actual = payload_checksum(payload)
        if actual != checksum:
            raise MetadataCorruption(
                f"{where}: frame checksum mismatch (stored 0x{checksum:08x}, computed 0x{actual:08x})"
            )
        if version not in SUPPORTED_FORMAT_VERSIONS:
            supported = ", ".join(str(v) for v in SUPPORTED_FORMAT_VERSIONS)
            raise UnsupportedVersion(f"{where}: registry format version {version} is not supported (supported: {supported})")
        try:
            records = decode_payload(payload, version)
        except MetadataCorruption as exc:
            raise MetadataCorruption(f"{where}: {exc}") from exc
        except UnsupportedVersion as exc:
            raise UnsupportedVersion(f"{where}: {exc}") from exc
        logger.debug("%s: frame v%d with %d records", where, version, len(records))
        frames.append(ExtractedFrame(location=location, version=version, records=tuple(records)))
        pos = header_end + length
    return frames


def merge_frames(frames: list[ExtractedFrame]) -> tuple[Registry, dict[str, FrameLocation]]:
    merged: list[FunctionRecord] = []
    locations: dict[str, FrameLocation] = {}
    for frame in frames:
        for record in frame.records:
            previous = locations.get(record.symbol)
            if previous is not None:
                raise DuplicateSymbol(record.symbol, previous, frame.location)
            locations[record.symbol] = frame.location
            merged.append(record)
    return Registry(records=tuple(merged), version=FORMAT_VERSION), locations


def extract_from_container(container: Container) -> ExtractionResult:
    frames: list[ExtractedFrame] = []
    for section in container.sections:
        frames.extend(scan_section(section))
    registry, locations = merge_frames(frames)
    if not registry.records:
        logger.warning(
            "%s: no metadata found (%d empty frames), the artifact exports no annotated functions",
            container.path,
            len(frames),
        )
    else:
        logger.info("%s: %d frames, %d records", container.path, len(frames), len(registry))
    return ExtractionResult(
        artifact=container.path,
        format=container.format,
        machine=container.machine,
        pointer_size=container.pointer_size,
        registry=registry,
        frames=tuple(frames),
        locations=locations,
    )


def extract_registry(path: Path) -> ExtractionResult:
    return extract_from_container(read_artifact(path))
