from __future__ import annotations

import html

from ._core_base import *  # noqa: F401,F403

# (container family, machine) -> .NET runtime identifier
RUNTIME_IDENTIFIERS: dict[tuple[str, str], str] = {
    ("linux", "x86_64"): "linux-x64",
    ("linux", "aarch64"): "linux-arm64",
    ("win", "x86_64"): "win-x64",
    ("win", "x86"): "win-x86",
    ("win", "aarch64"): "win-arm64",
    ("osx", "x86_64"): "osx-x64",
    ("osx", "aarch64"): "osx-arm64",
}

CONTAINER_FAMILIES = {
    "elf": "linux",
    "pe": "win",
    "coff": "win",
    "macho": "osx",
    "macho-fat": "osx",
}


@dataclass(frozen=True)
class NativeBinary:
    path: str
    runtime_identifier: str

    @property
    def filename(self) -> str:
        return Path(self.path).name


def runtime_identifier(container_format: str, machine: str | None) -> str | None:
    family = CONTAINER_FAMILIES.get(container_format)
    if family is None or machine is None:
        return None
    return RUNTIME_IDENTIFIERS.get((family, machine))


def project_file_name(class_name: str) -> str:
    return f"{class_name}Bindings.csproj"


def render_project_file(
    binaries: list[NativeBinary],
    target_framework: str = DEFAULT_TARGET_FRAMEWORK,
    source_file: str = "Bindings.cs",
) -> str:
    lines = [
        '<Project Sdk="Microsoft.NET.Sdk">',
        "  <PropertyGroup>",
        f"    <TargetFramework>{html.escape(target_framework)}</TargetFramework>",
        "    <AllowUnsafeBlocks>true</AllowUnsafeBlocks>",
        "    <Nullable>enable</Nullable>",
        "    <EnableDefaultCompileItems>false</EnableDefaultCompileItems>",
        "  </PropertyGroup>",
        "  <ItemGroup>",
        f'    <Compile Include="{html.escape(source_file)}" />',
        "  </ItemGroup>",
    ]
    if binaries:
        lines.append('  <ItemGroup Label="Native libraries">')
        for binary in binaries:
            package_path = f"runtimes/{binary.runtime_identifier}/native/{binary.filename}"
            lines.append(
                f'    <Content Include="{html.escape(binary.path)}" Link="{html.escape(package_path)}" '
                f'PackagePath="{html.escape(package_path)}">'
            )
            lines.append("      <CopyToOutputDirectory>PreserveNewest</CopyToOutputDirectory>")
            lines.append("    </Content>")
        lines.append("  </ItemGroup>")
    lines.append("</Project>")
    return "\n".join(lines) + "\n"
