from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import artifact_builders as builders  # noqa: E402
from abi_bindgen_core import core as abi_core  # noqa: E402
from abi_bindgen_core.core import (  # noqa: E402
    ArtifactUnreadable,
    DuplicateSymbol,
    EmbedError,
    FunctionRecord,
    Parameter,
    Primitive,
    RegistryBuilder,
    Slice,
)


def sum_record(symbol: str = "sum_numbers") -> FunctionRecord:
    return FunctionRecord(
        symbol=symbol,
        name="sum",
        parameters=(Parameter("numbers", Slice(Primitive("int32"))),),
        returns=Primitive("int32"),
    )


class RegistryBuilderTests(unittest.TestCase):
    def test_finalize_serializes_records_in_insertion_order(self) -> None:
        builder = RegistryBuilder("math")
        builder.add(sum_record("b"))
        builder.add(sum_record("a"))
        frame = builder.finalize()
        self.assertTrue(builder.finalized)
        self.assertEqual(abi_core.decode_frame(frame).symbols, ["b", "a"])

    def test_duplicate_symbol_within_unit(self) -> None:
        builder = RegistryBuilder("math")
        builder.add(sum_record())
        with self.assertRaisesRegex(DuplicateSymbol, "unit 'math'"):
            builder.add(sum_record())

    def test_add_after_finalize_is_rejected(self) -> None:
        builder = RegistryBuilder("math")
        builder.finalize()
        with self.assertRaises(EmbedError):
            builder.add(sum_record())
        with self.assertRaises(EmbedError):
            builder.finalize()

    def test_empty_unit_still_produces_a_frame(self) -> None:
        frame = RegistryBuilder("empty").finalize()
        self.assertEqual(len(abi_core.decode_frame(frame)), 0)


class RendererTests(unittest.TestCase):
    def setUp(self) -> None:
        builder = RegistryBuilder("math-unit")
        builder.add(sum_record())
        self.frame = builder.finalize()

    def test_c_source_places_array_in_named_sections(self) -> None:
        text = abi_core.render_embedding(self.frame, "c", "math-unit")
        self.assertIn('section(".abi_bindgen")', text)
        self.assertIn('section("__DATA,__abi_bindgen")', text)
        self.assertIn('#pragma section(".abibg", read)', text)
        self.assertIn(f"const uint8_t abi_bindgen_registry_math_unit[{len(self.frame)}]", text)
        self.assertIn('#pragma comment(linker, "/INCLUDE:abi_bindgen_registry_math_unit")', text)
        self.assertIn("0xab, 0x42, 0x49, 0x4e", text)

    def test_c_source_keeps_the_registry_under_msvc_on_every_architecture(self) -> None:
        text = abi_core.render_c_source(self.frame, "math-unit")
        x86 = text.index("#if defined(_M_IX86)")
        decorated = text.index('#pragma comment(linker, "/INCLUDE:_abi_bindgen_registry_math_unit")')
        plain = text.index('#pragma comment(linker, "/INCLUDE:abi_bindgen_registry_math_unit")')
        self.assertLess(x86, decorated)
        self.assertLess(decorated, text.index("#else", x86))
        self.assertLess(text.index("#else", x86), plain)

    def test_asm_source_uses_non_allocated_section(self) -> None:
        text = abi_core.render_embedding(self.frame, "asm", "math")
        self.assertIn('.section .abi_bindgen,"",%progbits', text)
        self.assertIn("abi_bindgen_registry_math:", text)
        macho = abi_core.render_asm_source(self.frame, "math", flavor="macho")
        self.assertIn(".section __DATA,__abi_bindgen", macho)
        self.assertIn(".no_dead_strip _abi_bindgen_registry_math", macho)

    def test_raw_format_is_the_frame(self) -> None:
        self.assertEqual(abi_core.render_embedding(self.frame, "raw", "math"), self.frame)

    def test_unknown_format(self) -> None:
        with self.assertRaisesRegex(EmbedError, "Unknown embed format"):
            abi_core.render_embedding(self.frame, "wasm", "math")

    def test_inject_needs_an_artifact(self) -> None:
        with self.assertRaisesRegex(EmbedError, "--artifact"):
            abi_core.render_embedding(self.frame, "inject", "math")


class InjectTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        builder = RegistryBuilder("math")
        builder.add(sum_record())
        self.frame = builder.finalize()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def write(self, name: str, blob: bytes) -> Path:
        path = self.root / name
        path.write_bytes(blob)
        return path

    def test_injected_elf_carries_the_registry(self) -> None:
        host = self.write(
            "libmath.so",
            builders.build_elf([(".text", b"\x90" * 32)], machine=builders.ELF_MACHINE_AARCH64, file_type=builders.ET_DYN),
        )
        blob = abi_core.render_embedding(self.frame, "inject", "math", artifact=host)
        container = abi_core.parse_container(blob, "libmath.so")
        self.assertEqual(container.format, "elf")
        self.assertEqual(container.machine, "aarch64")
        sections = {section.name: section for section in container.sections}
        self.assertEqual(sections[".text"].data, b"\x90" * 32)
        registry = sections[".abi_bindgen"]
        self.assertEqual(registry.data, self.frame)
        self.assertEqual(blob[registry.file_offset:registry.file_offset + len(self.frame)], self.frame)
        self.assertEqual(host.read_bytes()[:4], b"\x7fELF")

    def test_inject_refuses_a_second_registry(self) -> None:
        host = self.write("libmath.so", builders.build_elf([(".abi_bindgen", self.frame)], file_type=builders.ET_DYN))
        with self.assertRaisesRegex(EmbedError, "already has"):
            abi_core.inject_frame(self.frame, host)

    def test_inject_refuses_macho_and_archives(self) -> None:
        dylib = self.write("libmath.dylib", builders.build_macho([("__TEXT", "__text", b"\x90" * 8)]))
        archive = self.write("libmath.a", builders.build_archive([]))
        for path in (dylib, archive):
            with self.subTest(path=path.name), self.assertRaisesRegex(EmbedError, "use --format c or asm"):
                abi_core.inject_frame(self.frame, path)

    def test_inject_missing_artifact(self) -> None:
        with self.assertRaises(ArtifactUnreadable):
            abi_core.inject_frame(self.frame, self.root / "missing.so")


if __name__ == "__main__":
    unittest.main()
