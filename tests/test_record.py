from __future__ import annotations

import struct
import unittest
from unittest import mock
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from abi_bindgen_core import _core_record  # noqa: E402
from abi_bindgen_core import core as abi_core  # noqa: E402
from abi_bindgen_core.core import (  # noqa: E402
    FRAME_HEADER,
    AbiBindgenError,
    EmbedError,
    Field,
    FunctionRecord,
    MetadataCorruption,
    Option,
    Parameter,
    Primitive,
    Registry,
    Slice,
    String,
    Struct,
    UnrepresentableType,
    UnsupportedVersion,
)


def sample_records() -> list[FunctionRecord]:
    point = Struct("Point", (Field("x", Primitive("float32")), Field("y", Primitive("float32"))))
    return [
        FunctionRecord(
            symbol="sum_numbers",
            name="sum",
            parameters=(Parameter("numbers", Slice(Primitive("int32"))),),
            returns=Primitive("int32"),
        ),
        FunctionRecord(
            symbol="describe",
            name="describe",
            parameters=(
                Parameter("label", String()),
                Parameter("points", Slice(point)),
                Parameter("limit", Option(Primitive("uint64"))),
            ),
            returns=Option(String()),
        ),
        FunctionRecord(symbol="reset", name="reset"),
    ]


class PayloadTests(unittest.TestCase):
    def test_frame_round_trip_preserves_order_and_shape(self) -> None:
        records = sample_records()
        registry = abi_core.decode_frame(abi_core.encode_frame(records))
        self.assertEqual(registry, Registry(records=tuple(records)))
        self.assertEqual(registry.symbols, ["sum_numbers", "describe", "reset"])

    def test_frame_header_layout(self) -> None:
        frame = abi_core.encode_frame(sample_records()[:1])
        magic, version, length, checksum = FRAME_HEADER.unpack_from(frame, 0)
        self.assertEqual(magic, b"\xabBINDGEN")
        self.assertEqual(version, 1)
        self.assertEqual(length, len(frame) - FRAME_HEADER.size)
        self.assertEqual(checksum, abi_core.payload_checksum(frame[FRAME_HEADER.size:]))

    def test_every_single_byte_flip_in_payload_fails_checksum(self) -> None:
        frame = abi_core.encode_frame(sample_records())
        for index in range(FRAME_HEADER.size, len(frame)):
            corrupted = bytearray(frame)
            corrupted[index] ^= 0x01
            with self.assertRaisesRegex(MetadataCorruption, "checksum"):
                abi_core.decode_frame(bytes(corrupted))

    def test_unknown_type_tag_is_unsupported_version(self) -> None:
        payload = bytearray(abi_core.encode_payload(sample_records()[:1]))
        # the return type is the final byte of the first record
        payload[-1] = 0x7F
        with self.assertRaisesRegex(UnsupportedVersion, "Unknown type tag 0x7f"):
            abi_core.decode_payload(bytes(payload))

    def test_unknown_format_version_is_rejected(self) -> None:
        with self.assertRaises(UnsupportedVersion):
            abi_core.decode_payload(b"", version=9)

    def test_truncated_payload_is_corruption(self) -> None:
        payload = abi_core.encode_payload(sample_records())
        with self.assertRaisesRegex(MetadataCorruption, "Truncated payload"):
            abi_core.decode_payload(payload[:-3])

    def test_implausible_parameter_count_is_corruption(self) -> None:
        payload = bytearray()
        for text in (b"f", b"f"):
            payload += struct.pack("<I", len(text)) + text
        payload += struct.pack("<I", 0xFFFFFFF0)
        with self.assertRaisesRegex(MetadataCorruption, "Implausible parameter count"):
            abi_core.decode_payload(bytes(payload))

    def test_decoder_depth_limit(self) -> None:
        payload = bytearray()
        for text in (b"deep", b"deep"):
            payload += struct.pack("<I", len(text)) + text
        payload += struct.pack("<I", 0)
        payload += bytes([0x13] * 40) + bytes([0x03])
        with self.assertRaisesRegex(MetadataCorruption, "nesting exceeds"):
            abi_core.decode_payload(bytes(payload))

    def test_none_tag_is_only_valid_for_returns(self) -> None:
        payload = bytearray()
        for text in (b"f", b"f"):
            payload += struct.pack("<I", len(text)) + text
        payload += struct.pack("<I", 1) + struct.pack("<I", 1) + b"a" + bytes([0x00]) + bytes([0x00])
        with self.assertRaisesRegex(MetadataCorruption, "'none' tag"):
            abi_core.decode_payload(bytes(payload))

    def test_empty_symbol_is_rejected(self) -> None:
        with self.assertRaisesRegex(UnrepresentableType, "empty export symbol"):
            abi_core.encode_payload([FunctionRecord(symbol="", name="x")])

    def test_payload_over_length_limit_is_embed_error(self) -> None:
        with mock.patch.object(_core_record, "MAX_PAYLOAD_LENGTH", 8):
            with self.assertRaises(EmbedError):
                abi_core.encode_frame(sample_records())


class RecordsDocumentTests(unittest.TestCase):
    def test_load_records_document_resolves_struct_table(self) -> None:
        document = {
            "format_version": 1,
            "structs": {
                "Point": [
                    {"name": "x", "type": {"kind": "primitive", "name": "float32"}},
                    {"name": "y", "type": {"kind": "primitive", "name": "float32"}},
                ]
            },
            "functions": [
                {
                    "symbol": "centroid",
                    "name": "centroid",
                    "parameters": [
                        {"name": "points", "type": {"kind": "slice", "element": {"kind": "struct", "name": "Point"}}}
                    ],
                    "returns": {"kind": "struct", "name": "Point"},
                }
            ],
        }
        records = abi_core.load_records_document(document)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].returns, Struct("Point", (Field("x", Primitive("float32")), Field("y", Primitive("float32")))))
        self.assertEqual(abi_core.registry_to_dict(Registry(tuple(records)))["functions"][0]["symbol"], "centroid")

    def test_load_records_document_rejects_schema_violation(self) -> None:
        with self.assertRaisesRegex(AbiBindgenError, "JSON schema validation"):
            abi_core.load_records_document({"functions": [{"name": "missing_symbol"}]})

    def test_record_json_round_trip(self) -> None:
        arena = abi_core.TypeArena()
        for record in sample_records():
            self.assertEqual(abi_core.record_from_dict(abi_core.record_to_dict(record), arena), record)


if __name__ == "__main__":
    unittest.main()
