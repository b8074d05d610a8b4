#!/usr/bin/env python3
import struct
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import ninja_texture_list as texlist
from ninja_stream import BinaryReader, BinaryWriter, NinjaWriteError


def _read_back(data: bytes, endian: str = ">") -> texlist.TextureList:
    reader = BinaryReader(data, endian=endian)
    reader.seek(8)
    return texlist.read_texture_list(reader)


class TextureListWriterTests(unittest.TestCase):
    def test_single_texture_chunk_layout(self) -> None:
        textures = texlist.TextureList([texlist.TextureDescriptor(file_name="tex00.dds")])
        data = texlist.texture_list_to_bytes(textures)

        self.assertEqual(len(data), 64)
        self.assertEqual(data[:4], b"NXTL")
        self.assertEqual(struct.unpack(">I", data[4:8])[0], 56)
        # dataOffset points at the count/table cell after the single record.
        self.assertEqual(struct.unpack(">I", data[8:12])[0], 36)
        self.assertEqual(data[12:16], bytes(4))
        self.assertEqual(
            struct.unpack(">IIHHII", data[16:36]),
            (0, 44, texlist.MinFilter.LINEAR, texlist.MagFilter.LINEAR, 0, 0),
        )
        self.assertEqual(struct.unpack(">II", data[36:44]), (1, 16))
        self.assertEqual(data[44:54], b"tex00.dds\x00")
        self.assertEqual(data[54:], bytes(10))

    def test_single_texture_round_trip(self) -> None:
        original = texlist.TextureList([
            texlist.TextureDescriptor(
                file_name="tex00.dds",
                type=0,
                min_filter=texlist.MinFilter.LINEAR,
                mag_filter=texlist.MagFilter.LINEAR,
                global_index=0,
                bank=0,
            )
        ])
        decoded = _read_back(texlist.texture_list_to_bytes(original))
        self.assertEqual(decoded, original)
        self.assertEqual(len(decoded), 1)
        self.assertEqual(str(decoded[0]), "tex00.dds")

    def test_reader_stops_after_indirection_cell(self) -> None:
        reader = BinaryReader(texlist.texture_list_to_bytes(texlist.TextureList()))
        reader.seek(8)
        texlist.read_texture_list(reader)
        self.assertEqual(reader.tell(), 12)

    def test_empty_texture_list(self) -> None:
        data = texlist.texture_list_to_bytes(texlist.TextureList())
        self.assertEqual(len(data), 32)
        self.assertEqual(struct.unpack(">I", data[4:8])[0], 24)
        self.assertEqual(struct.unpack(">II", data[16:24]), (0, 16))
        self.assertEqual(len(_read_back(data)), 0)

    def test_many_textures_keep_order_and_fields(self) -> None:
        original = texlist.TextureList([
            texlist.TextureDescriptor(
                file_name=f"chr_body{i:02d}.dds",
                type=0x10 + i,
                min_filter=texlist.MinFilter.LINEAR_MIPMAP_LINEAR,
                mag_filter=texlist.MagFilter.NEAREST,
                global_index=i * 3,
                bank=i % 2,
            )
            for i in range(5)
        ])
        data = texlist.texture_list_to_bytes(original)
        self.assertEqual(len(data) % texlist.TEXTURE_LIST_ALIGNMENT, 0)
        self.assertEqual(struct.unpack(">I", data[4:8])[0], len(data) - 8)
        self.assertEqual(_read_back(data), original)

    def test_little_endian_round_trip(self) -> None:
        original = texlist.TextureList([
            texlist.TextureDescriptor(file_name="a.dds", global_index=7),
            texlist.TextureDescriptor(file_name="b.dds", bank=1),
        ])
        data = texlist.texture_list_to_bytes(original, endian="<")
        self.assertEqual(struct.unpack("<I", data[4:8])[0], len(data) - 8)
        self.assertEqual(_read_back(data, endian="<"), original)

    def test_unknown_filter_values_survive(self) -> None:
        original = texlist.TextureList([
            texlist.TextureDescriptor(file_name="x.dds", min_filter=9, mag_filter=7),
        ])
        decoded = _read_back(texlist.texture_list_to_bytes(original))
        self.assertEqual(decoded[0].min_filter, 9)
        self.assertEqual(decoded[0].mag_filter, 7)
        self.assertNotIsInstance(decoded[0].min_filter, texlist.MinFilter)

    def test_offset_fields_are_recorded_as_relocations(self) -> None:
        writer = BinaryWriter()
        textures = texlist.TextureList([texlist.TextureDescriptor(file_name="tex00.dds")])
        size = texlist.write_texture_list(writer, textures)

        self.assertEqual(size, 56)
        self.assertEqual(sorted(writer.relocations), [8, 20, 40])
        self.assertEqual(len(writer.offsets), 0)

    def test_writer_respects_base_offset(self) -> None:
        writer = BinaryWriter(base_offset=16)
        writer.write(bytes(16))
        texlist.write_texture_list(writer, texlist.TextureList([texlist.TextureDescriptor("t.dds")]))
        data = writer.getvalue()

        reader = BinaryReader(data, base_offset=16)
        reader.seek(24)
        self.assertEqual(texlist.read_texture_list(reader)[0].file_name, "t.dds")

    def test_shift_jis_name_round_trips_bytewise(self) -> None:
        name = "テクスチャ.dds".encode("shift_jis").decode("latin-1")
        original = texlist.TextureList([texlist.TextureDescriptor(file_name=name)])
        data = texlist.texture_list_to_bytes(original)
        self.assertIn("テクスチャ.dds".encode("shift_jis") + b"\x00", data)
        self.assertEqual(_read_back(data), original)

    def test_non_ascii_name_is_rejected(self) -> None:
        textures = texlist.TextureList([texlist.TextureDescriptor(file_name="テクスチャ.dds")])
        with self.assertRaises(NinjaWriteError):
            texlist.texture_list_to_bytes(textures)


if __name__ == "__main__":
    unittest.main()
