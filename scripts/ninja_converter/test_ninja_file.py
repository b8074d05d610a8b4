#!/usr/bin/env python3
import struct
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import ninja_file as ninja
from ninja_motion import SignedInt32Key, SubMotionType, VectorKey
from ninja_node import NodeType
from ninja_stream import BinaryWriter, NinjaParseError
from ninja_texture_list import MinFilter, TextureDescriptor, TextureList

IDENTITY = (1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0)


def _write_header(writer: BinaryWriter, chunk_count: int) -> None:
    writer.write_tag(ninja.INFO_TAG)
    writer.write_u32(ninja.SIZEOF_INFO - 8)
    writer.write_u32(chunk_count)
    writer.write_u32(ninja.SIZEOF_INFO)
    for _ in range(3):
        writer.write_u32(0)
    writer.write_u32(ninja.INFO_VERSION)


def _write_name_list(writer: BinaryWriter, names: list) -> None:
    body_start = writer.begin_chunk("NXNN")
    writer.add_offset("names.data")
    writer.fill_offset("names.data")
    writer.write_u32(0)
    writer.write_u32(len(names))
    writer.add_offset("names.table")
    writer.fill_offset("names.table")
    for i in range(len(names)):
        writer.write_u32(i)
        writer.add_offset(f"name{i}")
    for i, name in enumerate(names):
        writer.fill_offset(f"name{i}")
        writer.write_cstring(name)
    writer.align(16)
    writer.end_chunk(body_start)


def _write_node(writer: BinaryWriter, parent: int, child: int, sibling: int) -> None:
    writer.write_u32(NodeType.UNIT_SCALING)
    for index in (0, parent, child, sibling):
        writer.write_s16(index)
    writer.write_vector3((0.0, float(parent + 1), 0.0))
    writer.write_vector3((0.0, 0.0, 0.0))
    writer.write_vector3((1.0, 1.0, 1.0))
    for value in IDENTITY:
        writer.write_f32(value)
    writer.write_vector3((0.0, 0.0, 0.0))
    writer.write_f32(1.0)
    writer.write_u32(0)
    writer.write_vector3((0.5, 0.5, 0.5))


def _write_object(writer: BinaryWriter, links: list) -> None:
    body_start = writer.begin_chunk("NXOB")
    writer.add_offset("object.data")
    writer.align(16)
    node_start = writer.tell()
    for parent, child, sibling in links:
        _write_node(writer, parent, child, sibling)
    writer.fill_offset("object.data")
    writer.write_vector3((0.0, 1.0, 0.0))
    writer.write_f32(4.0)
    writer.write(bytes(24))
    writer.write_u32(len(links))
    writer.write_u32(2)
    writer.write_u32(node_start - writer.base_offset)
    writer.align(16)
    writer.end_chunk(body_start)


def _write_motion(writer: BinaryWriter) -> None:
    body_start = writer.begin_chunk("NXMO")
    writer.add_offset("motion.data")
    writer.fill_offset("motion.data")
    writer.write_u32(0x00010004)
    writer.write_f32(0.0)
    writer.write_f32(30.0)
    writer.write_u32(2)
    writer.add_offset("motion.subs")
    writer.write_f32(30.0)
    writer.write_u32(0)
    writer.write_u32(0)
    writer.fill_offset("motion.subs")

    sub_motions = [
        (SubMotionType.TRANSLATION_XYZ, 16, [struct.pack(">f3f", 0.0, 1.0, 2.0, 3.0)]),
        (
            SubMotionType.FRAME_FLOAT | SubMotionType.ANGLE_ANGLE32 | SubMotionType.ROTATION_Y,
            8,
            [struct.pack(">ii", 0, 0), struct.pack(">ii", 30, 0x2000)],
        ),
    ]
    for i, (type_flags, record_size, keys) in enumerate(sub_motions):
        writer.write_u32(type_flags)
        writer.write_u32(0x80)
        writer.write_s32(1)
        for frame in (0.0, 30.0, 0.0, 30.0):
            writer.write_f32(frame)
        writer.write_u32(len(keys))
        writer.write_u32(record_size)
        writer.add_offset(f"sub{i}.keys")
    for i, (_, _, keys) in enumerate(sub_motions):
        writer.fill_offset(f"sub{i}.keys")
        writer.write(b"".join(keys))
    writer.align(16)
    writer.end_chunk(body_start)


def _write_raw_chunk(writer: BinaryWriter, tag: str, payload: bytes) -> None:
    body_start = writer.begin_chunk(tag)
    writer.write(payload)
    writer.align(16)
    writer.end_chunk(body_start)


def _write_end(writer: BinaryWriter) -> None:
    body_start = writer.begin_chunk(ninja.END_TAG)
    writer.align(16)
    writer.end_chunk(body_start)


def _build_model_file() -> bytes:
    writer = BinaryWriter(base_offset=ninja.SIZEOF_INFO)
    _write_header(writer, 4)
    _write_name_list(writer, ["root", "arm", "hand"])
    _write_raw_chunk(writer, "NXEF", b"\xff" * 12)
    _write_object(writer, [(-1, 1, -1), (0, 2, -1), (1, -1, -1)])
    _write_motion(writer)
    _write_end(writer)
    # Trailing bytes after the end chunk are ignored.
    writer.write(b"\xde\xad\xbe\xef")
    return writer.getvalue()


class ContainerTests(unittest.TestCase):
    def test_texture_list_file_round_trip(self) -> None:
        original = TextureList([
            TextureDescriptor(file_name="tex00.dds"),
            TextureDescriptor(file_name="tex01.dds", min_filter=MinFilter.LINEAR_MIPMAP_LINEAR, bank=2),
        ])
        parsed = ninja.parse_ninja_bytes(ninja.build_texture_list_file(original))

        self.assertEqual(parsed.texture_list, original)
        self.assertEqual(parsed.chunk_tags, ["NXTL", ninja.OFFSET_TABLE_TAG])
        self.assertIsNone(parsed.object)
        self.assertIsNone(parsed.motion)

    def test_texture_list_file_header_and_offset_table(self) -> None:
        textures = TextureList([TextureDescriptor(file_name="tex00.dds")])
        data = ninja.build_texture_list_file(textures)
        info = ninja.parse_ninja_bytes(data).info

        self.assertEqual(len(data), 0x90)
        self.assertEqual(info.chunk_count, 1)
        self.assertEqual(info.data_offset, 0x20)
        self.assertEqual(info.data_size, 64)
        self.assertEqual(info.offset_table_offset, 0x60)
        self.assertEqual(info.offset_table_size, 0x20)
        self.assertEqual(info.version, ninja.INFO_VERSION)

        table = data[info.offset_table_offset:]
        self.assertEqual(table[:4], b"NOF0")
        self.assertEqual(struct.unpack(">I", table[4:8])[0], 24)
        self.assertEqual(struct.unpack(">5I", table[8:28]), (3, 0, 8, 20, 40))
        self.assertEqual(data[0x80:0x84], b"NEND")
        self.assertEqual(struct.unpack(">I", data[0x84:0x88])[0], 8)

    def test_little_endian_texture_list_file(self) -> None:
        original = TextureList([TextureDescriptor(file_name="tex00.dds")])
        data = ninja.build_texture_list_file(original, endian="<")
        self.assertEqual(ninja.parse_ninja_bytes(data, endian="<").texture_list, original)

    def test_model_file_routes_chunks(self) -> None:
        parsed = ninja.parse_ninja_bytes(_build_model_file())

        self.assertEqual(parsed.chunk_tags, ["NXNN", "NXEF", "NXOB", "NXMO"])
        self.assertEqual(parsed.node_names.as_list(), ["root", "arm", "hand"])
        self.assertEqual([n.name for n in parsed.object.nodes], ["root", "arm", "hand"])
        self.assertEqual([n.parent_index for n in parsed.object.nodes], [-1, 0, 1])
        self.assertEqual(parsed.object.nodes[2].translation, (0.0, 2.0, 0.0))
        self.assertEqual(parsed.object.radius, 4.0)
        self.assertEqual(parsed.object.max_node_depth, 2)

        motion = parsed.motion
        self.assertEqual(motion.framerate, 30.0)
        self.assertEqual(len(motion.sub_motions), 2)
        self.assertEqual(
            motion.sub_motions[0].keyframes, [VectorKey(frame=0.0, value=(1.0, 2.0, 3.0))],
        )
        self.assertEqual(
            motion.sub_motions[1].keyframes,
            [SignedInt32Key(frame=0, value=0), SignedInt32Key(frame=30, value=0x2000)],
        )

    def test_not_a_ninja_file(self) -> None:
        with self.assertRaises(NinjaParseError):
            ninja.parse_ninja_bytes(b"RIFF" + bytes(28))

    def test_truncated_file(self) -> None:
        data = ninja.build_texture_list_file(TextureList([TextureDescriptor(file_name="a.dds")]))
        for cut in (4, 0x10, 0x2C, 0x30):
            with self.subTest(cut=cut):
                with self.assertRaises(NinjaParseError):
                    ninja.parse_ninja_bytes(data[:cut])

    def test_chunk_size_past_end_of_file(self) -> None:
        writer = BinaryWriter(base_offset=ninja.SIZEOF_INFO)
        _write_header(writer, 1)
        writer.write_tag("NXEF")
        writer.write_u32(0x1000)
        with self.assertRaises(NinjaParseError):
            ninja.parse_ninja_bytes(writer.getvalue())

    def test_load_ninja_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "chr.xno"
            path.write_bytes(_build_model_file())
            parsed = ninja.load_ninja_file(path)
        self.assertEqual(len(parsed.object.nodes), 3)


if __name__ == "__main__":
    unittest.main()
