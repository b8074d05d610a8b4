"""
ninja_file.py
=============

Whole-file handling for Ninja containers (``.xno`` models, ``.xnm`` motions).

A file opens with an info chunk (``NXIF``) announcing where the data chunks
start. Every chunk is ``tag(4) size(u32) body(size)`` and all offsets inside
chunk bodies are measured from that data offset. Chunks are routed by the
last two letters of their tag so other platform prefixes (``NN``, ``NG``,
``NZ`` ...) decode with the same codecs; anything unknown is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ninja_motion import Motion, read_motion
from ninja_node import NodeNameList, ObjectHierarchy, attach_names, read_node_name_list, read_object_nodes
from ninja_stream import DEFAULT_ENDIAN, BinaryReader, BinaryWriter, NinjaParseError
from ninja_texture_list import TextureList, read_texture_list, write_texture_list

INFO_TAG = "NXIF"
OFFSET_TABLE_TAG = "NOF0"
END_TAG = "NEND"
SIZEOF_INFO = 0x20
CHUNK_ALIGNMENT = 0x10
INFO_VERSION = 1


@dataclass
class NinjaInfo:
    chunk_count: int
    data_offset: int
    data_size: int
    offset_table_offset: int
    offset_table_size: int
    version: int


@dataclass
class NinjaFile:
    info: NinjaInfo
    texture_list: Optional[TextureList] = None
    node_names: Optional[NodeNameList] = None
    object: Optional[ObjectHierarchy] = None
    motion: Optional[Motion] = None
    chunk_tags: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def read_info(reader: BinaryReader) -> NinjaInfo:
    tag = reader.read_tag()
    if tag != INFO_TAG:
        raise NinjaParseError(f"Not a Ninja file (first chunk {tag!r})")
    reader.read_u32()  # info chunk size
    return NinjaInfo(
        chunk_count=reader.read_u32(),
        data_offset=reader.read_u32(),
        data_size=reader.read_u32(),
        offset_table_offset=reader.read_u32(),
        offset_table_size=reader.read_u32(),
        version=reader.read_u32(),
    )


def _on_texture_list(ninja: NinjaFile, reader: BinaryReader) -> None:
    ninja.texture_list = read_texture_list(reader)


def _on_node_names(ninja: NinjaFile, reader: BinaryReader) -> None:
    ninja.node_names = read_node_name_list(reader)


def _on_object(ninja: NinjaFile, reader: BinaryReader) -> None:
    ninja.object = read_object_nodes(reader)


def _on_motion(ninja: NinjaFile, reader: BinaryReader) -> None:
    ninja.motion = read_motion(reader)


# Keyed by the platform-independent part of the chunk tag.
CHUNK_HANDLERS: Dict[str, Callable[[NinjaFile, BinaryReader], None]] = {
    "TL": _on_texture_list,
    "NN": _on_node_names,
    "OB": _on_object,
    "MO": _on_motion,
}


def parse_ninja_bytes(data: bytes, endian: str = DEFAULT_ENDIAN) -> NinjaFile:
    reader = BinaryReader(data, endian=endian)
    info = read_info(reader)
    reader.base_offset = info.data_offset
    reader.seek(info.data_offset)

    ninja = NinjaFile(info=info)
    while reader.tell() + 8 <= len(reader):
        tag = reader.read_tag()
        size = reader.read_u32()
        body_start = reader.tell()
        if tag == END_TAG:
            break
        ninja.chunk_tags.append(tag)

        handler = CHUNK_HANDLERS.get(tag[2:]) if tag.startswith("N") else None
        if handler is None:
            logging.debug("Skipping chunk %s (%d bytes) at 0x%X", tag, size, body_start - 8)
        else:
            logging.debug("Decoding chunk %s (%d bytes) at 0x%X", tag, size, body_start - 8)
            handler(ninja, reader)
        reader.seek(body_start + size)

    if ninja.object is not None and ninja.node_names is not None:
        ninja.object.nodes = attach_names(ninja.object.nodes, ninja.node_names.as_list())
    return ninja


def load_ninja_file(path: Path, endian: str = DEFAULT_ENDIAN) -> NinjaFile:
    return parse_ninja_bytes(path.read_bytes(), endian=endian)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def write_offset_table(writer: BinaryWriter) -> int:
    """Emit the offset table chunk listing every relocated offset field."""
    body_start = writer.begin_chunk(OFFSET_TABLE_TAG)
    positions = sorted(writer.relocations)
    writer.write_u32(len(positions))
    writer.write_u32(0)
    for position in positions:
        writer.write_u32(position)
    writer.align(CHUNK_ALIGNMENT)
    return writer.end_chunk(body_start)


def build_texture_list_file(texture_list: TextureList, endian: str = DEFAULT_ENDIAN) -> bytes:
    """Build a complete Ninja file holding a single texture list chunk."""
    writer = BinaryWriter(endian=endian, base_offset=SIZEOF_INFO)

    writer.write_tag(INFO_TAG)
    writer.write_u32(SIZEOF_INFO - 8)
    writer.write_u32(1)
    writer.write_u32(SIZEOF_INFO)
    writer.add_offset("info.dataSize")
    writer.add_offset("info.offsetTable")
    writer.add_offset("info.offsetTableSize")
    writer.write_u32(INFO_VERSION)

    write_texture_list(writer, texture_list)
    data_end = writer.tell()

    # Header fields below are sizes and an absolute position, not relocations.
    for name, value in (
        ("info.dataSize", data_end - SIZEOF_INFO),
        ("info.offsetTable", data_end),
    ):
        position, _ = writer.offsets.take(name)
        writer.patch_u32(position, value)

    write_offset_table(writer)
    position, _ = writer.offsets.take("info.offsetTableSize")
    writer.patch_u32(position, writer.tell() - data_end)

    body_start = writer.begin_chunk(END_TAG)
    writer.align(CHUNK_ALIGNMENT)
    writer.end_chunk(body_start)
    return writer.getvalue()
