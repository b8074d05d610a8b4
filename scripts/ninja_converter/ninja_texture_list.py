"""
ninja_texture_list.py
=====================

Reader and writer for the Ninja texture list chunk (``NXTL``).

Chunk layout (offsets are relative to the writer/reader base offset)::

    "NXTL" size:u32
    dataOffset:u32            -> points at the count/table cell below
    padding to 16
    texture records           type, nameOffset, minFilter:u16, magFilter:u16,
                              globalIndex, bank
    count:u32 tableOffset:u32
    file name strings         null-terminated
    padding to 16
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Type, TypeVar, Union

from ninja_stream import DEFAULT_ENDIAN, BinaryReader, BinaryWriter

TEXTURE_LIST_TAG = "NXTL"
TEXTURE_LIST_ALIGNMENT = 0x10
SIZEOF_TEXTURE_RECORD = 20


class MinFilter(IntEnum):
    NEAREST = 0
    LINEAR = 1
    NEAREST_MIPMAP_NEAREST = 2
    NEAREST_MIPMAP_LINEAR = 3
    LINEAR_MIPMAP_NEAREST = 4
    LINEAR_MIPMAP_LINEAR = 5
    ANISOTROPIC = 6


class MagFilter(IntEnum):
    NEAREST = 0
    LINEAR = 1
    ANISOTROPIC = 2


_E = TypeVar("_E", bound=IntEnum)


def _coerce(enum_cls: Type[_E], value: int) -> Union[_E, int]:
    try:
        return enum_cls(value)
    except ValueError:
        logging.debug("Unknown %s value %d kept as integer", enum_cls.__name__, value)
        return value


@dataclass
class TextureDescriptor:
    file_name: str
    type: int = 0
    min_filter: Union[MinFilter, int] = MinFilter.LINEAR
    mag_filter: Union[MagFilter, int] = MagFilter.LINEAR
    global_index: int = 0
    bank: int = 0

    def __str__(self) -> str:
        return self.file_name


@dataclass
class TextureList:
    """Texture descriptors in on-disk order; the position is the texture index."""

    textures: List[TextureDescriptor] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.textures)

    def __iter__(self) -> Iterator[TextureDescriptor]:
        return iter(self.textures)

    def __getitem__(self, index: int) -> TextureDescriptor:
        return self.textures[index]


def read_texture_list(reader: BinaryReader) -> TextureList:
    """Decode a texture list from the chunk's offset-indirection cell.

    The reader ends up just past the indirection cell.
    """
    data_offset = reader.read_u32()
    textures: List[TextureDescriptor] = []
    with reader.at(data_offset):
        count = reader.read_u32()
        table_offset = reader.read_u32()
        with reader.at(table_offset):
            for _ in range(count):
                tex_type = reader.read_u32()
                name_offset = reader.read_u32()
                min_filter = reader.read_u16()
                mag_filter = reader.read_u16()
                global_index = reader.read_u32()
                bank = reader.read_u32()
                with reader.at(name_offset):
                    file_name = reader.read_cstring()
                textures.append(TextureDescriptor(
                    file_name=file_name,
                    type=tex_type,
                    min_filter=_coerce(MinFilter, min_filter),
                    mag_filter=_coerce(MagFilter, mag_filter),
                    global_index=global_index,
                    bank=bank,
                ))
    logging.debug("Texture list: %d textures", len(textures))
    return TextureList(textures=textures)


def write_texture_list(writer: BinaryWriter, texture_list: TextureList) -> int:
    """Emit a complete texture list chunk and return its size field.

    Offsets to the count/table cell and to every file name are only known
    after the records are laid out, so they are reserved first and
    back-patched once their targets are written.
    """
    body_start = writer.begin_chunk(TEXTURE_LIST_TAG)
    writer.add_offset("dataOffset")
    writer.align(TEXTURE_LIST_ALIGNMENT)

    table_offset = writer.tell() - writer.base_offset
    for i, texture in enumerate(texture_list.textures):
        writer.write_u32(texture.type)
        writer.add_offset(f"texture{i}.name")
        writer.write_u16(int(texture.min_filter))
        writer.write_u16(int(texture.mag_filter))
        writer.write_u32(texture.global_index)
        writer.write_u32(texture.bank)

    writer.fill_offset("dataOffset")
    writer.write_u32(len(texture_list.textures))
    writer.add_offset("textureTable", 0)
    writer.write_u32(table_offset)

    for i, texture in enumerate(texture_list.textures):
        writer.fill_offset(f"texture{i}.name")
        writer.write_cstring(texture.file_name)

    writer.align(TEXTURE_LIST_ALIGNMENT)
    return writer.end_chunk(body_start)


def texture_list_to_bytes(texture_list: TextureList, endian: str = DEFAULT_ENDIAN) -> bytes:
    writer = BinaryWriter(endian=endian)
    write_texture_list(writer, texture_list)
    return writer.getvalue()
