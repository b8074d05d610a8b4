"""
ninja_stream.py
===============

Positioned binary reader/writer used by every Ninja chunk codec.

Ninja chunks store most fields as byte offsets instead of inline data. Reading
therefore needs absolute jumps relative to a recorded base offset, and every
jump has to be undone before the caller continues (``BinaryReader.at``).
Writing needs the inverse: offsets are only known once the data they point to
has been laid out, so ``BinaryWriter`` reserves named placeholder slots and
back-patches them later.
"""

from __future__ import annotations

import struct
from contextlib import contextmanager
from typing import Dict, Iterator, List, Sequence, Tuple

# Xbox 360 "NX" chunk family is big-endian.
DEFAULT_ENDIAN = ">"
PADDING_BYTE = 0x00
# Strings are raw 8-bit (often Shift-JIS); latin-1 maps every byte and back.
STRING_ENCODING = "latin-1"

Vector3 = Tuple[float, float, float]
Matrix4 = Tuple[
    Tuple[float, float, float, float],
    Tuple[float, float, float, float],
    Tuple[float, float, float, float],
    Tuple[float, float, float, float],
]


class NinjaParseError(Exception):
    pass


class TruncatedInputError(NinjaParseError):
    pass


class UnresolvableOffsetError(NinjaParseError):
    pass


class NinjaWriteError(Exception):
    pass


def _check_endian(endian: str) -> str:
    if endian not in ("<", ">"):
        raise ValueError(f"Unsupported endian marker: {endian!r}")
    return endian


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class BinaryReader:
    """Reads typed fields from an in-memory buffer at a movable position.

    ``base_offset`` is the position that relative offsets are measured from;
    for a whole Ninja file it is the data offset announced by the info chunk.
    """

    def __init__(self, data: bytes, endian: str = DEFAULT_ENDIAN, base_offset: int = 0) -> None:
        self._raw = bytes(data)
        self._data = memoryview(self._raw)
        self.endian = _check_endian(endian)
        self.base_offset = base_offset
        self._position = 0

    def __len__(self) -> int:
        return len(self._data)

    def tell(self) -> int:
        return self._position

    def seek(self, position: int) -> None:
        if position < 0 or position > len(self._data):
            raise UnresolvableOffsetError(
                f"Offset 0x{position:X} outside data (size 0x{len(self._data):X})"
            )
        self._position = position

    def jump_to(self, offset: int, relative: bool = False) -> None:
        self.seek(self.base_offset + offset if relative else offset)

    @contextmanager
    def at(self, offset: int, relative: bool = True) -> Iterator[BinaryReader]:
        """Follow an offset and come back to the current position afterwards.

        The saved position is restored on every exit path, including errors
        raised while reading at the target.
        """
        saved = self._position
        try:
            self.jump_to(offset, relative)
            yield self
        finally:
            self._position = saved

    def read(self, size: int) -> bytes:
        start = self._position
        end = start + size
        if size < 0 or end > len(self._data):
            raise TruncatedInputError(
                f"Need {size} bytes at 0x{start:X}, only {len(self._data) - start} left"
            )
        self._position = end
        return self._data[start:end].tobytes()

    def _unpack(self, fmt: str):
        size = struct.calcsize(self.endian + fmt)
        return struct.unpack(self.endian + fmt, self.read(size))

    def read_u16(self) -> int:
        return self._unpack("H")[0]

    def read_s16(self) -> int:
        return self._unpack("h")[0]

    def read_u32(self) -> int:
        return self._unpack("I")[0]

    def read_s32(self) -> int:
        return self._unpack("i")[0]

    def read_f32(self) -> float:
        return self._unpack("f")[0]

    def read_vector3(self) -> Vector3:
        x, y, z = self._unpack("3f")
        return (x, y, z)

    def read_matrix4(self) -> Matrix4:
        v = self._unpack("16f")
        return (
            (v[0], v[1], v[2], v[3]),
            (v[4], v[5], v[6], v[7]),
            (v[8], v[9], v[10], v[11]),
            (v[12], v[13], v[14], v[15]),
        )

    def read_tag(self) -> str:
        return self.read(4).decode(STRING_ENCODING)

    def read_cstring(self) -> str:
        start = self._position
        end = self._raw.find(b"\x00", start)
        if end < 0:
            raise TruncatedInputError(f"Unterminated string at 0x{start:X}")
        raw = self.read(end - start)
        self._position += 1
        return raw.decode(STRING_ENCODING)


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class OffsetTable:
    """Name-keyed placeholder slots for a single write pass.

    Each entry remembers where a fixed-width slot was reserved; the slot is
    consumed when its real value becomes known. Nothing here is persisted.
    """

    def __init__(self) -> None:
        self._slots: Dict[str, Tuple[int, int]] = {}

    def reserve(self, name: str, position: int, size: int) -> None:
        if name in self._slots:
            raise NinjaWriteError(f"Placeholder '{name}' reserved twice")
        self._slots[name] = (position, size)

    def take(self, name: str) -> Tuple[int, int]:
        try:
            return self._slots.pop(name)
        except KeyError:
            raise NinjaWriteError(f"Unknown placeholder '{name}'") from None

    def pending(self) -> List[str]:
        return sorted(self._slots)

    def __contains__(self, name: str) -> bool:
        return name in self._slots

    def __len__(self) -> int:
        return len(self._slots)


class BinaryWriter:
    """Builds a buffer with support for reserved and back-patched fields."""

    def __init__(self, endian: str = DEFAULT_ENDIAN, base_offset: int = 0) -> None:
        self.endian = _check_endian(endian)
        self.base_offset = base_offset
        self.offsets = OffsetTable()
        # Base-relative positions of every offset field, filled or marked.
        self.relocations: List[int] = []
        self._buffer = bytearray()
        self._position = 0

    def tell(self) -> int:
        return self._position

    def seek(self, position: int) -> None:
        if position < 0 or position > len(self._buffer):
            raise NinjaWriteError(f"Cannot seek to 0x{position:X}")
        self._position = position

    def write(self, data: bytes) -> None:
        end = self._position + len(data)
        self._buffer[self._position:end] = data
        self._position = end

    def _pack(self, fmt: str, *values) -> bytes:
        try:
            return struct.pack(self.endian + fmt, *values)
        except struct.error as exc:
            raise NinjaWriteError(f"Cannot pack {values!r} as '{fmt}': {exc}") from exc

    def write_u16(self, value: int) -> None:
        self.write(self._pack("H", value))

    def write_s16(self, value: int) -> None:
        self.write(self._pack("h", value))

    def write_u32(self, value: int) -> None:
        self.write(self._pack("I", value))

    def write_s32(self, value: int) -> None:
        self.write(self._pack("i", value))

    def write_f32(self, value: float) -> None:
        self.write(self._pack("f", value))

    def write_vector3(self, value: Sequence[float]) -> None:
        self.write(self._pack("3f", *value))

    def write_tag(self, tag: str) -> None:
        try:
            raw = tag.encode(STRING_ENCODING)
        except UnicodeEncodeError as exc:
            raise NinjaWriteError(f"Chunk tag must be 4 bytes, got {tag!r}") from exc
        if len(raw) != 4:
            raise NinjaWriteError(f"Chunk tag must be 4 bytes, got {tag!r}")
        self.write(raw)

    def write_cstring(self, value: str) -> None:
        try:
            raw = value.encode(STRING_ENCODING)
        except UnicodeEncodeError as exc:
            raise NinjaWriteError(f"String {value!r} is not 8-bit encodable") from exc
        if b"\x00" in raw:
            raise NinjaWriteError(f"Embedded NUL in string {value!r}")
        self.write(raw + b"\x00")

    def align(self, boundary: int, fill: int = PADDING_BYTE) -> None:
        remainder = self._position % boundary
        if remainder:
            self.write(bytes([fill]) * (boundary - remainder))

    def patch_u32(self, position: int, value: int) -> None:
        saved = self._position
        self.seek(position)
        try:
            self.write_u32(value)
        finally:
            self._position = saved

    def add_offset(self, name: str, size: int = 4) -> None:
        """Reserve a named offset slot at the current position.

        A zero-width slot only marks the position as holding an offset; the
        bytes that follow are written by the caller.
        """
        if size == 0:
            self.relocations.append(self._position - self.base_offset)
            return
        self.offsets.reserve(name, self._position, size)
        self.write(bytes(size))

    def fill_offset(self, name: str, relative: bool = True) -> int:
        """Patch a reserved slot with the current position and return the value."""
        position, size = self.offsets.take(name)
        if size != 4:
            raise NinjaWriteError(f"Placeholder '{name}' is {size} bytes, expected 4")
        value = self._position - self.base_offset if relative else self._position
        self.patch_u32(position, value)
        self.relocations.append(position - self.base_offset)
        return value

    def begin_chunk(self, tag: str) -> int:
        """Write a chunk tag and size placeholder, returning where the body starts."""
        self.write_tag(tag)
        self.write_u32(0)
        return self._position

    def end_chunk(self, body_start: int) -> int:
        """Back-patch the size of the chunk whose body began at ``body_start``."""
        size = self._position - body_start
        self.patch_u32(body_start - 4, size)
        return size

    def getvalue(self) -> bytes:
        if len(self.offsets):
            raise NinjaWriteError(
                f"Unfilled placeholders: {', '.join(self.offsets.pending())}"
            )
        return bytes(self._buffer)
