"""
ninja_motion.py
===============

Ninja motion chunk, sub-motions and keyframes.

A sub-motion animates one channel of one node. Its keyframes are stored in a
separate table as fixed-width records whose layout is not tagged on disk: the
record shape is chosen once per sub-motion from the type bitmask and, where
the bitmask alone is ambiguous, from the declared record size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Callable, ClassVar, List, Optional, Sequence, Tuple, Type, Union

from ninja_stream import BinaryReader, NinjaParseError, Vector3

# A full turn is 65536 binary angle units.
BINARY_ANGLE_TO_DEGREES = 180.0 / 32768.0

# type, interpolation, node index, 4 frame floats, keyframe count/size/offset
SIZEOF_SUB_MOTION = 40


class UnrecognizedKeyframeEncodingError(NinjaParseError):
    def __init__(self, type_flags: int, record_size: int) -> None:
        self.type_flags = type_flags
        self.record_size = record_size
        super().__init__(
            f"Unrecognized keyframe encoding: type=0x{type_flags:08X}, "
            f"record size={record_size}"
        )


class AmbiguousFlagsError(NinjaParseError):
    pass


class SubMotionType(IntFlag):
    FRAME_FLOAT = 0x00000001
    FRAME_SINT16 = 0x00000002
    FRAME_MASK = 0x00000003

    ANGLE_ANGLE32 = 0x00000004
    ANGLE_ANGLE16 = 0x00000008
    ANGLE_MASK = 0x0000000C

    TRANSLATION_X = 0x00000010
    TRANSLATION_Y = 0x00000020
    TRANSLATION_Z = 0x00000040
    TRANSLATION_XYZ = 0x00000070

    ROTATION_X = 0x00000080
    ROTATION_Y = 0x00000100
    ROTATION_Z = 0x00000200
    ROTATION_XYZ = 0x00000380
    QUATERNION = 0x00000400

    SCALING_X = 0x00000800
    SCALING_Y = 0x00001000
    SCALING_Z = 0x00002000
    SCALING_XYZ = 0x00003800

    USER_UINT32 = 0x00004000
    USER_FLOAT = 0x00008000
    NODE_HIDE = 0x00010000

    AMBIENT_R = 0x00020000
    AMBIENT_G = 0x00040000
    AMBIENT_B = 0x00080000
    AMBIENT_MASK = 0x000E0000

    DIFFUSE_R = 0x00100000
    DIFFUSE_G = 0x00200000
    DIFFUSE_B = 0x00400000
    DIFFUSE_MASK = 0x00700000

    SPECULAR_R = 0x00800000
    SPECULAR_G = 0x01000000
    SPECULAR_B = 0x02000000
    SPECULAR_MASK = 0x03800000

    LIGHT_COLOR_R = 0x04000000
    LIGHT_COLOR_G = 0x08000000
    LIGHT_COLOR_B = 0x10000000
    LIGHT_COLOR_MASK = 0x1C000000


VECTOR_CHANNELS = (
    SubMotionType.TRANSLATION_XYZ
    | SubMotionType.SCALING_XYZ
    | SubMotionType.AMBIENT_MASK
    | SubMotionType.DIFFUSE_MASK
    | SubMotionType.SPECULAR_MASK
    | SubMotionType.LIGHT_COLOR_MASK
)


class InterpolationType(IntFlag):
    NOREPEAT = 0x00000001
    CONSTREPEAT = 0x00000002
    REPEAT = 0x00000004
    MIRROR = 0x00000008
    OFFSET = 0x00000010
    REPEAT_MASK = 0x0000001F

    SPLINE = 0x00000040
    LINEAR = 0x00000080
    CONSTANT = 0x00000100
    BEZIER = 0x00000200
    SI_SPLINE = 0x00000400
    TRIGGER = 0x00000800
    QUAT_LERP = 0x00001000
    QUAT_SLERP = 0x00002000
    QUAT_SQUAD = 0x00004000


class MotionType(IntFlag):
    NOREPEAT = 0x00000001
    CONSTREPEAT = 0x00000002
    REPEAT = 0x00000004
    MIRROR = 0x00000008
    OFFSET = 0x00000010
    REPEAT_MASK = 0x0000001F
    TRIGGER = 0x00000020

    NODE = 0x00010000
    CAMERA = 0x00020000
    LIGHT = 0x00040000
    MORPH = 0x00080000
    MATERIAL = 0x00100000


def binary_angle_to_degrees(units: int) -> float:
    return units * BINARY_ANGLE_TO_DEGREES


# ---------------------------------------------------------------------------
# Keyframe variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VectorKey:
    RECORD_SIZE: ClassVar[int] = 16

    frame: float
    value: Vector3

    @classmethod
    def read(cls, reader: BinaryReader) -> VectorKey:
        frame = reader.read_f32()
        return cls(frame=frame, value=reader.read_vector3())


@dataclass(frozen=True)
class RotateA16Key:
    """Three binary angle components; see ``binary_angle_to_degrees``."""

    RECORD_SIZE: ClassVar[int] = 10

    frame: float
    value: Tuple[int, int, int]

    @classmethod
    def read(cls, reader: BinaryReader) -> RotateA16Key:
        frame = reader.read_f32()
        x = reader.read_s16()
        y = reader.read_s16()
        z = reader.read_s16()
        return cls(frame=frame, value=(x, y, z))


@dataclass(frozen=True)
class SignedInt32Key:
    RECORD_SIZE: ClassVar[int] = 8

    frame: int
    value: int

    @classmethod
    def read(cls, reader: BinaryReader) -> SignedInt32Key:
        frame = reader.read_s32()
        return cls(frame=frame, value=reader.read_s32())


@dataclass(frozen=True)
class FloatKey:
    RECORD_SIZE: ClassVar[int] = 8

    frame: float
    value: float

    @classmethod
    def read(cls, reader: BinaryReader) -> FloatKey:
        frame = reader.read_f32()
        return cls(frame=frame, value=reader.read_f32())


@dataclass(frozen=True)
class SignedInt16Key:
    RECORD_SIZE: ClassVar[int] = 4

    frame: int
    value: int

    @classmethod
    def read(cls, reader: BinaryReader) -> SignedInt16Key:
        frame = reader.read_s16()
        return cls(frame=frame, value=reader.read_s16())


Keyframe = Union[VectorKey, RotateA16Key, SignedInt32Key, FloatKey, SignedInt16Key]
KeyframeVariant = Type[Union[VectorKey, RotateA16Key, SignedInt32Key, FloatKey, SignedInt16Key]]


@dataclass(frozen=True)
class KeyframeRule:
    name: str
    matches: Callable[[int, int], bool]
    variant: KeyframeVariant


def _has_all(flags: int, bits: int) -> bool:
    return flags & bits == bits


# Order matters: the first matching rule decides the record layout.
KEYFRAME_RULES: Tuple[KeyframeRule, ...] = (
    KeyframeRule(
        "vector channel",
        lambda flags, size: bool(flags & VECTOR_CHANNELS),
        VectorKey,
    ),
    KeyframeRule(
        "xyz rotation",
        lambda flags, size: _has_all(flags, SubMotionType.ROTATION_XYZ),
        RotateA16Key,
    ),
    KeyframeRule(
        "float frame with 32-bit angle",
        lambda flags, size: _has_all(
            flags, SubMotionType.FRAME_FLOAT | SubMotionType.ANGLE_ANGLE32
        ),
        SignedInt32Key,
    ),
    KeyframeRule(
        "float frame, 8-byte record",
        lambda flags, size: bool(flags & SubMotionType.FRAME_FLOAT) and size == 8,
        FloatKey,
    ),
    KeyframeRule(
        "16-bit frame, 4-byte record",
        lambda flags, size: bool(flags & SubMotionType.FRAME_SINT16) and size == 4,
        SignedInt16Key,
    ),
)


def select_keyframe_variant(type_flags: int, record_size: int) -> KeyframeVariant:
    for rule in KEYFRAME_RULES:
        if rule.matches(type_flags, record_size):
            return rule.variant
    raise UnrecognizedKeyframeEncodingError(type_flags, record_size)


def read_keyframe(reader: BinaryReader, type_flags: int, record_size: int) -> Keyframe:
    return select_keyframe_variant(type_flags, record_size).read(reader)


# ---------------------------------------------------------------------------
# Sub-motions and motions
# ---------------------------------------------------------------------------

@dataclass
class SubMotion:
    type: SubMotionType
    interpolation_type: InterpolationType
    node_index: int
    start_frame: float
    end_frame: float
    start_keyframe: float
    end_keyframe: float
    keyframe_size: int
    keyframes: List[Keyframe] = field(default_factory=list)


@dataclass
class Motion:
    type: MotionType
    start_frame: float
    end_frame: float
    framerate: float
    reserved0: int
    reserved1: int
    sub_motions: List[SubMotion] = field(default_factory=list)


def read_sub_motion(reader: BinaryReader) -> SubMotion:
    """Decode one sub-motion header and its keyframe table.

    The keyframe table is reached through an offset; the reader is left just
    after the header whether or not decoding succeeds.
    """
    type_flags = reader.read_u32()
    interpolation_type = reader.read_u32()
    node_index = reader.read_s32()
    start_frame = reader.read_f32()
    end_frame = reader.read_f32()
    start_keyframe = reader.read_f32()
    end_keyframe = reader.read_f32()
    keyframe_count = reader.read_u32()
    keyframe_size = reader.read_u32()
    keyframe_offset = reader.read_u32()

    keyframes: List[Keyframe] = []
    if keyframe_count:
        variant = select_keyframe_variant(type_flags, keyframe_size)
        with reader.at(keyframe_offset):
            keyframes = [variant.read(reader) for _ in range(keyframe_count)]

    return SubMotion(
        type=SubMotionType(type_flags),
        interpolation_type=InterpolationType(interpolation_type),
        node_index=node_index,
        start_frame=start_frame,
        end_frame=end_frame,
        start_keyframe=start_keyframe,
        end_keyframe=end_keyframe,
        keyframe_size=keyframe_size,
        keyframes=keyframes,
    )


def read_motion(reader: BinaryReader) -> Motion:
    """Decode a motion chunk from its offset-indirection cell."""
    data_offset = reader.read_u32()
    with reader.at(data_offset):
        motion_type = reader.read_u32()
        start_frame = reader.read_f32()
        end_frame = reader.read_f32()
        sub_motion_count = reader.read_u32()
        sub_motion_offset = reader.read_u32()
        framerate = reader.read_f32()
        reserved0 = reader.read_u32()
        reserved1 = reader.read_u32()
        with reader.at(sub_motion_offset):
            sub_motions = [read_sub_motion(reader) for _ in range(sub_motion_count)]
    logging.debug(
        "Motion: %d sub-motions, frames %.1f-%.1f @ %.1f fps",
        len(sub_motions), start_frame, end_frame, framerate,
    )
    return Motion(
        type=MotionType(motion_type),
        start_frame=start_frame,
        end_frame=end_frame,
        framerate=framerate,
        reserved0=reserved0,
        reserved1=reserved1,
        sub_motions=sub_motions,
    )


# ---------------------------------------------------------------------------
# Playback flag resolution
# ---------------------------------------------------------------------------

class RepeatMode(Enum):
    DEFAULT = "default"
    NO_REPEAT = "no_repeat"
    CONST_REPEAT = "const_repeat"
    REPEAT = "repeat"
    MIRROR = "mirror"
    OFFSET = "offset"


class TangentMode(Enum):
    AUTO = "auto"
    CONSTANT = "constant"
    LINEAR = "linear"
    SPLINE = "spline"
    BEZIER = "bezier"
    SI_SPLINE = "si_spline"


_SUB_MOTION_REPEAT_PRECEDENCE = (
    (InterpolationType.MIRROR, RepeatMode.MIRROR),
    (InterpolationType.REPEAT, RepeatMode.REPEAT),
    (InterpolationType.CONSTREPEAT, RepeatMode.CONST_REPEAT),
    (InterpolationType.NOREPEAT, RepeatMode.NO_REPEAT),
    (InterpolationType.OFFSET, RepeatMode.OFFSET),
)

_MOTION_REPEAT_PRECEDENCE = (
    (MotionType.MIRROR, RepeatMode.MIRROR),
    (MotionType.REPEAT, RepeatMode.REPEAT),
    (MotionType.CONSTREPEAT, RepeatMode.CONST_REPEAT),
    (MotionType.NOREPEAT, RepeatMode.NO_REPEAT),
    (MotionType.OFFSET, RepeatMode.OFFSET),
)

_TANGENT_PRECEDENCE = (
    (InterpolationType.CONSTANT, TangentMode.CONSTANT),
    (InterpolationType.LINEAR, TangentMode.LINEAR),
    (InterpolationType.BEZIER, TangentMode.BEZIER),
    (InterpolationType.SI_SPLINE, TangentMode.SI_SPLINE),
    (InterpolationType.SPLINE, TangentMode.SPLINE),
)


def _resolve(flags: int, precedence: Sequence[Tuple[int, Enum]], default: Enum,
             strict: bool, label: str) -> Enum:
    matched = [mode for bit, mode in precedence if flags & bit]
    if not matched:
        return default
    if len(matched) > 1:
        names = ", ".join(mode.name for mode in matched)
        if strict:
            raise AmbiguousFlagsError(f"Several {label} bits set in 0x{flags:08X}: {names}")
        logging.debug("Several %s bits set (%s), using %s", label, names, matched[0].name)
    return matched[0]


def resolve_repeat_mode(interpolation_type: int, strict: bool = False) -> RepeatMode:
    return _resolve(
        interpolation_type, _SUB_MOTION_REPEAT_PRECEDENCE, RepeatMode.DEFAULT, strict, "repeat",
    )


def resolve_tangent_mode(interpolation_type: int, strict: bool = False) -> TangentMode:
    return _resolve(
        interpolation_type, _TANGENT_PRECEDENCE, TangentMode.AUTO, strict, "tangent",
    )


def resolve_motion_repeat_mode(motion_type: int, strict: bool = False) -> RepeatMode:
    return _resolve(
        motion_type, _MOTION_REPEAT_PRECEDENCE, RepeatMode.DEFAULT, strict, "motion repeat",
    )


def keyframe_values_in_degrees(sub_motion: SubMotion) -> Optional[List[Tuple[float, float]]]:
    """Return ``(frame, degrees)`` pairs for single-angle integer channels.

    Only rotation or angle-flagged sub-motions decoded as 32-bit or 16-bit
    integer keys carry one binary angle per key; anything else returns None.
    """
    if not sub_motion.type & (SubMotionType.ROTATION_XYZ | SubMotionType.ANGLE_MASK):
        return None
    if not all(isinstance(k, (SignedInt32Key, SignedInt16Key)) for k in sub_motion.keyframes):
        return None
    return [(float(k.frame), binary_angle_to_degrees(k.value)) for k in sub_motion.keyframes]
