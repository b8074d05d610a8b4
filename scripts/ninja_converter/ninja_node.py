"""
ninja_node.py
=============

Ninja node hierarchy: node records, the node name list chunk and the node
table of an object chunk.

Nodes form a forest inside one flat array. ``child_index`` points at the
first child, ``sibling_index`` chains to the next child of the same parent
and -1 terminates a chain. The decoders never check those indices; call
``validate_hierarchy`` before walking data from an untrusted file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntFlag
from typing import Iterator, List, Sequence, Set, Tuple

from ninja_stream import BinaryReader, Matrix4, NinjaParseError, Vector3

NO_INDEX = -1

# type(4) + 4 * index(2) + 3 * vec3(12) + matrix(64) + center(12) + radius(4)
# + user flags(4) + bounding box(12)
SIZEOF_NODE = 144

# Object header fields preceding the node count: center, radius and three
# (count, offset) pairs for materials, vertex lists and primitive lists.
_OBJECT_HEADER_SKIP = 24


class HierarchyError(NinjaParseError):
    pass


class NodeType(IntFlag):
    UNIT_TRANSLATION = 0x0001
    UNIT_ROTATION = 0x0002
    UNIT_SCALING = 0x0004
    UNIT_INIT_MATRIX = 0x0008
    UNIT_33_MATRIX = 0x0010
    ORTHO_33_MATRIX = 0x0020
    BALL_JOINT = 0x0040
    ROTATE_TYPE_XZY = 0x0100
    ROTATE_TYPE_ZXY = 0x0200
    SKELETON = 0x1000


@dataclass(frozen=True)
class TreeNode:
    type: NodeType
    matrix_index: int
    parent_index: int
    child_index: int
    sibling_index: int
    translation: Vector3
    rotation: Vector3
    scaling: Vector3
    inverse_initial_transform: Matrix4
    bounding_center: Vector3
    bounding_radius: float
    user_defined_flags: int
    bounding_box_extent: Vector3
    # Supplied by the node name list, not by the node record.
    name: str = ""

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class NodeName:
    index: int
    name: str


@dataclass
class NodeNameList:
    type: int
    entries: List[NodeName]

    def as_list(self) -> List[str]:
        """Names ordered by node index, empty strings for missing indices."""
        if not self.entries:
            return []
        names = [""] * (max(entry.index for entry in self.entries) + 1)
        for entry in self.entries:
            names[entry.index] = entry.name
        return names


@dataclass
class ObjectHierarchy:
    center: Vector3
    radius: float
    max_node_depth: int
    nodes: List[TreeNode]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def read_node(reader: BinaryReader) -> TreeNode:
    """Decode one node record at the current position."""
    node_type = NodeType(reader.read_u32())
    matrix_index = reader.read_s16()
    parent_index = reader.read_s16()
    child_index = reader.read_s16()
    sibling_index = reader.read_s16()
    translation = reader.read_vector3()
    rotation = reader.read_vector3()
    scaling = reader.read_vector3()
    inverse_initial_transform = reader.read_matrix4()
    bounding_center = reader.read_vector3()
    bounding_radius = reader.read_f32()
    user_defined_flags = reader.read_u32()
    bounding_box_extent = reader.read_vector3()
    return TreeNode(
        type=node_type,
        matrix_index=matrix_index,
        parent_index=parent_index,
        child_index=child_index,
        sibling_index=sibling_index,
        translation=translation,
        rotation=rotation,
        scaling=scaling,
        inverse_initial_transform=inverse_initial_transform,
        bounding_center=bounding_center,
        bounding_radius=bounding_radius,
        user_defined_flags=user_defined_flags,
        bounding_box_extent=bounding_box_extent,
    )


def read_node_table(reader: BinaryReader, count: int, offset: int) -> List[TreeNode]:
    with reader.at(offset):
        return [read_node(reader) for _ in range(count)]


def read_object_nodes(reader: BinaryReader) -> ObjectHierarchy:
    """Decode the node table of an object chunk.

    The reader sits on the chunk's offset-indirection cell. Only the bounding
    sphere and node fields of the object header are interpreted.
    """
    data_offset = reader.read_u32()
    with reader.at(data_offset):
        center = reader.read_vector3()
        radius = reader.read_f32()
        reader.read(_OBJECT_HEADER_SKIP)
        node_count = reader.read_u32()
        max_node_depth = reader.read_u32()
        node_offset = reader.read_u32()
        nodes = read_node_table(reader, node_count, node_offset)
    logging.debug("Object chunk: %d nodes (max depth %d)", node_count, max_node_depth)
    return ObjectHierarchy(
        center=center, radius=radius, max_node_depth=max_node_depth, nodes=nodes,
    )


def read_node_name_list(reader: BinaryReader) -> NodeNameList:
    """Decode a node name list chunk from its offset-indirection cell."""
    data_offset = reader.read_u32()
    entries: List[NodeName] = []
    with reader.at(data_offset):
        list_type = reader.read_u32()
        count = reader.read_u32()
        table_offset = reader.read_u32()
        with reader.at(table_offset):
            for _ in range(count):
                index = reader.read_u32()
                name_offset = reader.read_u32()
                with reader.at(name_offset):
                    name = reader.read_cstring()
                entries.append(NodeName(index=index, name=name))
    logging.debug("Node name list: %d names", len(entries))
    return NodeNameList(type=list_type, entries=entries)


def attach_names(nodes: Sequence[TreeNode], names: Sequence[str]) -> List[TreeNode]:
    """Return copies of ``nodes`` carrying the i-th name of ``names``."""
    named = []
    for index, node in enumerate(nodes):
        name = names[index] if index < len(names) else ""
        named.append(replace(node, name=name))
    if len(names) > len(nodes):
        logging.debug("%d node names without a node", len(names) - len(nodes))
    return named


# ---------------------------------------------------------------------------
# Array-backed forest helpers
# ---------------------------------------------------------------------------

def iter_children(nodes: Sequence[TreeNode], index: int) -> Iterator[int]:
    child = nodes[index].child_index
    while child != NO_INDEX:
        yield child
        child = nodes[child].sibling_index


def root_indices(nodes: Sequence[TreeNode]) -> List[int]:
    return [i for i, node in enumerate(nodes) if node.parent_index == NO_INDEX]


def walk_depth_first(nodes: Sequence[TreeNode], root: int = 0) -> Iterator[Tuple[int, int]]:
    """Yield ``(index, depth)`` for ``root`` and its descendants in pre-order.

    Siblings of ``root`` itself are not visited.
    """
    stack = [(root, 0)]
    while stack:
        index, depth = stack.pop()
        yield index, depth
        children = list(iter_children(nodes, index))
        stack.extend((child, depth + 1) for child in reversed(children))


def _check_index(nodes: Sequence[TreeNode], owner: int, field_name: str, value: int) -> None:
    if value != NO_INDEX and not 0 <= value < len(nodes):
        raise HierarchyError(
            f"Node {owner} {field_name} {value} out of range (0..{len(nodes) - 1})"
        )


def validate_hierarchy(nodes: Sequence[TreeNode]) -> None:
    """Check index bounds and that the links form an acyclic forest."""
    for i, node in enumerate(nodes):
        _check_index(nodes, i, "parent_index", node.parent_index)
        _check_index(nodes, i, "child_index", node.child_index)
        _check_index(nodes, i, "sibling_index", node.sibling_index)

    visited: Set[int] = set()
    for root in root_indices(nodes):
        stack: List[int] = [root]
        while stack:
            index = stack.pop()
            if index in visited:
                raise HierarchyError(f"Node {index} is reachable twice (cycle or shared child)")
            visited.add(index)
            child = nodes[index].child_index
            while child != NO_INDEX:
                if child in visited or child in stack:
                    raise HierarchyError(f"Node {child} is reachable twice (cycle or shared child)")
                stack.append(child)
                child = nodes[child].sibling_index

    unreachable = [i for i in range(len(nodes)) if i not in visited]
    if unreachable:
        raise HierarchyError(f"Nodes not reachable from any root: {unreachable}")
