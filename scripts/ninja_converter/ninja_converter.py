#!/usr/bin/env python3
"""
ninja_converter.py
==================

Batch decoder for SEGA Ninja (NN) model and motion files. Each file is decoded
into its node hierarchy, texture list and motion curves and written out as a
JSON dump; textures named by the texture list are looked up on disk and
probed with Pillow.

Usage:
    python3 ninja_converter.py \\
        --input-root game/xenon/archives \\
        --output-root out/ninja \\
        --endian big \\
        --force --verbose \\
        --report out/ninja/report.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ninja_file import NinjaFile, load_ninja_file
from ninja_motion import (
    Motion,
    SubMotion,
    keyframe_values_in_degrees,
    resolve_motion_repeat_mode,
    resolve_repeat_mode,
    resolve_tangent_mode,
)
from ninja_node import HierarchyError, ObjectHierarchy, root_indices, validate_hierarchy, walk_depth_first
from ninja_stream import NinjaParseError
from ninja_texture_list import TextureList

NINJA_SUFFIXES = (".xno", ".xnm")
IMAGE_SUFFIXES = {".dds", ".png", ".tga", ".bmp", ".jpg", ".jpeg"}

ENDIAN_CHOICES = {"big": ">", "little": "<"}


def _probe_image(path: Path) -> Tuple[int, int, str, Optional[str]]:
    """Return (width, height, mode, format) of an image file."""
    from PIL import Image

    with Image.open(path) as img:
        width, height = img.size
        return width, height, img.mode, img.format


# ---------------------------------------------------------------------------
# Texture resolution
# ---------------------------------------------------------------------------

# Pillow raises NotImplementedError for DDS pixel formats it cannot decode.
PROBE_ERRORS = (OSError, NotImplementedError, ValueError)

TextureIndex = Tuple[Dict[str, Path], Dict[str, Path]]

_FALLBACK_INDEX_CACHE: Dict[str, TextureIndex] = {}


def _index_images(paths: Iterable[Path]) -> TextureIndex:
    by_lower_name: Dict[str, Path] = {}
    by_lower_stem: Dict[str, Path] = {}
    image_files = sorted(
        (p for p in paths if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES),
        key=lambda p: p.as_posix().lower(),
    )
    for path in image_files:
        by_lower_name.setdefault(path.name.lower(), path)
        by_lower_stem.setdefault(path.stem.lower(), path)
    return by_lower_name, by_lower_stem


def _build_fallback_index(root: Path) -> TextureIndex:
    """Index image files under *root* once per process."""
    key = str(root.resolve())
    cached = _FALLBACK_INDEX_CACHE.get(key)
    if cached is not None:
        return cached

    index: TextureIndex = ({}, {})
    if root.is_dir():
        index = _index_images(root.rglob("*"))
    _FALLBACK_INDEX_CACHE[key] = index
    return index


@dataclass(frozen=True)
class ResolvedTexture:
    file_name: str
    path: Optional[str]
    found_on_disk: bool
    width: Optional[int] = None
    height: Optional[int] = None
    mode: Optional[str] = None
    format: Optional[str] = None
    error: Optional[str] = None


class TextureResolver:
    """Resolve texture-list file names against image files next to the model."""

    def __init__(
        self,
        texture_dir: Path,
        fallback_root: Optional[Path] = None,
        probe_images: bool = True,
    ) -> None:
        self.texture_dir = texture_dir.resolve()
        self.fallback_root = fallback_root.resolve() if fallback_root else None
        self.probe_images = probe_images
        self._local_index: Optional[TextureIndex] = None
        self._cache: Dict[str, ResolvedTexture] = {}

    def _indexes(self) -> List[TextureIndex]:
        if self._local_index is None:
            self._local_index = (
                _index_images(self.texture_dir.iterdir())
                if self.texture_dir.is_dir() else ({}, {})
            )
        # Local files win over the fallback tree.
        indexes = [self._local_index]
        if self.fallback_root is not None:
            indexes.append(_build_fallback_index(self.fallback_root))
        return indexes

    def _resolve_path(self, file_name: str) -> Optional[Path]:
        basename = Path(file_name.strip().replace("\\", "/")).name
        if not basename:
            return None

        direct = self.texture_dir / basename
        if direct.is_file():
            return direct

        indexes = self._indexes()
        lower_name = basename.lower()
        for by_lower_name, _ in indexes:
            if lower_name in by_lower_name:
                return by_lower_name[lower_name]
        lower_stem = Path(basename).stem.lower()
        for _, by_lower_stem in indexes:
            if lower_stem in by_lower_stem:
                return by_lower_stem[lower_stem]
        return None

    def resolve(self, file_name: str) -> ResolvedTexture:
        cache_key = file_name.lower()
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        path = self._resolve_path(file_name)
        if path is None:
            resolved = ResolvedTexture(file_name=file_name, path=None, found_on_disk=False)
        elif not self.probe_images:
            resolved = ResolvedTexture(file_name=file_name, path=str(path), found_on_disk=True)
        else:
            try:
                width, height, mode, image_format = _probe_image(path)
                resolved = ResolvedTexture(
                    file_name=file_name, path=str(path), found_on_disk=True,
                    width=width, height=height, mode=mode, format=image_format,
                )
            except PROBE_ERRORS as exc:
                logging.warning("Cannot probe texture '%s': %s", path, exc)
                resolved = ResolvedTexture(
                    file_name=file_name, path=str(path), found_on_disk=True, error=str(exc),
                )

        self._cache[cache_key] = resolved
        return resolved


# ---------------------------------------------------------------------------
# JSON dump
# ---------------------------------------------------------------------------

def _texture_list_to_dict(
    texture_list: TextureList,
    texture_resolver: Optional[TextureResolver],
) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    for index, texture in enumerate(texture_list):
        entry: Dict[str, object] = {
            "index": index,
            "file_name": texture.file_name,
            "type": texture.type,
            "min_filter": int(texture.min_filter),
            "mag_filter": int(texture.mag_filter),
            "global_index": texture.global_index,
            "bank": texture.bank,
        }
        if texture_resolver is not None:
            resolved = texture_resolver.resolve(texture.file_name)
            entry["found_on_disk"] = resolved.found_on_disk
            entry["path"] = resolved.path
            if resolved.width is not None:
                entry["size"] = [resolved.width, resolved.height]
                entry["mode"] = resolved.mode
                entry["format"] = resolved.format
            if resolved.error:
                entry["error"] = resolved.error
        entries.append(entry)
    return entries


def _object_to_dict(hierarchy: ObjectHierarchy) -> Dict[str, object]:
    nodes = hierarchy.nodes
    payload: Dict[str, object] = {
        "center": list(hierarchy.center),
        "radius": hierarchy.radius,
        "max_node_depth": hierarchy.max_node_depth,
        "nodes": [
            {
                "index": i,
                "name": node.name,
                "type": int(node.type),
                "matrix_index": node.matrix_index,
                "parent_index": node.parent_index,
                "child_index": node.child_index,
                "sibling_index": node.sibling_index,
                "translation": list(node.translation),
                "rotation": list(node.rotation),
                "scaling": list(node.scaling),
                "inverse_initial_transform": [list(row) for row in node.inverse_initial_transform],
                "bounding_center": list(node.bounding_center),
                "bounding_radius": node.bounding_radius,
                "user_defined_flags": node.user_defined_flags,
                "bounding_box_extent": list(node.bounding_box_extent),
            }
            for i, node in enumerate(nodes)
        ],
    }
    try:
        validate_hierarchy(nodes)
    except HierarchyError as exc:
        payload["hierarchy_error"] = str(exc)
        return payload

    payload["traversal"] = [
        {"index": index, "depth": depth}
        for root in root_indices(nodes)
        for index, depth in walk_depth_first(nodes, root)
    ]
    return payload


def _sub_motion_to_dict(sub_motion: SubMotion) -> Dict[str, object]:
    keyframes = [
        {"variant": type(key).__name__, "frame": key.frame, "value": key.value}
        for key in sub_motion.keyframes
    ]
    payload: Dict[str, object] = {
        "type": int(sub_motion.type),
        "interpolation_type": int(sub_motion.interpolation_type),
        "repeat_mode": resolve_repeat_mode(sub_motion.interpolation_type).value,
        "tangent_mode": resolve_tangent_mode(sub_motion.interpolation_type).value,
        "node_index": sub_motion.node_index,
        "start_frame": sub_motion.start_frame,
        "end_frame": sub_motion.end_frame,
        "start_keyframe": sub_motion.start_keyframe,
        "end_keyframe": sub_motion.end_keyframe,
        "keyframe_size": sub_motion.keyframe_size,
        "keyframes": keyframes,
    }
    degrees = keyframe_values_in_degrees(sub_motion)
    if degrees is not None:
        payload["degrees"] = [list(pair) for pair in degrees]
    return payload


def _motion_to_dict(motion: Motion) -> Dict[str, object]:
    return {
        "type": int(motion.type),
        "repeat_mode": resolve_motion_repeat_mode(motion.type).value,
        "start_frame": motion.start_frame,
        "end_frame": motion.end_frame,
        "framerate": motion.framerate,
        "reserved0": motion.reserved0,
        "reserved1": motion.reserved1,
        "sub_motions": [_sub_motion_to_dict(sm) for sm in motion.sub_motions],
    }


def ninja_to_dict(
    ninja: NinjaFile,
    texture_resolver: Optional[TextureResolver] = None,
) -> Dict[str, object]:
    info = ninja.info
    payload: Dict[str, object] = {
        "info": {
            "chunk_count": info.chunk_count,
            "data_offset": info.data_offset,
            "data_size": info.data_size,
            "offset_table_offset": info.offset_table_offset,
            "offset_table_size": info.offset_table_size,
            "version": info.version,
        },
        "chunks": list(ninja.chunk_tags),
    }
    if ninja.texture_list is not None:
        payload["textures"] = _texture_list_to_dict(ninja.texture_list, texture_resolver)
    if ninja.node_names is not None:
        payload["node_names"] = ninja.node_names.as_list()
    if ninja.object is not None:
        payload["object"] = _object_to_dict(ninja.object)
    if ninja.motion is not None:
        payload["motion"] = _motion_to_dict(ninja.motion)
    return payload


# ---------------------------------------------------------------------------
# Batch conversion
# ---------------------------------------------------------------------------

@dataclass
class ConversionStats:
    total_found: int = 0
    converted: int = 0
    skipped_existing: int = 0
    skipped_corrupt: int = 0
    textures_found: int = 0
    textures_missing: int = 0
    failed: int = 0
    failures: List[Dict] = field(default_factory=list)


def merge_stats(target: ConversionStats, source: ConversionStats) -> None:
    """Merge *source* into *target* by summing int fields and extending list fields."""
    for f in dataclass_fields(ConversionStats):
        src_val = getattr(source, f.name)
        if isinstance(src_val, int):
            setattr(target, f.name, getattr(target, f.name) + src_val)
        elif isinstance(src_val, list):
            getattr(target, f.name).extend(src_val)


def convert_single_file(
    source: Path,
    output_path: Path,
    texture_root: Optional[Path],
    force: bool,
    probe_textures: bool,
    endian: str,
    stats: ConversionStats,
) -> None:
    """Decode a single Ninja file and write its JSON dump."""
    stats.total_found += 1

    if not force and output_path.exists() and output_path.stat().st_size > 0:
        stats.skipped_existing += 1
        logging.debug("Skipping existing: %s", output_path)
        return

    try:
        ninja = load_ninja_file(source, endian=endian)
    except NinjaParseError as exc:
        stats.skipped_corrupt += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "parse"})
        logging.warning("Parse error for %s: %s", source, exc)
        return
    except OSError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "io"})
        logging.error("Cannot read %s: %s", source, exc)
        return
    except Exception as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "unexpected"})
        logging.error("Unexpected error parsing %s: %s", source, exc)
        return

    texture_resolver = TextureResolver(
        texture_dir=source.parent,
        fallback_root=texture_root,
        probe_images=probe_textures,
    )
    payload = ninja_to_dict(ninja, texture_resolver=texture_resolver)
    payload["source"] = str(source)

    for entry in payload.get("textures", []):
        if entry["found_on_disk"]:
            stats.textures_found += 1
        else:
            stats.textures_missing += 1

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2))
    stats.converted += 1
    logging.debug("Converted %s -> %s", source, output_path)


def _convert_worker(
    source: Path,
    output_path: Path,
    texture_root: Optional[Path],
    force: bool,
    probe_textures: bool,
    endian: str,
) -> ConversionStats:
    """Convert one file into fresh stats; no exception escapes a single file."""
    stats = ConversionStats()
    try:
        convert_single_file(
            source, output_path, texture_root, force, probe_textures, endian, stats,
        )
    except Exception as exc:  # noqa: BLE001
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "worker"})
        logging.error("Worker error for %s: %s", source, exc)
    return stats


def discover_ninja_files(root: Path) -> List[Path]:
    return sorted(
        (p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in NINJA_SUFFIXES),
        key=lambda p: p.as_posix().lower(),
    )


def _log_progress(done: int, total: int, stats: ConversionStats, start_time: float) -> None:
    logging.info(
        "Progress: %d/%d (%.1f%%) - converted=%d skipped=%d failed=%d [%.1fs]",
        done, total, 100.0 * done / total,
        stats.converted,
        stats.skipped_existing + stats.skipped_corrupt,
        stats.failed,
        time.time() - start_time,
    )


def convert_all(
    input_root: Path,
    output_root: Path,
    endian: str,
    force: bool,
    dry_run: bool,
    report_path: Optional[Path],
    texture_root: Optional[Path],
    probe_textures: bool,
    workers: int = 1,
) -> ConversionStats:
    """Decode every Ninja file found under input_root."""
    stats = ConversionStats()

    files = discover_ninja_files(input_root)
    total = len(files)
    logging.info("Found %d Ninja files under %s (workers=%d)", total, input_root, workers)

    jobs: List[Tuple[Path, Path]] = []
    for path in files:
        rel = path.relative_to(input_root)
        jobs.append((path, output_root / rel.with_name(rel.name + ".json")))

    if dry_run:
        for src, dst in jobs:
            logging.info("[DRY-RUN] Would decode %s -> %s", src, dst)
        stats.total_found = total
        return stats

    start_time = time.time()

    if workers <= 1:
        for idx, (src, dst) in enumerate(jobs):
            merge_stats(
                stats,
                _convert_worker(src, dst, texture_root, force, probe_textures, endian),
            )
            if (idx + 1) % 500 == 0 or (idx + 1) == total:
                _log_progress(idx + 1, total, stats, start_time)
    else:
        completed = 0
        chunksize = max(1, total // (workers * 4))
        with ProcessPoolExecutor(max_workers=workers) as executor:
            results = executor.map(
                _convert_worker,
                [src for src, _ in jobs],
                [dst for _, dst in jobs],
                [texture_root] * total,
                [force] * total,
                [probe_textures] * total,
                [endian] * total,
                chunksize=chunksize,
            )
            for worker_stats in results:
                merge_stats(stats, worker_stats)
                completed += 1
                if completed % 500 == 0 or completed == total:
                    _log_progress(completed, total, stats, start_time)

    logging.info(
        "Conversion complete in %.1fs: %d converted, %d skipped (existing=%d, corrupt=%d), %d failed",
        time.time() - start_time, stats.converted,
        stats.skipped_existing + stats.skipped_corrupt,
        stats.skipped_existing, stats.skipped_corrupt,
        stats.failed,
    )

    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report = {
            "total_found": stats.total_found,
            "endian": "big" if endian == ">" else "little",
            "converted": stats.converted,
            "skipped_existing": stats.skipped_existing,
            "skipped_corrupt": stats.skipped_corrupt,
            "textures_found": stats.textures_found,
            "textures_missing": stats.textures_missing,
            "failed": stats.failed,
            "failures": stats.failures,
        }
        report_path.write_text(json.dumps(report, indent=2))
        logging.info("Report written to %s", report_path)

    return stats


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Decode SEGA Ninja (NN) model and motion files to JSON."
    )
    parser.add_argument(
        "--input-root", type=Path, required=True,
        help="Root directory containing .xno/.xnm files",
    )
    parser.add_argument(
        "--output-root", type=Path, required=True,
        help="Output directory for JSON dumps",
    )
    parser.add_argument(
        "--endian", choices=sorted(ENDIAN_CHOICES), default="big",
        help="Byte order of the input files (default: big, Xbox 360)",
    )
    parser.add_argument(
        "--texture-root", type=Path, default=None,
        help="Extra directory searched recursively for texture files",
    )
    parser.add_argument(
        "--no-texture-probe", action="store_true",
        help="Only check that textures exist instead of opening them with Pillow",
    )
    parser.add_argument("--force", action="store_true", help="Overwrite existing dumps")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--report", type=Path, default=None,
        help="Path for JSON conversion report",
    )
    parser.add_argument(
        "--workers", type=int, default=os.cpu_count() or 4,
        help="Number of parallel worker processes (default: number of CPUs).",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.input_root.is_dir():
        logging.error("Input root directory not found: %s", args.input_root)
        return 1

    stats = convert_all(
        input_root=args.input_root,
        output_root=args.output_root,
        endian=ENDIAN_CHOICES[args.endian],
        force=args.force,
        dry_run=args.dry_run,
        report_path=args.report,
        texture_root=args.texture_root,
        probe_textures=not args.no_texture_probe,
        workers=max(1, args.workers),
    )

    if stats.failed > 0:
        logging.warning("%d files failed conversion", stats.failed)

    return 0


if __name__ == "__main__":
    sys.exit(main())
