#!/usr/bin/env python3
"""
webify_models.py
================

Convert a tree of Gazebo-style models into a layout that is friendlier for the
web: every texture ends up as a PNG under `<model>/materials/textures/` and the
COLLADA meshes are rewritten to reference those PNGs.

Two passes run over the given directory:

* Textures: `.tif`, `.tiff`, `.tga`, `.jpg`, `.jpeg`, `.gif` and `.png` images are
  moved into the textures directory of their model and converted to PNG
  (TIFF is left untouched). The original non-PNG files are DELETED.
* Meshes: every `.dae` file gets its image references renamed to `.png` and
  prefixed with `../materials/textures/`.

Example usage:

    python webify_models.py models/ --report reports/webify.json --verbose

Undecodable images and non-UTF-8 meshes are logged and skipped; any other
filesystem error aborts the run.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from tqdm.contrib.logging import logging_redirect_tqdm

from image_processing import convert_to_png, move_to_textures_dir, scan_dir_for_images
from mesh_update import MeshUpdate, rename_image_references, scan_dir_for_meshes
from progress import ProgressReporter

DESTRUCTIVE_NOTE = (
    "Note that webify models is a destructive action and will DELETE the existing non-PNG files."
)


class UsageError(ValueError):
    """Invalid or missing root directory argument."""


class WebifyCancelled(Exception):
    """Raised when the cancel event is set between two mesh files."""


@dataclass
class WebifyStats:
    textures_moved: int = 0
    textures_converted: int = 0
    textures_skipped: int = 0
    textures_failed: int = 0
    meshes_updated: int = 0
    meshes_unchanged: int = 0
    meshes_failed: int = 0
    references_rewritten: int = 0
    ambiguous_lines: int = 0
    failures: List[str] = field(default_factory=list)


def merge_stats(target: WebifyStats, source: WebifyStats) -> None:
    """Merge *source* into *target* by summing int fields and extending list fields."""
    for f in dataclass_fields(WebifyStats):
        src_val = getattr(source, f.name)
        if isinstance(src_val, int):
            setattr(target, f.name, getattr(target, f.name) + src_val)
        elif isinstance(src_val, list):
            getattr(target, f.name).extend(src_val)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert model textures to PNG and point the meshes at materials/textures."
    )
    parser.add_argument(
        "path",
        type=Path,
        help="Root directory holding the models to webify.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes for the mesh pass (default: %(default)s).",
    )
    parser.add_argument(
        "--skip-textures",
        action="store_true",
        help="Skip moving and converting texture images.",
    )
    parser.add_argument(
        "--skip-meshes",
        action="store_true",
        help="Skip rewriting image references inside meshes.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing PNG when converting a texture with the same name.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned operations without modifying the filesystem.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Optional path to store a JSON summary of the run.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bars.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser.parse_args(argv)


def validate_root(path: Path) -> Path:
    if not path.exists():
        raise UsageError(f"Path {path} does not exist, no work to do.")
    if not path.is_dir():
        raise UsageError("Path provided is a file, please provide a directory.")
    return path.resolve()


def process_images(
    root: Path,
    force: bool = False,
    dry_run: bool = False,
    show_progress: bool = True,
) -> WebifyStats:
    stats = WebifyStats()
    logging.info("Scanning for images to webify under %s", root)
    images = scan_dir_for_images(root)
    logging.info("Images found: %d", len(images))

    bar = ProgressReporter(len(images), prefix="Texture Move", disable=not show_progress)
    for image in images:
        bar.inc()
        bar.set_prefix("Texture Move")
        bar.set_message(f"Moving {image.path}...")
        try:
            moved = move_to_textures_dir(image, root, dry_run=dry_run)
        except FileExistsError as exc:
            stats.textures_failed += 1
            stats.failures.append(f"{image.path}: {exc}")
            logging.error("Cannot move %s: %s", image.path, exc)
            continue
        if moved.path != image.path:
            stats.textures_moved += 1
        bar.set_message(f"Moved {image.path} to {moved.path}")

        bar.set_prefix("PNG Conversion")
        try:
            outcome = convert_to_png(moved, force=force, dry_run=dry_run)
        except ValueError as exc:
            stats.textures_failed += 1
            stats.failures.append(f"{moved.path}: {exc}")
            logging.error("Failed to convert %s: %s", moved.path, exc)
            continue
        if outcome.converted:
            stats.textures_converted += 1
            bar.set_message(f"{moved.path} converted!")
        else:
            stats.textures_skipped += 1
            logging.debug("Skipping %s: %s", moved.path, outcome.reason)
            bar.set_message(f"{moved.path} skipped ({outcome.reason})")
    bar.finish("Images webified!")

    return stats


def _mesh_worker(mesh: Path, dry_run: bool) -> Tuple[WebifyStats, Optional[MeshUpdate]]:
    """Rewrite one mesh. Returns (stats, update_or_None); filesystem errors propagate."""
    stats = WebifyStats()
    try:
        update = rename_image_references(mesh, dry_run=dry_run)
    except ValueError as exc:
        stats.meshes_failed += 1
        stats.failures.append(f"{mesh}: {exc}")
        logging.error("Failed to update %s: %s", mesh, exc)
        return stats, None

    if update.changed:
        stats.meshes_updated += 1
    else:
        stats.meshes_unchanged += 1
    stats.references_rewritten += update.references_rewritten
    stats.ambiguous_lines += len(update.ambiguous_lines)
    return stats, update


def process_meshes(
    root: Path,
    dry_run: bool = False,
    workers: int = 1,
    show_progress: bool = True,
    cancel_event: Optional[threading.Event] = None,
) -> WebifyStats:
    stats = WebifyStats()
    logging.info("Scanning for meshes to webify under %s", root)
    meshes = scan_dir_for_meshes(root)
    logging.info("Meshes found: %d", len(meshes))

    bar = ProgressReporter(len(meshes), prefix="Mesh Update", disable=not show_progress)
    if workers <= 1:
        for mesh in meshes:
            if cancel_event is not None and cancel_event.is_set():
                bar.finish("Cancelled.")
                raise WebifyCancelled(f"Cancelled before {mesh}")
            bar.inc()
            bar.set_message(f"Updating {mesh}...")
            worker_stats, _update = _mesh_worker(mesh, dry_run)
            merge_stats(stats, worker_stats)
    else:
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(_mesh_worker, mesh, dry_run): mesh for mesh in meshes}
            try:
                for future in as_completed(futures):
                    if cancel_event is not None and cancel_event.is_set():
                        raise WebifyCancelled("Cancelled while updating meshes")
                    worker_stats, _update = future.result()
                    merge_stats(stats, worker_stats)
                    bar.inc()
                    bar.set_message(f"Updated {futures[future]}")
            except BaseException:
                # Queued meshes must not be rewritten once the batch is aborted.
                for pending in futures:
                    pending.cancel()
                bar.finish("Aborted.")
                raise
    bar.finish("Meshes webified!")

    return stats


def build_report(root: Path, stats: WebifyStats, dry_run: bool) -> Dict[str, object]:
    return {
        "root": str(root),
        "dry_run": dry_run,
        "stats": {
            f.name: getattr(stats, f.name)
            for f in dataclass_fields(WebifyStats)
            if f.name != "failures"
        },
        "failures": stats.failures,
    }


def write_report(path: Path, payload: Dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def main(argv: Sequence[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    try:
        root = validate_root(args.path)
    except UsageError as exc:
        logging.error("%s", exc)
        return 1

    if args.skip_textures and args.skip_meshes:
        logging.warning("Textures and meshes are both skipped; nothing to do.")
        return 0

    if not args.skip_textures and not args.dry_run:
        logging.warning(DESTRUCTIVE_NOTE)

    workers = max(1, args.workers)
    show_progress = not args.no_progress
    stats = WebifyStats()

    try:
        with logging_redirect_tqdm():
            if not args.skip_textures:
                merge_stats(
                    stats,
                    process_images(root, force=args.force, dry_run=args.dry_run, show_progress=show_progress),
                )
            if not args.skip_meshes:
                merge_stats(
                    stats,
                    process_meshes(root, dry_run=args.dry_run, workers=workers, show_progress=show_progress),
                )
    except (KeyboardInterrupt, WebifyCancelled):
        logging.warning("Interrupted; files already rewritten are kept as they are.")
        return 130
    except OSError as exc:
        logging.error("Aborting on filesystem error: %s", exc)
        return 1

    if args.report:
        if args.dry_run:
            logging.info("[dry-run] report would be written to %s", args.report)
        else:
            write_report(args.report, build_report(root, stats, args.dry_run))
            logging.info("Wrote webify report to %s", args.report)

    logging.info(
        "Textures: %d moved / %d converted / %d skipped / %d failed | "
        "Meshes: %d updated / %d unchanged / %d failed | "
        "References rewritten: %d",
        stats.textures_moved,
        stats.textures_converted,
        stats.textures_skipped,
        stats.textures_failed,
        stats.meshes_updated,
        stats.meshes_unchanged,
        stats.meshes_failed,
        stats.references_rewritten,
    )
    if stats.ambiguous_lines:
        logging.warning(
            "%d line(s) held more than one <init_from> reference and were not prefixed.",
            stats.ambiguous_lines,
        )
    if stats.failures:
        logging.warning("%d failure(s) recorded.", len(stats.failures))
    return 0 if not stats.failures else 1


def run() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
