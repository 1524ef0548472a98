"""
image_processing.py
===================

Finds the texture images of a model tree, moves stray ones into the
conventional `<model>/materials/textures/` directory and converts them to PNG.

Conversion is destructive: the source image is deleted once the PNG has been
written. TIFF sources are left alone, as are images that already are PNG.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Tuple

from PIL import Image, UnidentifiedImageError

from file_scan import scan_dir

TEXTURE_IMAGE_TYPES: Tuple[str, ...] = ("tif", "tga", "tiff", "jpeg", "jpg", "gif", "png")
SKIPPED_EXTENSIONS = {"png", "tif", "tiff"}
PNG_WRITABLE_MODES = ("RGBA", "RGB", "LA", "L")

TEXTURES_DIR = Path("materials") / "textures"
MESHES_DIR = Path("meshes")


@dataclass(frozen=True)
class TextureImage:
    path: Path
    extension: str


@dataclass(frozen=True)
class ConversionOutcome:
    image: TextureImage
    converted: bool
    reason: str = ""


def scan_dir_for_images(root: Path) -> List[TextureImage]:
    images = [TextureImage(path=path, extension=path.suffix[1:]) for path in scan_dir(root, TEXTURE_IMAGE_TYPES)]
    # Reverse extension order first, path order inside one extension.
    images.sort(key=lambda image: str(image.path))
    images.sort(key=lambda image: image.extension, reverse=True)
    return images


def textures_dir_for(image_path: Path, root: Path) -> Path:
    """Return `<root>/<model>/materials/textures` for an image somewhere below *root*."""
    rel = image_path.relative_to(root)
    if len(rel.parts) < 2:
        return root / TEXTURES_DIR
    return root / rel.parts[0] / TEXTURES_DIR


def is_in_place(image_path: Path) -> bool:
    parent_parts = image_path.parent.parts
    return (
        parent_parts[-len(TEXTURES_DIR.parts):] == TEXTURES_DIR.parts
        or parent_parts[-len(MESHES_DIR.parts):] == MESHES_DIR.parts
    )


def move_to_textures_dir(image: TextureImage, root: Path, dry_run: bool = False) -> TextureImage:
    """Move *image* into its model's textures directory unless it already sits in `materials/textures` or `meshes`."""
    if is_in_place(image.path):
        return image

    destination = textures_dir_for(image.path, root) / image.path.name
    if destination.exists():
        raise FileExistsError(f"{destination} already exists")

    if dry_run:
        logging.info("[dry-run][texture-move] %s -> %s", image.path, destination)
        return image

    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(image.path), str(destination))
    logging.debug("Moved %s -> %s", image.path, destination)
    return replace(image, path=destination)


def decode_image(path: Path) -> Image.Image:
    try:
        image = Image.open(path)
    except UnidentifiedImageError as exc:
        raise ValueError(f"Unsupported or corrupted image payload: {exc}") from exc
    # Missing or unreadable files still raise OSError; decoder failures show up on load().
    try:
        image.load()
    except (OSError, SyntaxError) as exc:
        image.close()
        raise ValueError(f"Truncated or corrupted image payload: {exc}") from exc
    return image


def convert_to_png(image: TextureImage, force: bool = False, dry_run: bool = False) -> ConversionOutcome:
    if image.extension in SKIPPED_EXTENSIONS:
        return ConversionOutcome(image=image, converted=False, reason=f"{image.extension} left as-is")

    target = image.path.with_suffix(".png")
    if target.exists() and not force:
        return ConversionOutcome(image=image, converted=False, reason=f"{target.name} already exists")

    decoded = decode_image(image.path)
    if decoded.format == "TIFF":
        decoded.close()
        return ConversionOutcome(image=image, converted=False, reason="TIFF payload left as-is")

    if dry_run:
        decoded.close()
        logging.info("[dry-run][texture-png] %s -> %s", image.path, target)
        return ConversionOutcome(image=replace(image, path=target, extension="png"), converted=True)

    with decoded:
        if decoded.mode in PNG_WRITABLE_MODES:
            decoded.save(target, format="PNG")
        else:
            converted = decoded.convert("RGBA")
            try:
                converted.save(target, format="PNG")
            finally:
                converted.close()
    image.path.unlink()
    logging.debug("Converted %s -> %s", image.path, target)
    return ConversionOutcome(image=replace(image, path=target, extension="png"), converted=True)
