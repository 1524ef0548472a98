"""
mesh_update.py
==============

After the textures are moved and converted, the meshes still point at the old
file names. This module rewrites the image references inside COLLADA (`.dae`)
meshes so they use the `.png` extension and the `../materials/textures/`
directory relative to the `meshes/` folder.

The rewrite is a line-scoped text substitution, not an XML parse:

* every known image extension token (`.jpg`, `_jpg`, `.tga`, ...) is replaced
  by its PNG equivalent in a single scan over the whole file;
* on every line, the body of an `<init_from>...</init_from>` element that ends
  in `.png` and is not already under `materials/textures` gets the relative
  prefix inserted.

Every line is written back followed by a single `\\n`.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from file_scan import scan_dir

CANONICAL_EXTENSION = "png"
MESH_EXTENSIONS: Tuple[str, ...] = ("dae",)

EXTENSION_MAP: Dict[str, str] = {
    ".jpg": ".png",
    "_jpg": "_png",
    ".jpeg": ".png",
    "_jpeg": "_png",
    ".tga": ".png",
    "_tga": "_png",
    ".gif": ".png",
    "_gif": "_png",
}

REFERENCE_OPEN = "<init_from>"
REFERENCE_CLOSE = "</init_from>"

TEXTURE_DIR_MARKER = "materials/textures/"
CANONICAL_PREFIX = "/".join(("..", "materials", "textures")) + "/"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass
class ReferenceRewrite:
    text: str
    rewritten: int = 0
    ambiguous_lines: List[int] = field(default_factory=list)


@dataclass
class MeshUpdate:
    path: Path
    changed: bool
    references_rewritten: int
    ambiguous_lines: List[int] = field(default_factory=list)


def _token_pattern(tokens) -> re.Pattern:
    # Longest token first so the alternation picks the longest match at a position.
    ordered = sorted(tokens, key=lambda token: (-len(token), token))
    return re.compile("|".join(re.escape(token) for token in ordered))


def build_extension_scanner(extension_map: Dict[str, str]) -> re.Pattern:
    if not extension_map:
        raise ValueError("extension map is empty")
    for source, target in extension_map.items():
        if not source or not target:
            raise ValueError(f"extension map entry {source!r} -> {target!r} has an empty token")
    return _token_pattern(extension_map)


_DEFAULT_EXTENSION_SCANNER = build_extension_scanner(EXTENSION_MAP)
_REFERENCE_SCANNER = _token_pattern((REFERENCE_OPEN, REFERENCE_CLOSE))


def rename_image_extensions(text: str, extension_map: Optional[Dict[str, str]] = None) -> str:
    """Replace every known image extension token in *text* with its PNG form."""
    if extension_map is None:
        extension_map, scanner = EXTENSION_MAP, _DEFAULT_EXTENSION_SCANNER
    else:
        scanner = build_extension_scanner(extension_map)
    return scanner.sub(lambda match: extension_map[match.group(0)], text)


def split_lines(text: str) -> List[str]:
    if not text:
        return []
    lines = _LINE_BREAK.split(text)
    if lines[-1] == "":
        lines.pop()
    return lines


def find_reference_spans(line: str) -> List[Tuple[int, int]]:
    """
    Return the (start, end) offsets of every reference body on *line*.

    The scan state is local to the line: SEEKING until an opener is seen, then
    IN_BODY from the end of the most recent opener. A closer seen while SEEKING
    is ignored; a second opener before the closer moves the body start forward.
    """
    spans: List[Tuple[int, int]] = []
    body_start: Optional[int] = None
    for match in _REFERENCE_SCANNER.finditer(line):
        if match.group(0) == REFERENCE_OPEN:
            body_start = match.end()
        elif body_start is not None:
            spans.append((body_start, match.start()))
            body_start = None
    return spans


def texture_dir_marker(prefix: str) -> str:
    """Directory part of *prefix* without leading `.`/`..` segments, e.g. `materials/textures/`."""
    parts = [part for part in prefix.split("/") if part not in ("", ".", "..")]
    if not parts:
        return prefix
    return "/".join(parts) + "/"


def qualifies_for_prefix(texture_name: str, marker: str = TEXTURE_DIR_MARKER) -> bool:
    return texture_name.endswith("." + CANONICAL_EXTENSION) and marker not in texture_name


def rewrite_reference_paths(text: str, prefix: str = CANONICAL_PREFIX) -> ReferenceRewrite:
    """Prefix the qualifying `<init_from>` bodies of *text* with *prefix*."""
    result = ReferenceRewrite(text="")
    marker = texture_dir_marker(prefix)
    output: List[str] = []
    for line_number, line in enumerate(split_lines(text), start=1):
        spans = find_reference_spans(line)
        if len(spans) > 1:
            result.ambiguous_lines.append(line_number)
            output.append(line + "\n")
            continue
        for start, end in spans:
            texture_name = line[start:end]
            if qualifies_for_prefix(texture_name, marker):
                # Splice at the span offsets; str.replace would also hit copies of the name elsewhere on the line.
                line = line[:start] + prefix + texture_name + line[end:]
                result.rewritten += 1
        output.append(line + "\n")
    result.text = "".join(output)
    return result


def _write_atomically(path: Path, contents: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(contents)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def rename_image_references(mesh: Path, dry_run: bool = False) -> MeshUpdate:
    """
    Rewrite the image references of one mesh file in place.

    Raises `ValueError` (`UnicodeDecodeError`) when the mesh is not UTF-8 text
    and lets every `OSError` through to the caller.
    """
    with open(mesh, "r", encoding="utf-8", newline="") as handle:
        original = handle.read()

    renamed = rename_image_extensions(original)
    rewrite = rewrite_reference_paths(renamed)
    for line_number in rewrite.ambiguous_lines:
        logging.warning(
            "%s:%d holds more than one <init_from> reference; its paths were not prefixed.",
            mesh,
            line_number,
        )

    changed = rewrite.text != original
    if changed and not dry_run:
        _write_atomically(mesh, rewrite.text)
    elif changed:
        logging.info("[dry-run][mesh] would rewrite %s", mesh)

    return MeshUpdate(
        path=mesh,
        changed=changed,
        references_rewritten=rewrite.rewritten,
        ambiguous_lines=rewrite.ambiguous_lines,
    )


def scan_dir_for_meshes(root: Path) -> List[Path]:
    return sorted(scan_dir(root, MESH_EXTENSIONS))
