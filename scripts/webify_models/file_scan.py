"""Recursive directory scan shared by the texture and mesh passes."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator


def scan_dir(root: Path, extensions: Iterable[str]) -> Iterator[Path]:
    """Yield every file below *root* whose extension (no dot, case-sensitive) is in *extensions*."""
    wanted = set(extensions)
    if not root.is_dir():
        return
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        if path.suffix[1:] in wanted:
            yield path
