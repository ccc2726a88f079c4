"""Expanding command-line inputs into an ordered list of files."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

_INPUT_EXTENSIONS = {".png", ".gpl"}


def expand_inputs(inputs: Iterable[Path], recursive: bool = False) -> List[Path]:
    """Replace each directory with its .png/.gpl files, sorted by path.

    Plain file arguments are kept as given, in order; unsupported ones are
    reported as skipped when loaded.
    """

    files: List[Path] = []
    for path in inputs:
        if not path.is_dir():
            files.append(path)
            continue
        root = path.expanduser()
        candidates = root.rglob("*") if recursive else root.glob("*")
        files.extend(
            candidate
            for candidate in sorted(candidates)
            if candidate.is_file() and candidate.suffix.lower() in _INPUT_EXTENSIONS
        )
    return files
