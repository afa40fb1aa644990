from __future__ import annotations

from collections.abc import Iterator
import os
from pathlib import Path

from docindex.services.pipeline.types import WalkFailure


def _sorted_entries(directory: Path) -> list[os.DirEntry[str]]:
    with os.scandir(directory) as entries:
        return sorted(entries, key=lambda entry: entry.name)


def walk(root: Path) -> Iterator[Path | WalkFailure]:
    """Yield every regular file below ``root`` depth-first in name order.

    Directories are descended into at their sorted position and never yielded.
    A directory that cannot be listed is reported as a ``WalkFailure`` and its
    subtree is skipped. Symlinked directories are not followed.
    """
    try:
        entries = _sorted_entries(root)
    except OSError as exc:
        yield WalkFailure(path=root, error=exc)
        return

    for entry in entries:
        path = Path(entry.path)
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = not is_dir and entry.is_file()
        except OSError as exc:
            yield WalkFailure(path=path, error=exc)
            continue

        if is_dir:
            yield from walk(path)
        elif is_file:
            yield path
