"""UTF-8 text file helpers used by the store."""

from __future__ import annotations

import os
from pathlib import Path

PathLike = Path | str


def read_text(path: PathLike) -> str:
    """Read path as UTF-8 text. ``FileNotFoundError`` propagates for the caller to interpret."""
    p = path if isinstance(path, Path) else Path(path)
    return p.read_text(encoding="utf-8")


def write_text_synced(path: PathLike, text: str, *, sync: bool = True) -> None:
    """Write UTF-8 text, flushing to stable storage when *sync* is set."""
    p = path if isinstance(path, Path) else Path(path)
    with open(p, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)
        f.flush()
        if sync:
            os.fsync(f.fileno())
