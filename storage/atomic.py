"""
Atomic file writing with fsync to prevent corrupt PEM / JSON files.

Pattern:
  1. Write to a temporary file in the same directory
  2. Apply the final permission bits while the file is still private
  3. fsync, then rename over the destination (atomic on POSIX filesystems)

A crash or error mid-write leaves the previous file intact, and a key file
is never visible on disk with looser permissions than requested.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, content: bytes, mode: Optional[int] = None) -> None:
    """Atomically replace *path* with *content*, optionally chmod-ing it to *mode*."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target so os.replace never crosses filesystems
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )

    try:
        with os.fdopen(fd, "wb") as f:
            if mode is not None:
                os.fchmod(f.fileno(), mode)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_write_text(
    path: Path,
    content: str,
    mode: Optional[int] = None,
    encoding: str = "utf-8",
) -> None:
    """Text variant of atomic_write_bytes."""
    atomic_write_bytes(path, content.encode(encoding), mode=mode)
